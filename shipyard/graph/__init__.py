"""Declared infrastructure resources and their dependency graph."""

from .errors import (
    CycleError,
    DependencyNotReady,
    DuplicateResourceError,
    GraphError,
    InvalidResourceError,
    NotFoundError,
)
from .model import Resource, ResourceKind, ResourceState
from .store import ResourceGraph, graph_from_config

__all__ = [
    "CycleError",
    "DependencyNotReady",
    "DuplicateResourceError",
    "GraphError",
    "InvalidResourceError",
    "NotFoundError",
    "Resource",
    "ResourceGraph",
    "ResourceKind",
    "ResourceState",
    "graph_from_config",
]
