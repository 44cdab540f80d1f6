"""Image publishing: immutable, revision-keyed container artifacts."""

from .docker import DockerBuilder, ImageBuilder, LocalImageRegistry
from .model import Artifact, BuildContext, BuildError, PublishError, PushError, RegistryError
from .publisher import ImagePublisher, ImageRegistry, MemoryImageRegistry

__all__ = [
    "Artifact",
    "BuildContext",
    "BuildError",
    "DockerBuilder",
    "ImageBuilder",
    "ImagePublisher",
    "ImageRegistry",
    "LocalImageRegistry",
    "MemoryImageRegistry",
    "PublishError",
    "PushError",
    "RegistryError",
]
