"""Core types shared by every layer."""

from .config import ConfigError, ProjectConfig, load_config
from .errors import ErrorCode
from .project import Project, ProjectError, find_project
from .result import Err, Ok, Result, is_err, is_ok

__all__ = [
    # config
    "ConfigError",
    "ProjectConfig",
    "load_config",
    # errors
    "ErrorCode",
    # project
    "Project",
    "ProjectError",
    "find_project",
    # result
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
]
