"""
Common constants, enums and helpers shared across mltrack.
"""

from .common import (
    DEFAULT_EXPERIMENT_ID,
    DEFAULT_EXPERIMENT_NAME,
    LOG_NAME,
    EnvVars,
    LifecycleStage,
    RunStatus,
    SourceType,
    ViewType,
)
from .scheme_registry import SchemeRegistry

__all__ = [
    # Enums and constants
    'DEFAULT_EXPERIMENT_ID',
    'DEFAULT_EXPERIMENT_NAME',
    'LOG_NAME',
    'EnvVars',
    'LifecycleStage',
    'RunStatus',
    'SourceType',
    'ViewType',
    # Registry
    'SchemeRegistry',
]
