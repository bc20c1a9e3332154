"""
mltrack - track machine learning experiments, runs, metrics and artifacts.

Basic usage:
    import mltrack

    mltrack.set_experiment("mnist")
    with mltrack.start_run():
        mltrack.log_param("lr", 0.01)
        mltrack.log_metric("accuracy", 0.97)
"""

__version__ = "0.1.0"

# Entities and enums
from .common import RunStatus, SourceType, ViewType, LifecycleStage
from .entities import Experiment, FileInfo, Metric, Param, Run, RunData, RunInfo, RunTag
from .exceptions import ErrorCode, TrackingError, RestError

# Clients
from .tracking import TrackingClient
from .tracking.fluent import (
    ActiveRun,
    active_run,
    create_experiment,
    delete_experiment,
    delete_tag,
    end_run,
    get_artifact_uri,
    get_experiment,
    get_experiment_by_name,
    get_tracking_uri,
    list_run_infos,
    log_artifact,
    log_artifacts,
    log_metric,
    log_metrics,
    log_param,
    log_params,
    search_runs,
    set_experiment,
    set_tag,
    set_tags,
    set_tracking_uri,
    start_run,
)

__all__ = [
    # Version
    '__version__',
    # Entities
    'Experiment',
    'FileInfo',
    'Metric',
    'Param',
    'Run',
    'RunData',
    'RunInfo',
    'RunTag',
    # Enums
    'LifecycleStage',
    'RunStatus',
    'SourceType',
    'ViewType',
    # Errors
    'ErrorCode',
    'RestError',
    'TrackingError',
    # Client
    'TrackingClient',
    # Fluent API
    'ActiveRun',
    'active_run',
    'create_experiment',
    'delete_experiment',
    'delete_tag',
    'end_run',
    'get_artifact_uri',
    'get_experiment',
    'get_experiment_by_name',
    'get_tracking_uri',
    'list_run_infos',
    'log_artifact',
    'log_artifacts',
    'log_metric',
    'log_metrics',
    'log_param',
    'log_params',
    'search_runs',
    'set_experiment',
    'set_tag',
    'set_tags',
    'set_tracking_uri',
    'start_run',
]
