"""Common constants and enumerations shared across mltrack.

This module centralises enums (RunStatus, SourceType, ViewType, etc.) and
other constants so that the rest of the codebase can import them from a
single place. Environment variable names also live here so that the client,
the server and the CLI agree on them.
"""

from enum import Enum, auto

from mltrack.exceptions import TrackingError, ErrorCode

LOG_NAME = "mltrack"

DEFAULT_EXPERIMENT_ID = "0"
DEFAULT_EXPERIMENT_NAME = "Default"
DEFAULT_TRACKING_DIR = "mlruns"

# reserved tag keys
TAG_RUN_NAME = "mltrack.runName"
TAG_USER = "mltrack.user"
TAG_SOURCE_NAME = "mltrack.source.name"
TAG_SOURCE_TYPE = "mltrack.source.type"
TAG_GIT_COMMIT = "mltrack.source.git.commit"
TAG_ENTRY_POINT = "mltrack.project.entryPoint"
TAG_PARENT_RUN_ID = "mltrack.parentRunId"


class EnvVars(Enum):
    TRACKING_URI = "MLTRACK_TRACKING_URI"
    EXPERIMENT_ID = "MLTRACK_EXPERIMENT_ID"
    EXPERIMENT_NAME = "MLTRACK_EXPERIMENT_NAME"
    RUN_ID = "MLTRACK_RUN_ID"
    CONFIG = "MLTRACK_CONFIG"
    WORKSPACE_CONFIG = "MLTRACK_WORKSPACE_CONFIG"

    TRACKING_TOKEN = "MLTRACK_TRACKING_TOKEN"
    TRACKING_USERNAME = "MLTRACK_TRACKING_USERNAME"
    TRACKING_PASSWORD = "MLTRACK_TRACKING_PASSWORD"
    TRACKING_INSECURE_TLS = "MLTRACK_TRACKING_INSECURE_TLS"
    HTTP_REQUEST_MAX_RETRIES = "MLTRACK_HTTP_REQUEST_MAX_RETRIES"
    HTTP_REQUEST_TIMEOUT = "MLTRACK_HTTP_REQUEST_TIMEOUT"

    S3_ENDPOINT_URL = "MLTRACK_S3_ENDPOINT_URL"
    AZURE_STORAGE_CONNECTION_STRING = "AZURE_STORAGE_CONNECTION_STRING"
    AZURE_STORAGE_ACCESS_KEY = "AZURE_STORAGE_ACCESS_KEY"

    # handed from the CLI to the uvicorn worker processes
    SERVER_BACKEND_STORE_URI = "_MLTRACK_SERVER_BACKEND_STORE_URI"
    SERVER_DEFAULT_ARTIFACT_ROOT = "_MLTRACK_SERVER_DEFAULT_ARTIFACT_ROOT"


class RunStatus(Enum):
    RUNNING = 1
    SCHEDULED = auto()
    FINISHED = auto()
    FAILED = auto()
    KILLED = auto()

    @classmethod
    def from_string(cls, status: str) -> "RunStatus":
        if isinstance(status, RunStatus):
            return status
        try:
            return cls[str(status).upper()]
        except KeyError:
            raise TrackingError(
                f"Invalid run status '{status}', expected one of {[s.name for s in cls]}",
                ErrorCode.INVALID_PARAMETER_VALUE)

    @staticmethod
    def is_terminated(status) -> bool:
        return RunStatus.from_string(status) in (RunStatus.FINISHED,
                                                 RunStatus.FAILED,
                                                 RunStatus.KILLED)


class SourceType(Enum):
    NOTEBOOK = 1
    JOB = 2
    PROJECT = 3
    LOCAL = 4
    UNKNOWN = 1000

    @classmethod
    def from_string(cls, source_type: str) -> "SourceType":
        if isinstance(source_type, SourceType):
            return source_type
        try:
            return cls[str(source_type).upper()]
        except KeyError:
            return cls.UNKNOWN


class LifecycleStage(Enum):
    ACTIVE = "active"
    DELETED = "deleted"

    @classmethod
    def matches_view_type(cls, view_type: "ViewType", stage: str) -> bool:
        if view_type == ViewType.ALL:
            return True
        if view_type == ViewType.ACTIVE_ONLY:
            return stage == cls.ACTIVE.value
        return stage == cls.DELETED.value


class ViewType(Enum):
    ACTIVE_ONLY = 1
    DELETED_ONLY = 2
    ALL = 3

    @classmethod
    def from_string(cls, view_type) -> "ViewType":
        if isinstance(view_type, ViewType):
            return view_type
        try:
            return cls[str(view_type).upper()]
        except KeyError:
            raise TrackingError(
                f"Invalid view type '{view_type}', expected one of {[v.name for v in cls]}",
                ErrorCode.INVALID_PARAMETER_VALUE)


class SearchEntity(Enum):
    """Entity prefixes accepted in run filters and ``order_by`` clauses."""
    METRIC = "metrics"
    PARAM = "params"
    TAG = "tags"
    ATTRIBUTE = "attributes"


# Public exports for `from mltrack.common.common import *`
__all__ = [
    "LOG_NAME",
    "DEFAULT_EXPERIMENT_ID",
    "DEFAULT_EXPERIMENT_NAME",
    "DEFAULT_TRACKING_DIR",
    "TAG_RUN_NAME",
    "TAG_USER",
    "TAG_SOURCE_NAME",
    "TAG_SOURCE_TYPE",
    "TAG_GIT_COMMIT",
    "TAG_ENTRY_POINT",
    "TAG_PARENT_RUN_ID",
    "EnvVars",
    "RunStatus",
    "SourceType",
    "LifecycleStage",
    "ViewType",
    "SearchEntity",
]
