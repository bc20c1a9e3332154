"""Exceptions raised by mltrack stores, clients and the tracking server."""
from enum import Enum
from typing import Any, Dict


class ErrorCode(Enum):
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    INVALID_PARAMETER_VALUE = "INVALID_PARAMETER_VALUE"
    RESOURCE_ALREADY_EXISTS = "RESOURCE_ALREADY_EXISTS"
    RESOURCE_DOES_NOT_EXIST = "RESOURCE_DOES_NOT_EXIST"
    INVALID_STATE = "INVALID_STATE"
    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"

    @property
    def http_status(self) -> int:
        return _http_statuses[self]


_http_statuses = {
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.INVALID_PARAMETER_VALUE: 400,
    ErrorCode.RESOURCE_ALREADY_EXISTS: 400,
    ErrorCode.RESOURCE_DOES_NOT_EXIST: 404,
    ErrorCode.INVALID_STATE: 400,
    ErrorCode.ENDPOINT_NOT_FOUND: 404,
}


class TrackingError(Exception):
    """Base class for all mltrack errors.

    Every error carries an :class:`ErrorCode`, which decides the HTTP status
    used by the tracking server and survives the round trip through the REST
    client.
    """

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INTERNAL_ERROR):
        self.message = str(message)
        self.error_code = error_code if isinstance(error_code, ErrorCode) \
            else ErrorCode[str(error_code)]
        super().__init__(self.message)

    def get_http_status(self) -> int:
        return self.error_code.http_status

    def to_dict(self) -> Dict[str, Any]:
        return {"error_code": self.error_code.name, "message": self.message}

    def __str__(self) -> str:
        return f"{self.error_code.name}: {self.message}"


class RestError(TrackingError):
    """Error returned by a remote tracking server."""

    def __init__(self, json: Dict[str, Any]):
        error_code = json.get("error_code", ErrorCode.INTERNAL_ERROR.name)
        if error_code not in ErrorCode.__members__:
            error_code = ErrorCode.INTERNAL_ERROR.name
        message = json.get("message", "Unknown error from tracking server")
        super().__init__(message, ErrorCode[error_code])
        self.json = json


class ArtifactRepositoryError(TrackingError):
    """Error reading from or writing to an artifact store."""
    pass
