from typing import Callable, Dict, Generic, TypeVar

from mltrack.exceptions import TrackingError, ErrorCode
from mltrack.utils.uri import get_uri_scheme

T = TypeVar("T")


class SchemeRegistry(Generic[T]):
    """
    Registry mapping URI schemes to builder callables.

    Both tracking stores and artifact repositories are selected from the
    scheme of their URI. Users can plug in their own backends by registering
    a builder for a new scheme, or override a default one.

    Example:
        registry = SchemeRegistry("artifact repository")
        registry.register("s3", S3ArtifactRepository)
        repo = registry.get("s3://bucket/path")("s3://bucket/path")

    Attributes:
        kind: Human readable name of the registered objects, used in errors
        builders: Dictionary mapping a lowercase scheme to its builder
    """

    def __init__(self, kind: str):
        self.kind = kind
        self.builders: Dict[str, Callable[..., T]] = {}

    def register(self, scheme: str, builder: Callable[..., T]) -> None:
        """
        Register or override the builder for a URI scheme.

        Args:
            scheme: URI scheme, ``""`` for plain local paths
            builder: Callable building the object from a URI

        Raises:
            TypeError: If scheme is not a string
            TypeError: If builder is not callable
        """
        if not isinstance(scheme, str):
            raise TypeError(f"scheme must be a string, got {type(scheme).__name__}")
        if not callable(builder):
            raise TypeError(f"builder must be callable, got {type(builder).__name__}")
        self.builders[scheme.lower()] = builder

    def get(self, uri: str) -> Callable[..., T]:
        """
        Retrieve the builder registered for the scheme of ``uri``.

        Raises:
            TrackingError: INVALID_PARAMETER_VALUE when no builder handles the scheme
        """
        scheme = get_uri_scheme(uri)
        builder = self.builders.get(scheme)
        if builder is None:
            raise TrackingError(
                f"Could not find a registered {self.kind} for: {uri}. "
                f"Currently registered schemes are: {sorted(self.builders)}",
                ErrorCode.INVALID_PARAMETER_VALUE)
        return builder

    def __contains__(self, scheme: str) -> bool:
        return scheme.lower() in self.builders
