"""Tracking URI resolution and the tracking store registry."""
import functools
import logging
import os
from typing import Optional
from urllib.parse import urlparse

from mltrack.common.common import DEFAULT_TRACKING_DIR, EnvVars
from mltrack.common.scheme_registry import SchemeRegistry
from mltrack.config import load_config, load_workspace_profile
from mltrack.store.abstract_store import AbstractStore
from mltrack.store.db_store import DatabaseStore
from mltrack.store.file_store import FileStore
from mltrack.store.rest_store import HostCreds, RestStore
from mltrack.utils.uri import get_uri_scheme, local_path_from_uri

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACTS_DIR = "mlartifacts"
WORKSPACE_SCHEME = "workspace"

_tracking_uri: Optional[str] = None


def set_tracking_uri(uri: Optional[str]) -> None:
    """
    Set the tracking URI used by the fluent API and by clients built without one.

    ``None`` clears it, so resolution falls back to the environment and config.
    """
    global _tracking_uri
    _tracking_uri = str(uri) if uri is not None else None


def get_tracking_uri() -> str:
    """
    Resolve the current tracking URI.

    Order: :func:`set_tracking_uri`, ``MLTRACK_TRACKING_URI``, the config
    file's ``tracking_uri``, and finally ``./mlruns``.
    """
    if _tracking_uri is not None:
        return _tracking_uri
    env_uri = os.environ.get(EnvVars.TRACKING_URI.value)
    if env_uri:
        return env_uri
    config_uri = load_config().get("tracking_uri")
    if config_uri:
        return str(config_uri)
    return os.path.abspath(DEFAULT_TRACKING_DIR)


def _default_artifact_root(artifact_uri: Optional[str]) -> str:
    if artifact_uri:
        return artifact_uri
    configured = load_config().get("default_artifact_root")
    return str(configured) if configured else os.path.abspath(DEFAULT_ARTIFACTS_DIR)


def _get_file_store(store_uri: str, artifact_uri: Optional[str] = None) -> FileStore:
    return _get_cached_file_store(os.path.abspath(local_path_from_uri(store_uri)), artifact_uri)


@functools.lru_cache(maxsize=32)
def _get_cached_file_store(root_directory: str, artifact_uri: Optional[str]) -> FileStore:
    # clients of one root share the store and its lock
    return FileStore(root_directory, artifact_uri)


@functools.lru_cache(maxsize=32)
def _get_db_store(store_uri: str, artifact_uri: Optional[str] = None) -> DatabaseStore:
    # one connection per database, shared by every client in the process
    return DatabaseStore(store_uri, _default_artifact_root(artifact_uri))


@functools.lru_cache(maxsize=32)
def _get_rest_store(store_uri: str, artifact_uri: Optional[str] = None) -> RestStore:
    return RestStore(lambda: HostCreds.from_env(store_uri))


def _get_workspace_host_creds(profile: Optional[str]) -> HostCreds:
    settings = load_workspace_profile(profile)
    return HostCreds(host=settings["host"],
                     token=settings.get("token"),
                     username=settings.get("username"),
                     password=settings.get("password"),
                     verify=not settings.get("insecure", False))


@functools.lru_cache(maxsize=32)
def _get_workspace_store(store_uri: str, artifact_uri: Optional[str] = None) -> RestStore:
    profile = urlparse(store_uri).netloc or None
    return RestStore(lambda: _get_workspace_host_creds(profile))


_tracking_store_registry: SchemeRegistry[AbstractStore] = SchemeRegistry("tracking store")
_tracking_store_registry.register("", _get_file_store)
_tracking_store_registry.register("file", _get_file_store)
_tracking_store_registry.register("sqlite", _get_db_store)
_tracking_store_registry.register("mysql", _get_db_store)
_tracking_store_registry.register("http", _get_rest_store)
_tracking_store_registry.register("https", _get_rest_store)
_tracking_store_registry.register(WORKSPACE_SCHEME, _get_workspace_store)


def _clear_store_caches() -> None:
    """Forget every cached store, the next lookup builds a new one."""
    for builder in (_get_cached_file_store, _get_db_store, _get_rest_store, _get_workspace_store):
        builder.cache_clear()


def register_tracking_store(scheme: str, builder) -> None:
    """Register a builder ``builder(store_uri, artifact_uri=None)`` for a URI scheme."""
    _tracking_store_registry.register(scheme, builder)


def get_tracking_store(store_uri: Optional[str] = None, artifact_uri: Optional[str] = None) -> AbstractStore:
    """Build the tracking store for ``store_uri``, the current tracking URI when None."""
    store_uri = store_uri or get_tracking_uri()
    if store_uri == WORKSPACE_SCHEME:
        store_uri = f"{WORKSPACE_SCHEME}://"
    logger.debug(f"Using tracking store {get_uri_scheme(store_uri) or 'file'} at {store_uri}")
    return _tracking_store_registry.get(store_uri)(store_uri, artifact_uri)
