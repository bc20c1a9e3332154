"""Configuration for mltrack clients, the CLI and the tracking server.

Settings are resolved in layers with OmegaConf: built in defaults, then an
optional YAML file (``MLTRACK_CONFIG``, default ``~/.mltrack/config.yaml``),
then environment variables. Example file::

    tracking_uri: http://tracking.internal:5000
    default_artifact_root: s3://team-bucket/mltrack
    server:
      host: 0.0.0.0
      port: 5000
      workers: 4
    http:
      max_retries: 5
      timeout: 60
"""
import logging
import os
from typing import Any, Dict, Optional

from omegaconf import DictConfig, OmegaConf

from mltrack.common.common import EnvVars
from mltrack.common.yaml_utils import merge_configs
from mltrack.exceptions import TrackingError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("~", ".mltrack", "config.yaml")
DEFAULT_WORKSPACE_CONFIG_PATH = os.path.join("~", ".mltrackcfg")
DEFAULT_WORKSPACE_PROFILE = "DEFAULT"

DEFAULTS: Dict[str, Any] = {
    "tracking_uri": None,
    "default_artifact_root": None,
    "server": {
        "host": "127.0.0.1",
        "port": 5000,
        "workers": 1,
    },
    "http": {
        "max_retries": 3,
        "timeout": 120,
    },
}


def get_config_path() -> str:
    return os.path.expanduser(os.environ.get(EnvVars.CONFIG.value) or DEFAULT_CONFIG_PATH)


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    tracking_uri = os.environ.get(EnvVars.TRACKING_URI.value)
    if tracking_uri:
        overrides["tracking_uri"] = tracking_uri
    http = {}
    if os.environ.get(EnvVars.HTTP_REQUEST_MAX_RETRIES.value):
        http["max_retries"] = int(os.environ[EnvVars.HTTP_REQUEST_MAX_RETRIES.value])
    if os.environ.get(EnvVars.HTTP_REQUEST_TIMEOUT.value):
        http["timeout"] = float(os.environ[EnvVars.HTTP_REQUEST_TIMEOUT.value])
    if http:
        overrides["http"] = http
    return overrides


def load_config(config_path: Optional[str] = None) -> DictConfig:
    """
    Load the mltrack configuration.

    Args:
        config_path: Explicit YAML file; it must exist. When None the file
            named by ``MLTRACK_CONFIG`` (or the default location) is used if present.

    Returns:
        DictConfig: the merged configuration
    """
    file_config = None
    if config_path is not None:
        config_path = os.path.expanduser(config_path)
        if not os.path.exists(config_path):
            raise TrackingError(f"Configuration file {config_path} does not exist",
                                ErrorCode.INVALID_PARAMETER_VALUE)
        file_config = OmegaConf.load(config_path)
    else:
        default_path = get_config_path()
        if os.path.exists(default_path):
            file_config = OmegaConf.load(default_path)
    if file_config is not None:
        logger.debug(f"Loaded configuration from {config_path or get_config_path()}")
    return merge_configs(DEFAULTS, file_config, _env_overrides())


def get_workspace_config_path() -> str:
    return os.path.expanduser(os.environ.get(EnvVars.WORKSPACE_CONFIG.value) or DEFAULT_WORKSPACE_CONFIG_PATH)


def load_workspace_profile(profile: Optional[str] = None) -> Dict[str, Any]:
    """
    Read the connection settings of a managed workspace profile.

    The profile file is YAML with one mapping per profile::

        DEFAULT:
          host: https://workspace.example.com
          token: abc123
        staging:
          host: https://staging.example.com
          username: me
          password: secret

    Raises:
        TrackingError: INVALID_PARAMETER_VALUE when the file or profile is missing
    """
    profile = profile or DEFAULT_WORKSPACE_PROFILE
    path = get_workspace_config_path()
    if not os.path.exists(path):
        raise TrackingError(f"Workspace configuration file {path} does not exist",
                            ErrorCode.INVALID_PARAMETER_VALUE)
    profiles = OmegaConf.to_container(OmegaConf.load(path), resolve=True) or {}
    settings = profiles.get(profile)
    if not isinstance(settings, dict) or not settings.get("host"):
        raise TrackingError(f"Workspace profile '{profile}' with a host was not found in {path}",
                            ErrorCode.INVALID_PARAMETER_VALUE)
    return settings
