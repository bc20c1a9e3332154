import os
import tempfile
from typing import Any, Dict, Union

from omegaconf import DictConfig, OmegaConf


def write_yaml(file_path: str, data: Union[Dict[str, Any], DictConfig], overwrite: bool = True) -> None:
    """
    Write a mapping to a YAML file using OmegaConf.

    The file is written to a temporary sibling first and then moved into place,
    so readers never observe a half written file.

    Args:
        file_path: Destination file
        data: Mapping to serialize (plain dict or DictConfig)
        overwrite: If False, refuse to replace an existing file
    """
    if not overwrite and os.path.exists(file_path):
        raise FileExistsError(f"Yaml file '{file_path}' exists as '{os.path.abspath(file_path)}")

    config = data if isinstance(data, DictConfig) else OmegaConf.create(data)
    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".meta.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(OmegaConf.to_yaml(config))
        os.replace(tmp_path, file_path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def read_yaml(file_path: str) -> Dict[str, Any]:
    """
    Read a YAML file written by :func:`write_yaml` into a plain dict.

    Args:
        file_path: File to read

    Returns:
        dict: the file contents, with interpolations left unresolved
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Yaml file '{file_path}' does not exist.")
    config = OmegaConf.load(file_path)
    return OmegaConf.to_container(config, resolve=False)


def merge_configs(base_config: Union[DictConfig, dict], *overrides: Union[DictConfig, dict]) -> DictConfig:
    """
    Merge configuration layers, later layers win field by field.

    Args:
        base_config: The base configuration to merge with
        overrides: Configurations applied on top, in order; ``None`` entries are skipped

    Returns:
        DictConfig: The merged configuration

    Example:
        base = {"server": {"host": "127.0.0.1", "port": 5000}}
        override = {"server": {"port": 8080}}
        result = merge_configs(base, override)
        # Result: {"server": {"host": "127.0.0.1", "port": 8080}}
    """
    if not isinstance(base_config, DictConfig):
        base_config = OmegaConf.create(base_config)
    layers = [o if isinstance(o, DictConfig) else OmegaConf.create(o)
              for o in overrides if o]
    return OmegaConf.merge(base_config, *layers)
