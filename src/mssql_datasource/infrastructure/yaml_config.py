"""
YAML Configuration Loader
=========================

Loads datasource configuration files for the command line.

`${VAR}` placeholders in string values are expanded from the environment
(after `.env` has been loaded with python-dotenv), so secrets can stay out
of the file.

Example:
    >>> from mssql_datasource.infrastructure.yaml_config import YamlConfig
    >>>
    >>> config = YamlConfig("connection.yaml")
    >>> source = config.get("datasources.warehouse")
    >>> source["server"]
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def expand_env(value: Any) -> Any:
    """Recursively replace ${VAR} placeholders with environment values."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


class YamlConfig:
    """
    Simple YAML loader with dot-notation access.

    Example:
        >>> config = YamlConfig("config/datasources.yaml")
        >>> source = config.get("datasources.warehouse")
    """

    def __init__(self, yaml_path: str, load_env: bool = True):
        """
        Initialize the loader by loading the YAML file.

        Args:
            yaml_path: Path to YAML file (absolute or relative to the working directory)
            load_env: Load a `.env` file before expanding placeholders

        Raises:
            FileNotFoundError: If file does not exist
            ValueError: If file does not contain a valid dict
        """
        path = Path(yaml_path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        if load_env:
            load_dotenv()

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config: expected dict, got {type(data)}")

        self._data = expand_env(data)

    @property
    def data(self) -> dict:
        return self._data

    def get(self, path: str) -> Any:
        """
        Access via dot-notation.

        Args:
            path: Path separated by dots (e.g. "datasources.warehouse")

        Returns:
            Raw value (dict/list/primitive)

        Raises:
            KeyError: If path not found
        """
        keys = path.split(".")
        current = self._data
        for key in keys:
            if not isinstance(current, dict) or key not in current:
                raise KeyError(f"Path '{path}' not found")
            current = current[key]
        return current
