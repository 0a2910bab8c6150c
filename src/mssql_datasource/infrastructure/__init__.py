"""
Infrastructure - logging and configuration loading.
"""

from mssql_datasource.infrastructure.logging import setup_logging, get_logger
from mssql_datasource.infrastructure.yaml_config import YamlConfig

__all__ = [
    "setup_logging",
    "get_logger",
    "YamlConfig",
]
