"""Configuration management for pg-typegen."""
from .typegen import (
    CONFIG_FILE_NAME,
    DEFAULT_CONNECTION_STRING,
    ErrorPolicy,
    TypegenConfig,
    load_typegen_config,
    resolve_config,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_CONNECTION_STRING",
    "ErrorPolicy",
    "TypegenConfig",
    "load_typegen_config",
    "resolve_config",
]
