"""Configuration package for sn-sync."""

from .settings import (
    AuthMode,
    InstanceSettings,
    LoggingSettings,
    load_settings,
    get_logging_settings
)

from .schema import (
    TableConfig,
    SyncConfig,
    ProjectLayout,
    CONTEXT_ONLY_FILTER
)

from .loader import (
    ConfigLoader,
    ConfigurationError
)

__all__ = [
    "AuthMode",
    "InstanceSettings",
    "LoggingSettings",
    "load_settings",
    "get_logging_settings",

    "TableConfig",
    "SyncConfig",
    "ProjectLayout",
    "CONTEXT_ONLY_FILTER",

    "ConfigLoader",
    "ConfigurationError"
]
