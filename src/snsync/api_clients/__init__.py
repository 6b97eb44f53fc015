"""API clients package for the remote table API."""

from .base import (
    RemoteRecord,
    raw_value,
    AuthenticationError,
    RemoteAPIError,
    APIConnectionError
)

from .table_api import TableAPIClient

__all__ = [
    "RemoteRecord",
    "raw_value",
    "AuthenticationError",
    "RemoteAPIError",
    "APIConnectionError",

    "TableAPIClient"
]
