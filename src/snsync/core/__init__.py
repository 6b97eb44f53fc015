"""Core sync logic package."""

from .layout import ParsedFieldPath, PathEncoding, RecordNotFoundError, parse_field_path
from .schema_capture import SchemaCapture
from .pull_engine import PullEngine, PullResult
from .push_engine import (
    ConflictError,
    EmptyPayloadError,
    PushAction,
    PushEngine,
    PushResult,
    SyncEngineError,
    UnsafePathError
)
from .watcher import FolderWatcher
from .connector import SyncConnector

__all__ = [
    "ParsedFieldPath",
    "PathEncoding",
    "RecordNotFoundError",
    "parse_field_path",
    "SchemaCapture",
    "PullEngine",
    "PullResult",
    "ConflictError",
    "EmptyPayloadError",
    "PushAction",
    "PushEngine",
    "PushResult",
    "SyncEngineError",
    "UnsafePathError",
    "FolderWatcher",
    "SyncConnector"
]
