"""Local folder layout: marker files, record folder names and path parsing.

Two encodings identify which record a field file belongs to:

* FOLDER: ``src/<table>/<record>/<field>.<ext>`` next to a ``.sys_id`` marker
* LEGACY: ``src/<table>/<Name>.<sys_id>.<field>.<ext>`` with no marker

`parse_field_path` is the only place either encoding is interpreted.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

ID_MARKER = ".sys_id"
VERSION_MARKER = ".sys_updated_on"
CONTEXT_DIR = ".ai_context"
CONTEXT_NOTES = "_ai_context.md"
PROPERTIES_TABLE = "sys_properties"
PROPERTIES_DOCUMENT = "_properties.json"
RECORD_DOCUMENT = "_record.json"
METADATA_DOCUMENTS = (PROPERTIES_DOCUMENT, RECORD_DOCUMENT, "meta.json")
NAME_FIELDS = ("name", "u_name", "short_description")
DEFAULT_RECORD_NAME = "Record"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class RecordNotFoundError(Exception):
    """Raised when a path or table cannot be resolved to a mapped record."""
    pass


class PathEncoding(str, Enum):
    FOLDER = "folder"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ParsedFieldPath:
    """Which record and field a local file maps to."""

    encoding: PathEncoding
    table: str
    sys_id: str
    field: str
    extension: str
    record_dir: Path

    @property
    def version_marker(self) -> Path:
        return self.record_dir / VERSION_MARKER


def safe_name(value: str) -> str:
    """Filesystem-safe folder name."""
    return _UNSAFE_CHARS.sub("_", value)


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def in_context_namespace(path: Path) -> bool:
    return CONTEXT_DIR in Path(path).parts


def read_marker(folder: Path, marker: str) -> Optional[str]:
    path = Path(folder) / marker
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8").strip() or None


def write_marker(folder: Path, marker: str, value: str) -> None:
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    (folder / marker).write_text(str(value), encoding="utf-8")


def has_id_marker(folder: Path) -> bool:
    return (Path(folder) / ID_MARKER).is_file()


def metadata_filename(table: str) -> str:
    """Consolidated metadata document name for a table."""
    return PROPERTIES_DOCUMENT if table == PROPERTIES_TABLE else RECORD_DOCUMENT


def parse_field_path(path: Union[str, Path]) -> Optional[ParsedFieldPath]:
    """Resolve a field file to its record, whichever encoding it uses.

    Returns None for files that follow neither encoding.
    """
    path = Path(path)
    record_dir = path.parent

    sys_id = read_marker(record_dir, ID_MARKER)
    if sys_id:
        field, _, extension = path.name.rpartition(".")
        if not field:
            field, extension = path.name, ""
        return ParsedFieldPath(
            encoding=PathEncoding.FOLDER,
            table=record_dir.parent.name,
            sys_id=sys_id,
            field=field,
            extension=extension,
            record_dir=record_dir,
        )

    parts = path.name.split(".")
    if len(parts) >= 4:
        extension = parts[-1]
        field = parts[-2]
        sys_id = parts[-3]
        return ParsedFieldPath(
            encoding=PathEncoding.LEGACY,
            table=record_dir.name,
            sys_id=sys_id,
            field=field,
            extension=extension,
            record_dir=record_dir,
        )

    return None


def resolve_record_folder(target: Union[str, Path]) -> Path:
    """Record folder for a file or folder path inside the working tree."""
    target = Path(target)
    if not target.exists():
        raise RecordNotFoundError(f"Path not found: {target}")
    return target if target.is_dir() else target.parent


def record_identity(target: Union[str, Path]) -> Tuple[str, str]:
    """(table, sys_id) of the record a local file or folder belongs to.

    Raises:
        RecordNotFoundError: If no id marker can be found
    """
    folder = resolve_record_folder(target)
    sys_id = read_marker(folder, ID_MARKER)
    if not sys_id:
        raise RecordNotFoundError(f"Could not identify {ID_MARKER} for {target}")
    return folder.parent.name, sys_id


def read_json_document(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} does not contain an object")
    return data


def write_json_document(path: Path, data: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4)


def context_notes_header(title: str) -> str:
    return f"# AI Context: {title}\n\n> **Auto-generated context**\n\n"


def seed_context_notes(record_dir: Path, title: str) -> bool:
    """Create the context-notes document if it does not exist yet."""
    path = Path(record_dir) / CONTEXT_NOTES
    if path.exists():
        return False
    path.write_text(context_notes_header(title), encoding="utf-8")
    return True


def append_context_tags(record_dir: Path, title: str, tags: Iterable[str]) -> List[str]:
    """Append tags to the context notes, skipping ones already present.

    Returns:
        Tags that were written
    """
    path = Path(record_dir) / CONTEXT_NOTES
    content = path.read_text(encoding="utf-8") if path.exists() else context_notes_header(title)

    to_add = [tag for tag in dict.fromkeys(tags) if tag and tag not in content]
    if not to_add:
        return []

    block = "\n".join(f"- **Context**: {tag}" for tag in to_add)
    path.write_text(f"{content}\n{block}\n", encoding="utf-8")
    return to_add
