"""Configuration schema definitions for table mappings and project layout."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_EXTENSION = "txt"
CONTEXT_ONLY_FILTER = "sys_idISNOTEMPTY"


class TableConfig(BaseModel):
    """Sync configuration for a single remote table."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    fields: List[str] = Field(default_factory=list, description="Fields materialized as files")
    ext: Dict[str, str] = Field(default_factory=dict, description="File extension per field")
    filter: Optional[str] = Field(None, description="Encoded query applied on pull")
    save_context: bool = Field(False, alias="saveContext", description="Capture schema before pulling records")
    only_context: bool = Field(False, alias="onlyContext", description="Capture schema only, never download records")
    json_export: List[str] = Field(default_factory=list, alias="jsonExport", description="Fields exported to the metadata document")
    context_keys: List[str] = Field(default_factory=list, alias="contextKeys", description="Extra fields fetched on pull")

    @model_validator(mode="before")
    @classmethod
    def accept_json_fields_synonym(cls, data: Any) -> Any:
        """`jsonFields` is an older spelling of `jsonExport`."""
        if isinstance(data, dict) and "jsonFields" in data and "jsonExport" not in data and "json_export" not in data:
            data = dict(data)
            data["jsonExport"] = data.pop("jsonFields")
        return data

    @field_validator("ext")
    @classmethod
    def strip_extension_dots(cls, v):
        return {field: ext.lstrip(".") for field, ext in v.items()}

    @property
    def creatable(self) -> bool:
        """Whether new records can be created from local folders."""
        return bool(self.fields) and not self.only_context

    def extension_for(self, field: str) -> str:
        return self.ext.get(field) or DEFAULT_EXTENSION

    def filename_for(self, field: str) -> str:
        """Deterministic file name holding a field's value."""
        return f"{field}.{self.extension_for(field)}"

    def to_document(self) -> Dict[str, Any]:
        """Serialize back to the mapping document's camelCase shape."""
        return self.model_dump(by_alias=True, exclude_defaults=True)


class SyncConfig(BaseModel):
    """Normalized table mapping, whatever shape the document had on disk."""

    mapping: Dict[str, TableConfig] = Field(default_factory=dict)
    wrapped: bool = Field(True, description="Document stored the mapping under a 'mapping' key")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Other top-level keys of a wrapped document")

    def get_table(self, table: str) -> Optional[TableConfig]:
        return self.mapping.get(table)

    def has_table(self, table: str) -> bool:
        return table in self.mapping

    @property
    def tables(self) -> List[str]:
        return list(self.mapping)

    def creatable_tables(self) -> Dict[str, TableConfig]:
        """Tables new records may be pushed into."""
        return {name: cfg for name, cfg in self.mapping.items() if cfg.creatable}

    def add_context_only(self, table: str) -> TableConfig:
        """Register a table for schema capture only, keeping any existing entry."""
        if table not in self.mapping:
            self.mapping[table] = TableConfig(only_context=True, filter=CONTEXT_ONLY_FILTER)
        return self.mapping[table]

    def to_document(self) -> Dict[str, Any]:
        tables = {name: cfg.to_document() for name, cfg in self.mapping.items()}
        if not self.wrapped:
            return tables
        return {**self.extra, "mapping": tables}


@dataclass(frozen=True)
class ProjectLayout:
    """Paths derived from the single project root."""

    root: Path

    @classmethod
    def from_root(cls, root: Union[str, Path]) -> "ProjectLayout":
        return cls(root=Path(root).resolve())

    @property
    def local_folder(self) -> Path:
        return self.root / "src"

    @property
    def env_file(self) -> Path:
        return self.root / ".env"

    @property
    def token_cache(self) -> Path:
        return self.root / ".token_cache.json"

    @property
    def mapping_file(self) -> Path:
        for name in ("sn-config.json", "sn-config.yaml", "sn-config.yml"):
            candidate = self.root / name
            if candidate.exists():
                return candidate
        return self.root / "sn-config.json"

    def table_dir(self, table: str) -> Path:
        return self.local_folder / table
