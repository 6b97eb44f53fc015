"""Configuration loader for the table mapping document (JSON or YAML)."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

import yaml
from pydantic import ValidationError

from .schema import SyncConfig, TableConfig
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


def _reject_duplicate_tables(pairs):
    data = {}
    for key, value in pairs:
        if key in data:
            raise ConfigurationError(f"Duplicate key in mapping document: {key}")
        data[key] = value
    return data


class ConfigLoader:
    """Loads, validates and saves the table mapping document."""

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self.logger = get_logger(self.__class__.__name__)

    def load(self) -> SyncConfig:
        """Load the mapping document, normalizing wrapped and bare shapes.

        A missing document yields an empty mapping so commands can still run
        and report that nothing is configured.

        Raises:
            ConfigurationError: If the file cannot be parsed or validated
        """
        if not self.file_path.exists():
            self.logger.warning(
                "No mapping document found, nothing is configured to sync",
                file_path=str(self.file_path)
            )
            return SyncConfig()

        self.logger.info("Loading mapping document", file_path=str(self.file_path))

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                if self.file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                elif self.file_path.suffix.lower() == '.json':
                    data = json.load(f, object_pairs_hook=_reject_duplicate_tables)
                else:
                    raise ConfigurationError(f"Unsupported file format: {self.file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read mapping document: {e}")

        config = self.load_from_dict(data or {})

        self.logger.info(
            "Mapping document loaded",
            tables_count=len(config.mapping),
            wrapped=config.wrapped
        )
        return config

    def load_from_dict(self, data: Dict[str, Any]) -> SyncConfig:
        """Build a SyncConfig from either `{"mapping": {...}}` or a bare table dict."""
        if not isinstance(data, dict):
            raise ConfigurationError("Mapping document must be an object")

        wrapped = "mapping" in data
        tables = data.get("mapping") if wrapped else data
        extra = {k: v for k, v in data.items() if k != "mapping"} if wrapped else {}

        if tables is None:
            tables = {}
        if not isinstance(tables, dict):
            raise ConfigurationError("'mapping' must be an object of table name to table config")

        mapping = {}
        for table, table_data in tables.items():
            try:
                mapping[table] = TableConfig.model_validate(table_data or {})
            except ValidationError as e:
                raise ConfigurationError(f"Invalid configuration for table '{table}': {e}")

        return SyncConfig(mapping=mapping, wrapped=wrapped, extra=extra)

    def save(self, config: SyncConfig) -> None:
        """Write the mapping back in the shape it was loaded from."""
        data = config.to_document()
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(self.file_path, 'w', encoding='utf-8') as f:
                if self.file_path.suffix.lower() in ['.yaml', '.yml']:
                    yaml.safe_dump(data, f, default_flow_style=False, indent=2, allow_unicode=True, sort_keys=False)
                else:
                    json.dump(data, f, indent=4)
        except OSError as e:
            raise ConfigurationError(f"Failed to save mapping document: {e}")

        self.logger.info("Mapping document saved", file_path=str(self.file_path))

    def add_context_tables(self, config: SyncConfig, tables: Iterable[str]) -> List[str]:
        """Register tables as context-only in memory and on disk.

        Returns:
            Tables that were not mapped before
        """
        added = [t for t in dict.fromkeys(tables) if not config.has_table(t)]
        if not added:
            return []

        for table in added:
            config.add_context_only(table)
        self.save(config)

        self.logger.info("Added context-only tables to mapping", tables=added)
        return added
