"""Read-only schema snapshot per table: columns, choices, numbering prefix, sample."""

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..api_clients import TableAPIClient, raw_value
from ..api_clients.base import AuthenticationError, RemoteAPIError
from ..config.schema import SyncConfig
from .layout import CONTEXT_DIR
from ..utils.logging import get_logger

SNAPSHOT_SOURCE = "sn-sync v2"
DUMMY_SYS_ID = "0" * 32
DUMMY_DATE = "2025-01-01 12:00:00"
DUMMY_VALUE = "SAMPLE_VALUE"
DUMMY_DISPLAY = "Sample Display Value"
MASKED_REFERENCE = "REF_SYS_ID_HASH"

_SYS_ID_PATTERN = re.compile(r"[a-f0-9]{32}", re.IGNORECASE)


def _dummy_for(key: str, value: Any) -> tuple:
    """(value, display_value) placeholders with the same shape as the real field."""
    if key == "sys_id":
        return DUMMY_SYS_ID, DUMMY_SYS_ID
    if "date" in key or "_on" in key or "_at" in key:
        return DUMMY_DATE, DUMMY_DATE
    if "count" in key or key in ("order", "sequence"):
        return "1", "1"

    inner = raw_value(value) if isinstance(value, dict) else value
    if isinstance(inner, bool) or inner in ("true", "false"):
        return "true", "true"
    return DUMMY_VALUE, DUMMY_DISPLAY


def sanitize_sample(record: Dict[str, Any]) -> Dict[str, Any]:
    """Replace every value of a sample record with a fictional one of the same shape."""
    sanitized: Dict[str, Any] = {}

    for key, value in record.items():
        if value is None:
            sanitized[key] = None
            continue

        dummy_value, dummy_display = _dummy_for(key, value)

        if isinstance(value, dict) and ("value" in value or "display_value" in value):
            link = value.get("link")
            entry = {
                "display_value": dummy_display,
                "value": MASKED_REFERENCE if link else dummy_value,
            }
            if link:
                entry["link"] = _SYS_ID_PATTERN.sub(MASKED_REFERENCE, link)
            sanitized[key] = entry
        else:
            sanitized[key] = dummy_value

    return sanitized


def schema_path(local_folder: Path, table: str) -> Path:
    return Path(local_folder) / table / CONTEXT_DIR / f"_schema.{table}.json"


class SchemaCapture:
    """Builds the per-table structural document used as editing context."""

    def __init__(self, client: TableAPIClient, local_folder: Path, config: SyncConfig):
        self.client = client
        self.local_folder = Path(local_folder)
        self.config = config
        self.logger = get_logger(self.__class__.__name__)

    async def capture(self, table: str, query_filter: Optional[str] = None) -> List[str]:
        """Capture the schema of `table` and overwrite its snapshot.

        Args:
            table: Table to describe
            query_filter: Encoded query used to pick the sample record

        Returns:
            Referenced tables that are not in the mapping yet, self excluded
        """
        self.logger.info("Capturing schema context", table=table)

        try:
            dictionary = await self.client.get_dictionary(table)
            choices = await self._fetch_choices(table, dictionary)
            number_prefix = await self._fetch_number_prefix(table)
            sample = await self._fetch_sample(table, query_filter)
        except AuthenticationError:
            raise
        except RemoteAPIError as e:
            self.logger.warning("Error generating schema context", table=table, error=str(e))
            return []

        columns, missing_refs = self._build_columns(table, dictionary, choices)

        snapshot = {
            "_meta": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "source": SNAPSHOT_SOURCE,
            },
            "columns": columns,
            "number_prefix": number_prefix or "",
            "sample_data": sample,
        }

        path = schema_path(self.local_folder, table)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")

        self.logger.info(
            "Schema context saved",
            table=table,
            number_prefix=snapshot["number_prefix"],
            columns=len(columns),
            missing_references=missing_refs
        )
        return missing_refs

    async def _fetch_choices(self, table: str, dictionary: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, str]]]:
        choice_fields = [
            raw_value(entry.get("element"))
            for entry in dictionary
            if str(raw_value(entry.get("choice"))) == "1"
        ]
        if not choice_fields:
            return {}

        try:
            rows = await self.client.get_choices(table, choice_fields)
        except RemoteAPIError as e:
            self.logger.warning("Failed to fetch choices (might be missing ACL)", table=table, error=str(e))
            return {}

        grouped: Dict[str, List[Dict[str, str]]] = {}
        for row in rows:
            grouped.setdefault(raw_value(row.get("element")), []).append(
                {"label": raw_value(row.get("label")), "value": raw_value(row.get("value"))}
            )
        return grouped

    async def _fetch_number_prefix(self, table: str) -> Optional[str]:
        try:
            return await self.client.get_number_prefix(table)
        except RemoteAPIError as e:
            self.logger.debug("No number prefix available", table=table, error=str(e))
            return None

    async def _fetch_sample(self, table: str, query_filter: Optional[str]) -> Dict[str, Any]:
        records = await self.client.list_records(table, query=query_filter, display_value="all", limit=1)
        if not records:
            return {}
        return sanitize_sample(records[0])

    def _build_columns(self, table: str, dictionary: List[Dict[str, Any]], choices: Dict[str, List]) -> tuple:
        columns = []
        missing_refs: List[str] = []

        for entry in dictionary:
            column = {
                "name": raw_value(entry.get("element")),
                "label": raw_value(entry.get("column_label")),
                "type": raw_value(entry.get("internal_type")),
                "reference": raw_value(entry.get("reference")) or None,
                "is_display": str(raw_value(entry.get("display"))) == "true",
            }
            if column["name"] in choices:
                column["choices"] = choices[column["name"]]

            reference = column["reference"]
            if reference and reference != table and not self.config.has_table(reference):
                if reference not in missing_refs:
                    missing_refs.append(reference)

            columns.append(column)

        return columns, missing_refs
