"""Pull engine: downloads remote records into per-record folders."""

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..api_clients import RemoteRecord, TableAPIClient
from ..api_clients.base import AuthenticationError, RemoteAPIError
from ..config.loader import ConfigLoader
from ..config.schema import CONTEXT_ONLY_FILTER, SyncConfig, TableConfig
from .layout import (
    DEFAULT_RECORD_NAME,
    ID_MARKER,
    NAME_FIELDS,
    VERSION_MARKER,
    RecordNotFoundError,
    append_context_tags,
    metadata_filename,
    read_marker,
    record_identity,
    safe_name,
    write_json_document,
    write_marker,
)
from .schema_capture import SchemaCapture
from ..utils.logging import get_logger, log_async_execution_time

BASE_FIELDS = ("sys_id", "sys_updated_on") + NAME_FIELDS
ID_FRAGMENT_LENGTHS = (5, 8)


@dataclass
class PullResult:
    """Result of a pull operation."""

    tables_processed: int = 0
    records_written: int = 0
    records_failed: int = 0
    tables_failed: int = 0
    context_captured: List[str] = field(default_factory=list)
    folders: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def select_fields(table_config: TableConfig) -> List[str]:
    """Fields requested on pull, deduplicated in order."""
    fields = [*BASE_FIELDS, *table_config.fields, *table_config.json_export, *table_config.context_keys]
    return list(dict.fromkeys(fields))


def display_value_mode(table_config: TableConfig) -> str:
    """Both raw and display values only when a metadata export needs them."""
    return "all" if table_config.json_export else "false"


class PullEngine:
    """Downloads records table by table, record by record."""

    def __init__(
        self,
        client: TableAPIClient,
        local_folder: Path,
        config: SyncConfig,
        config_loader: Optional[ConfigLoader] = None,
        schema_capture: Optional[SchemaCapture] = None,
        record_limit: int = 100,
        interactive: Optional[bool] = None,
        prompt: Callable[[str], str] = input
    ):
        """Initialize the pull engine.

        Args:
            client: Table API client
            local_folder: Root of the working tree (``<project>/src``)
            config: Table mapping, updated in place when tables are onboarded
            config_loader: Persists onboarded tables; onboarding is skipped without it
            schema_capture: Schema snapshot builder
            record_limit: Maximum records fetched per table
            interactive: Whether prompts may be shown; defaults to TTY detection
            prompt: Function used to ask the user a question
        """
        self.client = client
        self.local_folder = Path(local_folder)
        self.config = config
        self.config_loader = config_loader
        self.schema_capture = schema_capture or SchemaCapture(client, self.local_folder, config)
        self.record_limit = record_limit
        self.interactive = sys.stdin.isatty() and sys.stdout.isatty() if interactive is None else interactive
        self.prompt = prompt
        self.logger = get_logger(self.__class__.__name__)

    async def _ask(self, question: str) -> str:
        answer = await asyncio.to_thread(self.prompt, question)
        return (answer or "").strip()

    @log_async_execution_time
    async def pull(
        self,
        table: Optional[str] = None,
        query: Optional[str] = None,
        context_tags: Optional[Sequence[str]] = None
    ) -> PullResult:
        """Pull every mapped table, or only `table`.

        Args:
            table: Restrict the pull to one mapped table
            query: Encoded query overriding each table's configured filter
            context_tags: Tags appended to every pulled record's context notes

        Raises:
            RecordNotFoundError: If `table` is not mapped
            AuthenticationError: If no credential can be obtained
        """
        result = PullResult()

        if table:
            if not self.config.has_table(table):
                raise RecordNotFoundError(f"Table '{table}' not found in the mapping document")
            targets = [(table, self.config.mapping[table])]
            self.logger.info("Focusing on one table", table=table)
        else:
            targets = list(self.config.mapping.items())

        for table_name, table_config in targets:
            try:
                await self._pull_table(table_name, table_config, query, context_tags, result)
                result.tables_processed += 1
            except AuthenticationError:
                raise
            except (RemoteAPIError, OSError) as e:
                result.tables_failed += 1
                result.errors.append(f"{table_name}: {e}")
                self.logger.error("Error pulling table", table=table_name, error=str(e))

        self.logger.info(
            "Pull completed",
            tables_processed=result.tables_processed,
            records_written=result.records_written,
            failures=len(result.errors)
        )
        return result

    async def pull_target(self, target: Path, context_tags: Optional[Sequence[str]] = None) -> PullResult:
        """Re-pull the single record a local file or folder belongs to."""
        table, sys_id = record_identity(target)
        self.logger.info("Pulling single record", table=table, sys_id=sys_id)
        return await self.pull(table=table, query=f"sys_id={sys_id}", context_tags=context_tags)

    async def _pull_table(
        self,
        table: str,
        table_config: TableConfig,
        query: Optional[str],
        context_tags: Optional[Sequence[str]],
        result: PullResult
    ) -> None:
        active_filter = query or table_config.filter
        self.logger.info("Searching table", table=table, filter=active_filter)

        if table_config.save_context or table_config.only_context:
            missing_refs = await self.schema_capture.capture(table, active_filter)
            result.context_captured.append(table)
            if missing_refs and self.interactive:
                result.context_captured.extend(await self.onboard_references(missing_refs))

        if table_config.only_context:
            self.logger.info("Context-only table, skipping record download", table=table)
            return

        records = await self.client.list_records(
            table,
            query=active_filter,
            fields=select_fields(table_config),
            display_value=display_value_mode(table_config),
            limit=self.record_limit
        )

        if not records:
            self.logger.warning("No records found", table=table)
            return

        tags = list(context_tags or [])
        if query and self.interactive:
            tags.extend(await self._ask_context_tags(len(records)))

        for data in records:
            try:
                record = RemoteRecord.from_api(data)
                folder = self.materialize(table, table_config, record, tags)
                result.records_written += 1
                result.folders.append(folder)
            except (ValueError, OSError) as e:
                result.records_failed += 1
                result.errors.append(f"{table}: {e}")
                self.logger.error("Error writing record", table=table, error=str(e))

        self.logger.info("Records downloaded", table=table, count=len(records))

    async def _ask_context_tags(self, record_count: int) -> List[str]:
        answer = await self._ask(
            f"Custom pull of {record_count} records. Add/update AI context tags for them? (y/N): "
        )
        if not answer.lower().startswith("y"):
            return []
        tag_input = await self._ask('Enter context tag(s), comma separated (e.g. "Hackathon,Auth"): ')
        return [t.strip() for t in tag_input.split(",") if t.strip()]

    async def onboard_references(self, missing_refs: List[str]) -> List[str]:
        """Offer to add referenced tables as context-only and capture them now.

        Returns:
            Tables that were added and captured
        """
        self.logger.info("Referenced tables without context", tables=missing_refs)
        if not self.config_loader:
            return []

        answer = (await self._ask("Add their context to the mapping? (y/n/select): ")).lower()

        if answer in ("y", "yes", "s"):
            selected = list(missing_refs)
        elif answer == "select":
            picked = await self._ask("Enter tables separated by comma (e.g. sys_user, cmn_location): ")
            selected = [t.strip() for t in picked.split(",") if t.strip() in missing_refs]
        else:
            selected = []

        added = self.config_loader.add_context_tables(self.config, selected)
        for new_table in added:
            await self.schema_capture.capture(new_table, CONTEXT_ONLY_FILTER)
        return added

    def record_folder(self, table: str, record: RemoteRecord) -> Path:
        """Folder for a record, never one owned by a different record id."""
        base_name = safe_name(record.first_present(*NAME_FIELDS) or DEFAULT_RECORD_NAME)
        table_dir = self.local_folder / table

        candidates = [base_name]
        candidates += [f"{base_name}_{record.sys_id[:n]}" for n in ID_FRAGMENT_LENGTHS]
        candidates.append(f"{base_name}_{record.sys_id}")

        for name in dict.fromkeys(candidates):
            folder = table_dir / name
            owner = read_marker(folder, ID_MARKER)
            if owner is None or owner == record.sys_id:
                return folder

        raise ValueError(f"No free folder name for record {record.sys_id} in {table}")

    def materialize(
        self,
        table: str,
        table_config: TableConfig,
        record: RemoteRecord,
        context_tags: Sequence[str] = ()
    ) -> Path:
        """Write one record's markers, field files and optional documents."""
        folder = self.record_folder(table, record)
        folder.mkdir(parents=True, exist_ok=True)

        write_marker(folder, ID_MARKER, record.sys_id)
        if record.sys_updated_on:
            write_marker(folder, VERSION_MARKER, record.sys_updated_on)

        for field_name in table_config.fields:
            value = record.get(field_name)
            if value:
                (folder / table_config.filename_for(field_name)).write_text(str(value), encoding="utf-8")

        if table_config.json_export:
            write_json_document(folder / metadata_filename(table), self._metadata_document(table_config, record))

        if context_tags:
            title = record.first_present(*NAME_FIELDS) or DEFAULT_RECORD_NAME
            added = append_context_tags(folder, title, context_tags)
            if added:
                self.logger.info("Added context tags", folder=folder.name, tags=added)

        return folder

    @staticmethod
    def _metadata_document(table_config: TableConfig, record: RemoteRecord) -> Dict[str, Any]:
        document = {f: record.values.get(f) for f in table_config.json_export}
        for key in ("name", "sys_name"):
            if record.values.get(key):
                document[key] = record.values[key]
        return document
