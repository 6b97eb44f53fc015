"""Push engine: uploads changed field files and creates records from new folders."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..api_clients import TableAPIClient, raw_value
from ..api_clients.base import AuthenticationError, RemoteAPIError
from ..config.schema import SyncConfig, TableConfig
from .layout import (
    CONTEXT_NOTES,
    ID_MARKER,
    METADATA_DOCUMENTS,
    VERSION_MARKER,
    PathEncoding,
    RecordNotFoundError,
    has_id_marker,
    in_context_namespace,
    is_hidden,
    metadata_filename,
    parse_field_path,
    read_json_document,
    read_marker,
    seed_context_notes,
    write_json_document,
    write_marker,
)
from ..utils.logging import get_logger, log_async_execution_time

NON_FIELD_DOCUMENTS = (*METADATA_DOCUMENTS, CONTEXT_NOTES)


class PushAction(str, Enum):
    """What a push target resolves to."""
    UPDATE = "update"
    CREATE = "create"
    UPDATE_ALL = "update_all"
    BULK_CREATE = "bulk_create"
    IGNORE = "ignore"


@dataclass(frozen=True)
class PushPlan:
    action: PushAction
    path: Path
    table: Optional[str] = None


@dataclass
class PushResult:
    """Result of a push operation."""

    uploaded: int = 0
    created: int = 0
    skipped: int = 0
    conflicts: int = 0
    failed: int = 0
    created_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def merge(self, other: "PushResult") -> "PushResult":
        self.uploaded += other.uploaded
        self.created += other.created
        self.skipped += other.skipped
        self.conflicts += other.conflicts
        self.failed += other.failed
        self.created_ids.extend(other.created_ids)
        self.errors.extend(other.errors)
        return self


class PushEngine:
    """Uploads local changes, guarded by the record's last known version."""

    def __init__(self, client: TableAPIClient, local_folder: Path, config: SyncConfig):
        self.client = client
        self.local_folder = Path(local_folder)
        self.config = config
        self.logger = get_logger(self.__class__.__name__)

    def classify(self, target: Union[str, Path], table: Optional[str] = None) -> PushPlan:
        """Decide what pushing `target` means.

        Args:
            target: File or directory inside the working tree
            table: Table to assume for a record directory whose parent is not mapped
        """
        target = Path(target)

        if target.is_file():
            folder = target.parent
            if not has_id_marker(folder):
                grandparent = folder.parent.name
                if self.config.has_table(grandparent):
                    return PushPlan(PushAction.CREATE, folder, grandparent)
            parsed = parse_field_path(target)
            if parsed and self.config.has_table(parsed.table):
                return PushPlan(PushAction.UPDATE, target, parsed.table)
            return PushPlan(PushAction.IGNORE, target)

        if target.is_dir():
            parent = target.parent.name
            record_table = parent if self.config.has_table(parent) else None
            if not record_table and table and table != target.name:
                record_table = table
            if record_table and self.config.has_table(record_table):
                action = PushAction.UPDATE_ALL if has_id_marker(target) else PushAction.CREATE
                return PushPlan(action, target, record_table)
            if self.config.has_table(target.name):
                return PushPlan(PushAction.BULK_CREATE, target, target.name)
            return PushPlan(PushAction.IGNORE, target)

        raise RecordNotFoundError(f"Path not found: {target}")

    @log_async_execution_time
    async def push(self, target: Union[str, Path], table: Optional[str] = None) -> PushResult:
        """Classify a target and run the matching operation."""
        plan = self.classify(target, table)
        self.logger.info("Push target resolved", action=plan.action.value, path=str(plan.path), table=plan.table)

        if plan.action == PushAction.UPDATE:
            return await self._guarded(self.push_file, plan.path)
        if plan.action == PushAction.CREATE:
            return await self._guarded(self.create_record, plan.path, plan.table)
        if plan.action == PushAction.UPDATE_ALL:
            return await self.push_record(plan.path)
        if plan.action == PushAction.BULK_CREATE:
            return await self.bulk_create(plan.path, plan.table)

        if Path(target).is_dir():
            raise RecordNotFoundError(
                f"Folder '{Path(target).name}' is neither a mapped table nor a record inside one"
            )
        self.logger.debug("Ignoring file outside mapped tables", path=str(target))
        return PushResult(skipped=1)

    async def _guarded(self, operation, *args) -> PushResult:
        """Run one item; its failure is recorded instead of raised."""
        try:
            return await operation(*args)
        except AuthenticationError:
            raise
        except ConflictError as e:
            self.logger.error("Version conflict, upload blocked", error=str(e))
            return PushResult(conflicts=1, errors=[str(e)])
        except (SyncEngineError, RecordNotFoundError, RemoteAPIError, OSError) as e:
            self.logger.error("Push failed", error=str(e))
            return PushResult(failed=1, errors=[str(e)])

    async def push_file(self, file_path: Union[str, Path]) -> PushResult:
        """Upload one field file to its record.

        Raises:
            ConflictError: If the remote record changed since the last pull
        """
        file_path = Path(file_path)

        if is_hidden(file_path) or in_context_namespace(file_path) or file_path.name in NON_FIELD_DOCUMENTS:
            return PushResult(skipped=1)

        parsed = parse_field_path(file_path)
        if not parsed or not self.config.has_table(parsed.table):
            self.logger.debug("Not a mapped field file, skipping", path=str(file_path))
            return PushResult(skipped=1)

        self.logger.info("Uploading field", table=parsed.table, field=parsed.field, sys_id=parsed.sys_id)

        # Legacy files share the table folder, so only folder records carry a version marker.
        tracked = parsed.encoding == PathEncoding.FOLDER
        local_version = read_marker(parsed.record_dir, VERSION_MARKER) if tracked else None
        if local_version:
            await self._check_version(parsed.table, parsed.sys_id, local_version)

        content = file_path.read_text(encoding="utf-8")
        updated = await self.client.update_record(parsed.table, parsed.sys_id, {parsed.field: content})

        new_version = raw_value(updated.get("sys_updated_on"))
        if tracked and new_version:
            write_marker(parsed.record_dir, VERSION_MARKER, new_version)

        self.logger.info(
            "Saved to instance",
            table=parsed.table,
            field=parsed.field,
            url=self.client.record_url(parsed.table, parsed.sys_id)
        )
        return PushResult(uploaded=1)

    async def _check_version(self, table: str, sys_id: str, local_version: str) -> None:
        try:
            current = await self.client.get_record(
                table, sys_id, fields=["sys_updated_on", "sys_updated_by"], display_value="false"
            )
        except RemoteAPIError as e:
            self.logger.warning(
                "Could not check conflicts on server, proceeding at your own risk",
                table=table,
                sys_id=sys_id,
                error=str(e)
            )
            return

        remote_version = raw_value(current.get("sys_updated_on"))
        if remote_version and remote_version != local_version:
            raise ConflictError(
                table=table,
                sys_id=sys_id,
                local_version=local_version,
                remote_version=remote_version,
                updated_by=raw_value(current.get("sys_updated_by"))
            )

    async def push_record(self, record_dir: Union[str, Path]) -> PushResult:
        """Upload every non-hidden file of a record folder."""
        record_dir = Path(record_dir)
        result = PushResult()
        self.logger.info("Updating record", folder=record_dir.name)

        for file_path in sorted(record_dir.iterdir()):
            if is_hidden(file_path) or not file_path.is_file():
                continue
            result.merge(await self._guarded(self.push_file, file_path))
        return result

    def _assert_direct_child(self, folder: Path, table: str) -> None:
        expected_parent = (self.local_folder / table).resolve()
        if folder.resolve().parent != expected_parent:
            raise UnsafePathError(f"Invalid path: folder must be directly inside {table}/ (got {folder})")

    def build_create_payload(self, folder: Path, table_config: Optional[TableConfig]) -> Dict[str, Any]:
        """Field files first, then metadata documents; the first source to set a key wins."""
        payload: Dict[str, Any] = {}

        if table_config:
            for field_name in table_config.fields:
                field_path = folder / table_config.filename_for(field_name)
                if field_path.is_file():
                    payload[field_name] = field_path.read_text(encoding="utf-8")

        for document_name in METADATA_DOCUMENTS:
            document_path = folder / document_name
            if not document_path.is_file():
                continue
            try:
                document = read_json_document(document_path)
            except ValueError as e:
                self.logger.warning("Invalid JSON metadata, ignoring", file=document_name, error=str(e))
                continue
            for key, value in document.items():
                if payload.get(key) is None:
                    payload[key] = raw_value(value)

        return payload

    async def create_record(self, folder: Union[str, Path], table: str) -> PushResult:
        """Create a record from a folder that has no id marker yet.

        Raises:
            UnsafePathError: If the folder is not a direct child of the table folder
            EmptyPayloadError: If the folder holds no field files or metadata
        """
        folder = Path(folder)
        self._assert_direct_child(folder, table)

        record_name = folder.name
        table_config = self.config.get_table(table)
        self.logger.info("Creating new record", table=table, folder=record_name)

        payload = self.build_create_payload(folder, table_config)
        if not payload:
            raise EmptyPayloadError(f"No data found to create a record from {folder} (check field or JSON files)")
        if payload.get("name") is None:
            payload["name"] = record_name

        created = await self.client.create_record(table, payload)
        sys_id = raw_value(created.get("sys_id"))
        if not sys_id:
            raise SyncEngineError(f"Instance did not return a sys_id for the new {table} record")

        write_marker(folder, ID_MARKER, sys_id)
        updated_on = raw_value(created.get("sys_updated_on"))
        if updated_on:
            write_marker(folder, VERSION_MARKER, updated_on)

        display_name = raw_value(created.get("name")) or raw_value(created.get("api_name")) or record_name
        self._write_identity_document(folder, table, sys_id, display_name)

        if table_config and table_config.save_context:
            seed_context_notes(folder, display_name)

        self.logger.info("Record created", table=table, sys_id=sys_id, url=self.client.record_url(table, sys_id))
        return PushResult(created=1, created_ids=[sys_id])

    def _write_identity_document(self, folder: Path, table: str, sys_id: str, display_name: str) -> None:
        document_path = folder / metadata_filename(table)
        document: Dict[str, Any] = {}
        if document_path.is_file():
            try:
                document = read_json_document(document_path)
            except ValueError as e:
                self.logger.warning("Replacing unreadable metadata document", file=document_path.name, error=str(e))

        document["sys_id"] = {"value": sys_id, "display_value": sys_id}
        document["name"] = {"value": display_name, "display_value": display_name}
        write_json_document(document_path, document)

    async def bulk_create(self, table_dir: Union[str, Path], table: str) -> PushResult:
        """Create records for children of a table folder that lack an id marker.

        Existing records are left untouched even if their files changed.
        """
        table_dir = Path(table_dir)
        result = PushResult()
        self.logger.info("Scanning table folder for new records", table=table)

        for child in sorted(table_dir.iterdir()):
            if not child.is_dir() or is_hidden(child):
                continue
            if has_id_marker(child):
                result.skipped += 1
                continue
            result.merge(await self._guarded(self.create_record, child, table))
        return result

    @log_async_execution_time
    async def push_all_new(self) -> PushResult:
        """Bulk-create across every table that accepts new records."""
        result = PushResult()
        for table in self.config.creatable_tables():
            table_dir = self.local_folder / table
            if table_dir.is_dir():
                result.merge(await self.bulk_create(table_dir, table))

        self.logger.info(
            "Pushed new records",
            created=result.created,
            skipped=result.skipped,
            failed=result.failed
        )
        return result


class SyncEngineError(Exception):
    """Base exception for push engine errors."""
    pass


class ConflictError(SyncEngineError):
    """Raised when the remote record changed since this tool last saw it."""

    def __init__(
        self,
        table: str,
        sys_id: str,
        local_version: str,
        remote_version: str,
        updated_by: Optional[str] = None
    ):
        self.table = table
        self.sys_id = sys_id
        self.local_version = local_version
        self.remote_version = remote_version
        self.updated_by = updated_by
        by = f" by {updated_by}" if updated_by else ""
        super().__init__(
            f"Version conflict on {table}/{sys_id}: local {local_version}, "
            f"server {remote_version}{by}. Save your changes elsewhere, pull and re-apply."
        )


class EmptyPayloadError(SyncEngineError):
    """Raised when a new-record folder has nothing to upload."""
    pass


class UnsafePathError(SyncEngineError):
    """Raised when a new-record folder is not a direct child of its table folder."""
    pass
