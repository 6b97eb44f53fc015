"""Watch mode: pushes field files as soon as they are saved."""

import asyncio
from pathlib import Path
from typing import Optional, Union

from watchfiles import Change, DefaultFilter, awatch

from ..api_clients.base import AuthenticationError
from ..config.schema import SyncConfig
from .layout import CONTEXT_DIR, has_id_marker
from .push_engine import PushEngine, PushResult
from ..utils.logging import get_logger

WATCHED_EXTENSIONS = (".js", ".html", ".css", ".xml", ".scss", ".json", ".txt")


class FieldFileFilter(DefaultFilter):
    """Saved text-like files outside the context namespace.

    Editors that save atomically (temp file renamed over the target) produce `added`.
    """

    ignore_dirs = (*DefaultFilter.ignore_dirs, CONTEXT_DIR)

    def __init__(self, extensions=WATCHED_EXTENSIONS):
        self.extensions = tuple(extensions)
        super().__init__()

    def __call__(self, change: Change, path: str) -> bool:
        return (
            change in (Change.added, Change.modified)
            and path.endswith(self.extensions)
            and super().__call__(change, path)
        )


class FolderWatcher:
    """Dispatches change events under the working tree to the push engine, one at a time."""

    def __init__(self, push_engine: PushEngine, local_folder: Path, config: SyncConfig):
        self.push_engine = push_engine
        self.local_folder = Path(local_folder)
        self.config = config
        self.watch_filter = FieldFileFilter()
        self.logger = get_logger(self.__class__.__name__)

    async def dispatch(self, path: Union[str, Path]) -> Optional[PushResult]:
        """Create or update the record a changed file belongs to.

        Failures are logged; only credential failures propagate.
        """
        path = Path(path)
        folder = path.parent
        table = folder.parent.name

        try:
            if not has_id_marker(folder):
                table_config = self.config.get_table(table)
                if table_config and table_config.creatable:
                    self.logger.info("New record folder detected", table=table, folder=folder.name)
                    return await self.push_engine.create_record(folder, table)
            return await self.push_engine.push_file(path)
        except AuthenticationError:
            raise
        except Exception as e:
            self.logger.error("Error handling change", path=str(path), error=str(e))
            return None

    async def watch(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Watch the working tree until `stop_event` is set or the task is cancelled."""
        self.local_folder.mkdir(parents=True, exist_ok=True)
        self.logger.info("Watching for changes", path=str(self.local_folder))

        async for changes in awatch(
            self.local_folder,
            watch_filter=self.watch_filter,
            stop_event=stop_event,
            recursive=True
        ):
            for _, changed_path in sorted(changes, key=lambda c: c[1]):
                await self.dispatch(changed_path)

        self.logger.info("Watcher stopped")
