"""Main connector orchestrating pull, push, open and watch for one project."""

import asyncio
import webbrowser
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from .layout import record_identity
from .pull_engine import PullEngine, PullResult
from .push_engine import PushEngine, PushResult
from .schema_capture import SchemaCapture
from .watcher import FolderWatcher
from ..api_clients import TableAPIClient
from ..auth import OAuthHandler, TokenStore
from ..config.loader import ConfigLoader
from ..config.schema import ProjectLayout, SyncConfig
from ..config.settings import InstanceSettings, load_settings
from ..utils.logging import get_logger, log_async_execution_time


class SyncConnector:
    """Owns the HTTP sessions and engines for a single project root."""

    def __init__(
        self,
        project_root: Union[str, Path],
        settings: Optional[InstanceSettings] = None,
        config: Optional[SyncConfig] = None,
        client: Optional[TableAPIClient] = None,
        interactive: Optional[bool] = None,
        open_browser: Callable[[str], object] = webbrowser.open
    ):
        """Initialize the connector.

        Args:
            project_root: Directory holding the mapping document, .env and src/
            settings: Instance settings; loaded from the project's .env when omitted
            config: Table mapping; loaded from the mapping document when omitted
            client: Pre-built table API client
            interactive: Whether prompts may be shown; defaults to TTY detection
            open_browser: Opens URLs for login and ``open``
        """
        self.layout = ProjectLayout.from_root(project_root)
        self.settings = settings or load_settings(self.layout.root)
        self.config_loader = ConfigLoader(self.layout.mapping_file)
        self.config = config if config is not None else self.config_loader.load()
        self.open_browser = open_browser
        self.logger = get_logger(self.__class__.__name__)

        self.token_store = TokenStore(self.layout.token_cache, self.settings.enc_secret)
        self.oauth_handler = OAuthHandler(self.settings, self.token_store, open_browser=open_browser)
        self.client = client or TableAPIClient(self.settings, oauth_handler=self.oauth_handler)

        local_folder = self.layout.local_folder
        self.schema_capture = SchemaCapture(self.client, local_folder, self.config)
        self.pull_engine = PullEngine(
            self.client,
            local_folder,
            self.config,
            config_loader=self.config_loader,
            schema_capture=self.schema_capture,
            record_limit=self.settings.record_limit,
            interactive=interactive
        )
        self.push_engine = PushEngine(self.client, local_folder, self.config)
        self.watcher = FolderWatcher(self.push_engine, local_folder, self.config)

        self.logger.info(
            "Connector initialized",
            root=str(self.layout.root),
            instance=self.settings.base_url,
            auth_mode=self.settings.auth_mode.value,
            tables=len(self.config.mapping)
        )

    async def __aenter__(self):
        """Async context manager entry."""
        await self.oauth_handler.__aenter__()
        await self.client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        await self.client.close()
        await self.oauth_handler.close()

    @log_async_execution_time
    async def pull(
        self,
        table: Optional[str] = None,
        query: Optional[str] = None,
        target: Optional[Union[str, Path]] = None,
        context_tags: Optional[Sequence[str]] = None
    ) -> PullResult:
        """Pull all tables, one table, or the single record `target` belongs to."""
        if target:
            return await self.pull_engine.pull_target(self._resolve_path(target), context_tags)
        return await self.pull_engine.pull(table=table, query=query, context_tags=context_tags)

    @log_async_execution_time
    async def push(
        self,
        target: Optional[Union[str, Path]] = None,
        table: Optional[str] = None,
        name: Optional[str] = None,
        all_new: bool = False
    ) -> PushResult:
        """Push a path, a record by table and name, a whole table, or every new record.

        Without any argument, every new record is created.
        """
        if all_new or not (target or table):
            return await self.push_engine.push_all_new()

        if target:
            path = self._resolve_path(target)
        elif name:
            path = self.layout.table_dir(table) / name
        else:
            path = self.layout.table_dir(table)

        return await self.push_engine.push(path, table=table)

    def resolve_record_url(self, target: Union[str, Path]) -> str:
        """Instance UI URL of the record a local file or folder belongs to."""
        table, sys_id = record_identity(self._resolve_path(target))
        return self.client.record_url(table, sys_id)

    def open_record(self, target: Union[str, Path]) -> str:
        url = self.resolve_record_url(target)
        self.logger.info("Opening record", url=url)
        self.open_browser(url)
        return url

    async def watch(self, stop_event: Optional[asyncio.Event] = None) -> None:
        await self.watcher.watch(stop_event=stop_event)

    def _resolve_path(self, target: Union[str, Path]) -> Path:
        """Relative targets are taken from the project root."""
        path = Path(target)
        return path if path.is_absolute() else self.layout.root / path
