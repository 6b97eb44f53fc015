"""Tests for watch mode dispatch."""

import asyncio
import os

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from watchfiles import Change

from snsync.api_clients.base import AuthenticationError, RemoteAPIError
from snsync.core.push_engine import PushEngine, PushResult
from snsync.core.watcher import FieldFileFilter, FolderWatcher

from conftest import make_record_folder


@pytest.fixture
def push_engine():
    engine = MagicMock(spec=PushEngine)
    engine.push_file.return_value = PushResult(uploaded=1)
    engine.create_record.return_value = PushResult(created=1)
    return engine


@pytest.fixture
def watcher(push_engine, local_folder, sync_config):
    return FolderWatcher(push_engine, local_folder, sync_config)


class TestFieldFileFilter:

    @pytest.mark.parametrize("name", ["script.js", "template.html", "style.scss", "_record.json", "notes.txt"])
    def test_watched_extensions(self, name):
        path = os.path.join("project", "src", "sp_widget", "W", name)
        assert FieldFileFilter()(Change.modified, path)

    @pytest.mark.parametrize("name", ["image.png", "script.py", ".sys_id"])
    def test_other_files_ignored(self, name):
        path = os.path.join("project", "src", "sp_widget", "W", name)
        assert not FieldFileFilter()(Change.modified, path)

    def test_context_namespace_ignored(self):
        path = os.path.join("project", "src", "incident", ".ai_context", "_schema.incident.json")
        assert not FieldFileFilter()(Change.modified, path)

    def test_atomic_save_counts_as_change(self):
        path = os.path.join("project", "src", "incident", "Test", "script.js")
        assert FieldFileFilter()(Change.added, path)
        assert FieldFileFilter()(Change.modified, path)

    def test_deletions_ignored(self):
        path = os.path.join("project", "src", "incident", "Test", "script.js")
        assert not FieldFileFilter()(Change.deleted, path)

    def test_editor_temp_file_ignored(self):
        path = os.path.join("project", "src", "incident", "Test", "script.js.tmp~")
        assert not FieldFileFilter()(Change.added, path)


class TestDispatch:

    @pytest.mark.asyncio
    async def test_existing_record_is_updated(self, watcher, push_engine, local_folder):
        folder = make_record_folder(local_folder, "incident", "Test", sys_id="abc123", files={"script.js": "x"})

        result = await watcher.dispatch(folder / "script.js")

        assert result.uploaded == 1
        push_engine.push_file.assert_awaited_once_with(folder / "script.js")
        push_engine.create_record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_folder_under_creatable_table(self, watcher, push_engine, local_folder):
        folder = make_record_folder(local_folder, "sp_widget", "New_Widget", files={"template.html": "<p/>"})

        result = await watcher.dispatch(str(folder / "template.html"))

        assert result.created == 1
        push_engine.create_record.assert_awaited_once_with(folder, "sp_widget")
        push_engine.push_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_folder_under_context_only_table(self, watcher, push_engine, local_folder):
        folder = make_record_folder(local_folder, "sys_user", "Someone", files={"name.txt": "x"})

        await watcher.dispatch(folder / "name.txt")

        push_engine.create_record.assert_not_awaited()
        push_engine.push_file.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, watcher, push_engine, local_folder):
        folder = make_record_folder(local_folder, "incident", "Test", sys_id="abc123", files={"script.js": "x"})
        push_engine.push_file.side_effect = RemoteAPIError("boom", status=500)

        assert await watcher.dispatch(folder / "script.js") is None

    @pytest.mark.asyncio
    async def test_authentication_error_propagates(self, watcher, push_engine, local_folder):
        folder = make_record_folder(local_folder, "incident", "Test", sys_id="abc123", files={"script.js": "x"})
        push_engine.push_file.side_effect = AuthenticationError("no token")

        with pytest.raises(AuthenticationError):
            await watcher.dispatch(folder / "script.js")


class TestWatchLoop:

    @pytest.mark.asyncio
    async def test_events_handled_sequentially(self, watcher, push_engine, local_folder):
        first = make_record_folder(local_folder, "incident", "A", sys_id="a1", files={"script.js": "a"})
        second = make_record_folder(local_folder, "incident", "B", sys_id="b1", files={"script.js": "b"})
        push_engine.push_file.side_effect = [RemoteAPIError("fail", status=500), PushResult(uploaded=1)]
        seen = {}

        async def fake_awatch(*paths, **kwargs):
            seen.update(paths=paths, **kwargs)
            yield {
                (Change.modified, str(second / "script.js")),
                (Change.modified, str(first / "script.js")),
            }

        stop_event = asyncio.Event()
        with patch("snsync.core.watcher.awatch", fake_awatch):
            await watcher.watch(stop_event=stop_event)

        assert seen["paths"] == (local_folder,)
        assert seen["stop_event"] is stop_event
        assert seen["watch_filter"] is watcher.watch_filter
        assert push_engine.push_file.await_args_list[0].args == (first / "script.js",)
        assert push_engine.push_file.await_args_list[1].args == (second / "script.js",)

    @pytest.mark.asyncio
    async def test_atomic_save_is_pushed(self, watcher, push_engine, local_folder):
        folder = make_record_folder(local_folder, "incident", "Test", sys_id="abc123", files={"script.js": "x"})
        raw = {
            (Change.added, str(folder / "script.js")),
            (Change.deleted, str(folder / "script.js.tmp~")),
            (Change.added, str(folder / "script.js.tmp~")),
        }

        async def fake_awatch(*paths, watch_filter, **kwargs):
            yield {(change, path) for change, path in raw if watch_filter(change, path)}

        with patch("snsync.core.watcher.awatch", fake_awatch):
            await watcher.watch(stop_event=asyncio.Event())

        push_engine.push_file.assert_awaited_once_with(folder / "script.js")
