"""Shared fixtures for the sn-sync test suite."""

import json
from unittest.mock import MagicMock

import pytest

from snsync.api_clients import TableAPIClient
from snsync.config.loader import ConfigLoader
from snsync.config.settings import InstanceSettings


INSTANCE = "https://dev12345.service-now.com"


def make_settings(**overrides) -> InstanceSettings:
    """Settings that never read the developer's environment or .env file."""
    values = {
        "instance": INSTANCE,
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
    }
    values.update(overrides)
    return InstanceSettings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep SN_* variables of the developer machine out of the tests."""
    for name in ("SN_INSTANCE", "SN_USER", "SN_PASSWORD", "SN_CLIENT_ID",
                 "SN_CLIENT_SECRET", "SN_ENC_SECRET", "SN_REDIRECT_URI"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def mapping_document():
    return {
        "mapping": {
            "incident": {
                "fields": ["script"],
                "ext": {"script": "js"},
                "filter": "active=true"
            },
            "sp_widget": {
                "fields": ["template", "script", "css"],
                "ext": {"template": "html", "script": "js", "css": "scss"},
                "saveContext": True
            },
            "sys_properties": {
                "fields": ["value"],
                "jsonExport": ["name", "type", "description"]
            },
            "sys_user": {
                "onlyContext": True,
                "filter": "sys_idISNOTEMPTY"
            }
        }
    }


@pytest.fixture
def config_loader(tmp_path, mapping_document):
    path = tmp_path / "sn-config.json"
    path.write_text(json.dumps(mapping_document), encoding="utf-8")
    return ConfigLoader(path)


@pytest.fixture
def sync_config(config_loader):
    return config_loader.load()


@pytest.fixture
def local_folder(tmp_path):
    folder = tmp_path / "src"
    folder.mkdir()
    return folder


@pytest.fixture
def table_client():
    """Table API client double; async methods are AsyncMocks."""
    client = MagicMock(spec=TableAPIClient)
    client.record_url.side_effect = lambda table, sys_id: f"{INSTANCE}/{table}/{sys_id}"
    client.list_records.return_value = []
    client.get_dictionary.return_value = []
    client.get_choices.return_value = []
    client.get_number_prefix.return_value = None
    return client


def make_record_folder(local_folder, table, name, sys_id=None, updated_on=None, files=None):
    """Create a record folder as a previous pull would have left it."""
    folder = local_folder / table / name
    folder.mkdir(parents=True, exist_ok=True)
    if sys_id:
        (folder / ".sys_id").write_text(sys_id, encoding="utf-8")
    if updated_on:
        (folder / ".sys_updated_on").write_text(updated_on, encoding="utf-8")
    for filename, content in (files or {}).items():
        (folder / filename).write_text(content, encoding="utf-8")
    return folder
