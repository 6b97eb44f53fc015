"""Tests for settings, the mapping schema and the mapping loader."""

import json

import pytest
import yaml

from snsync.config import (
    AuthMode,
    ConfigLoader,
    ConfigurationError,
    ProjectLayout,
    SyncConfig,
    TableConfig,
    load_settings,
)

from conftest import make_settings


class TestInstanceSettings:
    """Auth mode resolution and derived URLs."""

    def test_browser_mode_with_client_id_only(self):
        assert make_settings().auth_mode == AuthMode.OAUTH_BROWSER

    def test_password_selects_basic_mode(self):
        settings = make_settings(user="admin", password="pw")
        assert settings.auth_mode == AuthMode.BASIC

    def test_nothing_configured(self):
        settings = make_settings(client_id=None)
        assert settings.auth_mode == AuthMode.UNKNOWN

    def test_endpoints(self):
        settings = make_settings(instance="https://dev1.service-now.com/")

        assert settings.base_url == "https://dev1.service-now.com"
        assert settings.token_url == "https://dev1.service-now.com/oauth_token.do"
        assert settings.authorize_url == "https://dev1.service-now.com/oauth_auth.do"
        assert settings.redirect_uri == "http://localhost:3000/callback"
        assert settings.redirect_port == 3000
        assert settings.record_limit == 100

    def test_load_settings_reads_project_env(self, tmp_path):
        (tmp_path / ".env").write_text(
            "SN_INSTANCE=https://dev2.service-now.com\n"
            "SN_CLIENT_ID=abc\n"
            "SN_ENC_SECRET=shh\n",
            encoding="utf-8"
        )

        settings = load_settings(tmp_path)

        assert settings.base_url == "https://dev2.service-now.com"
        assert settings.client_id == "abc"
        assert settings.enc_secret == "shh"
        assert settings.auth_mode == AuthMode.OAUTH_BROWSER


class TestTableConfig:
    """Table mapping entries."""

    def test_defaults_and_filenames(self):
        table = TableConfig.model_validate({"fields": ["script", "description"], "ext": {"script": ".js"}})

        assert table.filename_for("script") == "script.js"
        assert table.filename_for("description") == "description.txt"
        assert table.creatable

    def test_camel_case_aliases(self):
        table = TableConfig.model_validate({
            "saveContext": True,
            "onlyContext": True,
            "jsonExport": ["name"],
            "contextKeys": ["sys_class_name"],
        })

        assert table.save_context and table.only_context
        assert table.json_export == ["name"]
        assert table.context_keys == ["sys_class_name"]
        assert not table.creatable

    def test_json_fields_synonym(self):
        table = TableConfig.model_validate({"jsonFields": ["name", "type"]})
        assert table.json_export == ["name", "type"]

    def test_to_document_round_trip(self):
        document = {"fields": ["script"], "ext": {"script": "js"}, "saveContext": True}
        assert TableConfig.model_validate(document).to_document() == document


class TestConfigLoader:
    """Loading the mapping document in both shapes."""

    def test_wrapped_document(self, config_loader):
        config = config_loader.load()

        assert config.wrapped
        assert config.tables == ["incident", "sp_widget", "sys_properties", "sys_user"]
        assert config.mapping["incident"].filter == "active=true"
        assert set(config.creatable_tables()) == {"incident", "sp_widget", "sys_properties"}

    def test_bare_document(self, tmp_path):
        path = tmp_path / "sn-config.json"
        path.write_text(json.dumps({"incident": {"fields": ["script"]}}), encoding="utf-8")

        config = ConfigLoader(path).load()

        assert not config.wrapped
        assert config.has_table("incident")

    def test_yaml_document(self, tmp_path):
        path = tmp_path / "sn-config.yaml"
        path.write_text(yaml.safe_dump({"mapping": {"sp_widget": {"fields": ["template"]}}}), encoding="utf-8")

        config = ConfigLoader(path).load()

        assert config.get_table("sp_widget").fields == ["template"]

    def test_missing_document_is_empty(self, tmp_path):
        config = ConfigLoader(tmp_path / "sn-config.json").load()
        assert config.mapping == {}

    def test_duplicate_table_is_rejected(self, tmp_path):
        path = tmp_path / "sn-config.json"
        path.write_text(
            '{"mapping": {"incident": {"fields": []}, "incident": {"fields": ["script"]}}}',
            encoding="utf-8"
        )

        with pytest.raises(ConfigurationError):
            ConfigLoader(path).load()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "sn-config.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ConfigLoader(path).load()

    def test_invalid_table_entry(self, tmp_path):
        path = tmp_path / "sn-config.json"
        path.write_text(json.dumps({"mapping": {"incident": {"fields": "script"}}}), encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ConfigLoader(path).load()

    def test_add_context_tables_persists(self, config_loader):
        config = config_loader.load()

        added = config_loader.add_context_tables(config, ["cmn_location", "sys_user", "cmn_location"])

        assert added == ["cmn_location"]
        assert config.get_table("cmn_location").only_context
        saved = json.loads(config_loader.file_path.read_text(encoding="utf-8"))
        assert saved["mapping"]["cmn_location"] == {"filter": "sys_idISNOTEMPTY", "onlyContext": True}
        assert saved["mapping"]["incident"]["ext"] == {"script": "js"}

    def test_save_keeps_bare_shape(self, tmp_path):
        path = tmp_path / "sn-config.json"
        loader = ConfigLoader(path)
        config = SyncConfig(wrapped=False)

        loader.add_context_tables(config, ["sys_user"])

        assert json.loads(path.read_text(encoding="utf-8")) == {
            "sys_user": {"filter": "sys_idISNOTEMPTY", "onlyContext": True}
        }


class TestProjectLayout:
    """Paths derived from the project root."""

    def test_paths(self, tmp_path):
        layout = ProjectLayout.from_root(tmp_path)

        assert layout.local_folder == tmp_path.resolve() / "src"
        assert layout.token_cache.name == ".token_cache.json"
        assert layout.mapping_file.name == "sn-config.json"
        assert layout.table_dir("incident") == tmp_path.resolve() / "src" / "incident"

    def test_yaml_mapping_file_detected(self, tmp_path):
        (tmp_path / "sn-config.yml").write_text("mapping: {}\n", encoding="utf-8")
        assert ProjectLayout.from_root(tmp_path).mapping_file.name == "sn-config.yml"
