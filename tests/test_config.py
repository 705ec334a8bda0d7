"""
Tests for configuration loading and engine wiring.
"""

import json

import pytest

from alm_engine.audit import JsonlReportSink, MemoryReportSink
from alm_engine.config import DEFAULT_CONFIG, build_engine, build_report_sink, build_store, load_config
from alm_engine.exceptions import ConfigurationError
from alm_engine.store import InMemoryAccountStore, JsonAccountStore, ShadowAccountStore


class TestLoadConfig:

    def test_defaults(self):
        config = load_config(environ={})
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_yaml_file_merges_nested_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("log_level: DEBUG\nstore:\n  min_uid: 2000\n")

        config = load_config(path, environ={})

        assert config["log_level"] == "DEBUG"
        assert config["store"]["min_uid"] == 2000
        assert config["store"]["backend"] == "shadow"

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"store": {"backend": "json", "path": "/tmp/a.json"}}))

        config = load_config(path, environ={})

        assert config["store"]["backend"] == "json"

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("report_dir: /from/file\n")

        config = load_config(path, environ={
            "ALM_REPORT_DIR": "/from/env",
            "ALM_VERBOSE_AUDIT": "yes",
            "ALM_STORE_BACKEND": "memory",
        })

        assert config["report_dir"] == "/from/env"
        assert config["verbose_audit"] is True
        assert config["store"]["backend"] == "memory"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "absent.yaml", environ={})

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("store: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path, environ={})


class TestBuilders:

    def test_build_shadow_store(self):
        store = build_store(load_config(environ={}))
        assert isinstance(store, ShadowAccountStore)
        assert store.min_uid == 1000

    def test_build_json_store(self, tmp_path):
        config = load_config(environ={"ALM_STORE_BACKEND": "json", "ALM_STORE_PATH": str(tmp_path / "a.json")})
        assert isinstance(build_store(config), JsonAccountStore)

    def test_json_store_requires_path(self):
        with pytest.raises(ConfigurationError):
            build_store({"store": {"backend": "json"}})

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            build_store({"store": {"backend": "ldap"}})

    def test_report_sink_selection(self, tmp_path):
        assert isinstance(build_report_sink({"report_dir": str(tmp_path)}), JsonlReportSink)
        assert isinstance(build_report_sink({"report_dir": None}), MemoryReportSink)

    def test_build_engine(self, tmp_path):
        config = load_config(environ={
            "ALM_STORE_BACKEND": "memory",
            "ALM_LOCK_FILE": str(tmp_path / "pass.lock"),
            "ALM_REPORT_DIR": str(tmp_path / "reports"),
            "ALM_VERBOSE_AUDIT": "true",
        })

        engine = build_engine(config)

        assert isinstance(engine.store, InMemoryAccountStore)
        assert engine.pass_lock.lock_file == tmp_path / "pass.lock"
        assert engine.verbose_audit is True
        report = engine.run_pass()
        assert report.exit_code == 0
        assert engine.report_sink.latest_report().pass_id == report.pass_id

    def test_build_engine_with_given_store(self, tmp_path):
        store = InMemoryAccountStore()
        engine = build_engine({"lock_file": None, "report_dir": None}, store=store)
        assert engine.store is store
