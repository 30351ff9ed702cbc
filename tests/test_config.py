"""Tests for configuration loading and validation."""

import json
import logging

import pytest
import yaml

from llm_relay.config import configure_logging, load_config, validate_config


class TestLoadConfig:
    def test_load_defaults(self):
        config = load_config(config_dict={})
        assert config.version == "0.1"
        assert config.log_level == "INFO"
        assert config.output_thinking is True
        assert config.reporter.text_buffer_length == 20
        assert config.reporter.thinking_buffer_length == 20
        assert config.matcher.max_entries == 500
        assert config.matcher.ttl_seconds == 3600.0
        assert config.matcher.similarity_threshold == 90.0
        assert config.matcher.assistant_window == 3
        assert config.continuity.expiry_margin_seconds == 300.0
        assert config.transport.timeout == 60.0

    def test_load_from_dict(self):
        config = load_config(config_dict={
            "log_level": "debug",
            "output_thinking": False,
            "reporter": {"text_buffer_length": 64},
            "matcher": {"max_entries": 10, "assistant_window": 5},
        })
        assert config.log_level == "DEBUG"
        assert config.output_thinking is False
        assert config.reporter.text_buffer_length == 64
        assert config.reporter.thinking_buffer_length == 20
        assert config.matcher.max_entries == 10
        assert config.matcher.assistant_window == 5

    def test_null_sections(self):
        config = load_config(config_dict={"matcher": None})
        assert config.matcher.max_entries == 500

    def test_load_from_yaml_file(self, tmp_path):
        path = tmp_path / "relay.yaml"
        path.write_text(yaml.dump({"transport": {"timeout": 15}, "continuity": {"session_ttl_seconds": 7200}}))
        config = load_config(config_path=path)
        assert config.transport.timeout == 15
        assert config.continuity.session_ttl_seconds == 7200

    def test_load_from_json_file(self, tmp_path):
        path = tmp_path / "llm-relay.json"
        path.write_text(json.dumps({"matcher": {"ttl_seconds": 60}}))
        assert load_config(config_path=path).matcher.ttl_seconds == 60

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(config_path=path).version == "0.1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "nope.yaml")

    def test_discovery(self, tmp_path, monkeypatch):
        (tmp_path / "llm-relay.yaml").write_text("reporter:\n  placeholder_text: '...'\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("LLM_RELAY_CONFIG", raising=False)
        assert load_config().reporter.placeholder_text == "..."

    def test_discovery_stops_at_home(self, tmp_path, monkeypatch):
        (tmp_path / "llm-relay.yaml").write_text("reporter:\n  placeholder_text: '...'\n")
        home = tmp_path / "home"
        nested = home / "project"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.delenv("LLM_RELAY_CONFIG", raising=False)
        assert load_config().reporter.placeholder_text != "..."

    def test_env_var_names_file(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.json"
        path.write_text(json.dumps({"reporter": {"placeholder_text": "env"}}))
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("LLM_RELAY_CONFIG", str(path))
        assert load_config().reporter.placeholder_text == "env"

    def test_env_var_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LLM_RELAY_CONFIG", str(tmp_path / "gone.yaml"))
        with pytest.raises(FileNotFoundError):
            load_config()


class TestValidateConfig:
    def test_defaults_valid(self):
        assert validate_config(load_config(config_dict={})) == []

    def test_bad_log_level(self):
        errors = validate_config(load_config(config_dict={"log_level": "loud"}))
        assert any("log_level" in e for e in errors)

    def test_bad_buffers(self):
        errors = validate_config(load_config(config_dict={
            "reporter": {"text_buffer_length": 0, "placeholder_text": ""},
        }))
        assert "reporter.text_buffer_length must be >= 1" in errors
        assert "reporter.placeholder_text must not be empty" in errors

    def test_bad_matcher(self):
        errors = validate_config(load_config(config_dict={
            "matcher": {"max_entries": 0, "similarity_threshold": 100, "assistant_window": 0},
        }))
        assert len(errors) == 3

    def test_ttl_must_exceed_margin(self):
        errors = validate_config(load_config(config_dict={
            "continuity": {"expiry_margin_seconds": 600, "session_ttl_seconds": 300},
        }))
        assert len(errors) == 1
        assert "session_ttl_seconds" in errors[0]


class TestConfigureLogging:
    def test_level_from_config(self, monkeypatch):
        calls = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.update(kw))
        configure_logging(load_config(config_dict={"log_level": "WARNING"}))
        assert calls["level"] == logging.WARNING

    def test_verbose_overrides(self, monkeypatch):
        calls = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.update(kw))
        configure_logging(load_config(config_dict={"log_level": "ERROR"}), verbose=True)
        assert calls["level"] == logging.DEBUG
