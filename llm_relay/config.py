"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .types import (
    ContinuityConfig,
    MatcherConfig,
    RelayConfig,
    ReporterConfig,
    TransportConfig,
)

CONFIG_FILENAMES = [
    "llm-relay.yaml",
    "llm-relay.yml",
    "llm-relay.json",
]

CONFIG_ENV = "LLM_RELAY_CONFIG"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _discover_config() -> Path | None:
    """``$LLM_RELAY_CONFIG`` if set, else the nearest config file from CWD up to home."""
    named = os.environ.get(CONFIG_ENV)
    if named:
        return Path(named).expanduser()
    home = Path.home()
    cwd = Path.cwd()
    for directory in (cwd, *cwd.parents):
        found = [directory / n for n in CONFIG_FILENAMES if (directory / n).is_file()]
        if found:
            return found[0]
        if directory == home:
            return None
    return None


def _build_config(raw: dict[str, Any]) -> RelayConfig:
    """Build a RelayConfig from a raw dict."""
    reporter_raw = raw.get("reporter", {}) or {}
    reporter = ReporterConfig(
        text_buffer_length=reporter_raw.get("text_buffer_length", 20),
        thinking_buffer_length=reporter_raw.get("thinking_buffer_length", 20),
        placeholder_text=reporter_raw.get("placeholder_text", "\n"),
    )

    matcher_raw = raw.get("matcher", {}) or {}
    matcher = MatcherConfig(
        max_entries=matcher_raw.get("max_entries", 500),
        ttl_seconds=matcher_raw.get("ttl_seconds", 3600.0),
        similarity_threshold=matcher_raw.get("similarity_threshold", 90.0),
        assistant_window=matcher_raw.get("assistant_window", 3),
        summary_text_limit=matcher_raw.get("summary_text_limit", 200),
        response_items=matcher_raw.get("response_items", 3),
    )

    continuity_raw = raw.get("continuity", {}) or {}
    continuity = ContinuityConfig(
        expiry_margin_seconds=continuity_raw.get("expiry_margin_seconds", 300.0),
        session_ttl_seconds=continuity_raw.get("session_ttl_seconds", 3600.0),
    )

    transport_raw = raw.get("transport", {}) or {}
    transport = TransportConfig(
        timeout=transport_raw.get("timeout", 60.0),
        connect_timeout=transport_raw.get("connect_timeout", 10.0),
    )

    return RelayConfig(
        version=str(raw.get("version", "0.1")),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        output_thinking=raw.get("output_thinking", True),
        reporter=reporter,
        matcher=matcher,
        continuity=continuity,
        transport=transport,
    )


def validate_config(config: RelayConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.log_level not in _LOG_LEVELS:
        errors.append(f"log_level must be one of {sorted(_LOG_LEVELS)}, got '{config.log_level}'")

    if config.reporter.text_buffer_length < 1:
        errors.append("reporter.text_buffer_length must be >= 1")
    if config.reporter.thinking_buffer_length < 1:
        errors.append("reporter.thinking_buffer_length must be >= 1")
    if not config.reporter.placeholder_text:
        errors.append("reporter.placeholder_text must not be empty")

    m = config.matcher
    if m.max_entries < 1:
        errors.append("matcher.max_entries must be >= 1")
    if m.ttl_seconds <= 0:
        errors.append("matcher.ttl_seconds must be > 0")
    if not 0 <= m.similarity_threshold < 100:
        errors.append(
            f"matcher.similarity_threshold ({m.similarity_threshold}) must be in [0, 100)"
        )
    if m.assistant_window < 1:
        errors.append("matcher.assistant_window must be >= 1")
    if m.summary_text_limit < 1:
        errors.append("matcher.summary_text_limit must be >= 1")

    c = config.continuity
    if c.expiry_margin_seconds < 0:
        errors.append("continuity.expiry_margin_seconds must be >= 0")
    if c.session_ttl_seconds <= c.expiry_margin_seconds:
        errors.append(
            f"continuity.session_ttl_seconds ({c.session_ttl_seconds}) must be > "
            f"expiry_margin_seconds ({c.expiry_margin_seconds})"
        )

    if config.transport.timeout <= 0:
        errors.append("transport.timeout must be > 0")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> RelayConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)


def configure_logging(config: RelayConfig, verbose: bool = False) -> None:
    """Install a root handler at the configured level (CLI use only)."""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
