"""
Tests for Configuration
=======================

Tests for safetygate/config.py
"""

import json
import tempfile
from pathlib import Path

import pytest

from safetygate.config import SafetyConfig


@pytest.fixture
def clean_env(monkeypatch):
    """Remove SAFETYGATE_* variables and keep load_dotenv from reading a stray .env."""
    import os
    for key in list(os.environ):
        if key.startswith("SAFETYGATE_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr("safetygate.config.load_dotenv", lambda *a, **k: False)


class TestSafetyConfig:
    """Tests for SafetyConfig loading."""

    def test_defaults(self):
        config = SafetyConfig()
        assert config.session_ttl_seconds == 7200
        assert config.intent_ready_threshold == 70
        assert config.attempt_similarity_threshold == 0.7
        assert config.attempt_failure_limit == 2

    def test_from_dict_coerces(self):
        config = SafetyConfig.from_dict({"port": "9000", "session_ttl_hours": "0.5", "unknown": 1})
        assert config.port == 9000
        assert config.session_ttl_seconds == 1800

    def test_from_dict_ignores_bad_values(self, caplog):
        config = SafetyConfig.from_dict({"intent_max_rounds": "many"})
        assert config.intent_max_rounds == 5
        assert "intent_max_rounds" in caplog.text

    def test_load_file_then_env(self, clean_env, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "safetygate_config.json"
            path.write_text(json.dumps({"port": 9100, "data_dir": "/tmp/gates"}))
            monkeypatch.setenv("SAFETYGATE_PORT", "9200")

            config = SafetyConfig.load(path)

        assert config.port == 9200
        assert config.data_dir == "/tmp/gates"

    def test_load_malformed_file(self, clean_env):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "safetygate_config.json"
            path.write_text("{not json")
            config = SafetyConfig.load(path)
        assert config.port == SafetyConfig().port

    def test_missing_file_uses_defaults(self, clean_env):
        config = SafetyConfig.load(Path("/nonexistent/safetygate_config.json"))
        assert config == SafetyConfig()
