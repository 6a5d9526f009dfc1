"""Tests for settings loading and logging setup."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from depotdesk.config import Settings, configure_logging, load_settings


class TestSettings:
    def test_defaults(self):
        settings = load_settings({})
        assert settings == Settings()
        assert settings.p4_bin == "p4"
        assert settings.query_concurrency == 5
        assert settings.detail_concurrency == 10
        assert settings.reconcile_limit == 5000
        assert settings.review_url is None

    def test_environment_overrides(self):
        settings = load_settings({
            "DEPOTDESK_P4_BIN": "/opt/perforce/bin/p4",
            "DEPOTDESK_QUERY_CONCURRENCY": "3",
            "DEPOTDESK_RECONCILE_LIMIT": "200",
            "DEPOTDESK_HEARTBEAT_SECONDS": "0.5",
            "DEPOTDESK_REVIEW_URL": "https://swarm.example.com",
            "UNRELATED": "ignored",
        })
        assert settings.p4_bin == "/opt/perforce/bin/p4"
        assert settings.query_concurrency == 3
        assert settings.reconcile_limit == 200
        assert settings.heartbeat_seconds == 0.5
        assert settings.review_url == "https://swarm.example.com"

    def test_empty_values_ignored(self):
        assert load_settings({"DEPOTDESK_QUERY_CONCURRENCY": ""}).query_concurrency == 5

    @pytest.mark.parametrize("key, value", [
        ("DEPOTDESK_QUERY_CONCURRENCY", "0"),
        ("DEPOTDESK_RECONCILE_LIMIT", "lots"),
        ("DEPOTDESK_REVIEW_TIMEOUT", "-1"),
    ])
    def test_invalid_values_rejected(self, key: str, value: str):
        with pytest.raises(ValidationError):
            load_settings({key: value})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("DEPOTDESK_DETAIL_CONCURRENCY", "4")
        assert load_settings().detail_concurrency == 4


class TestLogging:
    @pytest.fixture(autouse=True)
    def _restore_logger(self):
        logger = logging.getLogger("depotdesk")
        handlers, level = list(logger.handlers), logger.level
        yield
        logger.handlers[:] = handlers
        logger.setLevel(level)

    def test_configure_once(self):
        logger = logging.getLogger("depotdesk")
        logger.handlers.clear()
        configure_logging("debug")
        configure_logging("warning")
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEPOTDESK_LOG_LEVEL", "ERROR")
        assert configure_logging().level == logging.ERROR
