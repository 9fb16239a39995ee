"""Unit tests for the shared libs: settings, logging, datetime and currency helpers."""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from libs.common.config import Settings
from libs.common.currency import format_centavos
from libs.common.datetime_utils import ensure_utc, parse_iso8601
from libs.common.logging import JsonFormatter, clear_log_context, set_log_context
from pydantic import ValidationError


@pytest.mark.unit
def test_settings_defaults():
    settings = Settings(_env_file=None)

    assert settings.POLL_INTERVAL_MS == 6000
    assert settings.GRACE_WINDOW_MS == 600_000
    assert settings.DEFAULT_INTENT_TTL_MS == 300_000
    assert settings.VOID_ON_CANCEL is False


@pytest.mark.unit
def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("GATEWAY_URL", "https://gateway.example/api/")
    monkeypatch.setenv("GRACE_WINDOW_MS", "120000")
    monkeypatch.setenv("VOID_ON_CANCEL", "true")

    settings = Settings(_env_file=None)

    assert settings.GATEWAY_URL == "https://gateway.example/api"
    assert settings.GRACE_WINDOW_MS == 120_000
    assert settings.VOID_ON_CANCEL is True


@pytest.mark.unit
def test_settings_reject_negative_durations(monkeypatch):
    monkeypatch.setenv("POLL_INTERVAL_MS", "-1")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.unit
def test_json_formatter_includes_reconciliation_context():
    record = logging.LogRecord(
        name="reconciliation",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Finalized intent %s",
        args=("pi_1",),
        exc_info=None,
    )
    record.extra_fields = {"attempt": 2}

    set_log_context(purpose="wallet_cashin", intent_id="pi_1")
    try:
        line = json.loads(JsonFormatter().format(record))
    finally:
        clear_log_context()

    assert line["message"] == "Finalized intent pi_1"
    assert line["level"] == "INFO"
    assert line["purpose"] == "wallet_cashin"
    assert line["intent_id"] == "pi_1"
    assert line["attempt"] == 2


@pytest.mark.unit
def test_parse_iso8601():
    assert parse_iso8601("2026-03-01T09:05:00Z") == datetime(
        2026, 3, 1, 9, 5, tzinfo=timezone.utc
    )
    assert parse_iso8601("2026-03-01T17:05:00+08:00") == datetime(
        2026, 3, 1, 9, 5, tzinfo=timezone.utc
    )
    assert parse_iso8601(None) is None


@pytest.mark.unit
def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2026, 3, 1, 9, 0)
    manila = datetime(2026, 3, 1, 17, 0, tzinfo=timezone(timedelta(hours=8)))

    assert ensure_utc(naive) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert ensure_utc(manila).tzinfo is timezone.utc


@pytest.mark.unit
def test_format_centavos():
    assert format_centavos(150000) == "₱1,500.00"
    assert format_centavos(5) == "₱0.05"
