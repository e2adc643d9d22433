"""Tests for structlog configuration."""

from __future__ import annotations

import json
import logging

import structlog

from lexrag.logging_setup import configure_logging


def test_events_render_as_json_lines(caplog):
    configure_logging("INFO", json=True)
    caplog.set_level(logging.INFO)

    structlog.get_logger("lexrag.test").info("ledger.purchase_credited", tokens=5000)

    event = json.loads(caplog.records[-1].getMessage())
    assert event["event"] == "ledger.purchase_credited"
    assert event["tokens"] == 5000
    assert event["level"] == "info"
    assert event["logger"] == "lexrag.test"


def test_debug_events_filtered_at_info(caplog):
    configure_logging("INFO", json=True)
    caplog.set_level(logging.INFO)
    structlog.get_logger("lexrag.test").debug("conversation.created")
    assert not any("conversation.created" in r.getMessage() for r in caplog.records)
