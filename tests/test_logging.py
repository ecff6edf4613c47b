"""
Tests for vaisync/utils/logging.py - JSON log lines with correlation IDs.
"""
import io
import json
import logging
import sys
import uuid

import pytest

from vaisync.utils.logging import (
    StructuredJsonFormatter,
    configure_structured_logging,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
    webhook_context,
)


def _record(msg="hello %s", args=("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("vaisync.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    def test_generate_is_32_hex(self):
        cid = generate_correlation_id()
        assert len(cid) == 32
        int(cid, 16)

    def test_set_and_get(self):
        set_correlation_id("cid-xyz")
        assert get_correlation_id() == "cid-xyz"


class TestStructuredJsonFormatter:
    def test_single_line_json(self):
        set_correlation_id("cid-log")
        line = StructuredJsonFormatter().format(_record())

        entry = json.loads(line)
        assert "\n" not in line
        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["module"] == "vaisync.test"
        assert entry["correlation_id"] == "cid-log"

    def test_promotes_webhook_identifiers(self):
        entry = json.loads(StructuredJsonFormatter().format(
            _record(event_id="e-1", delivery_id="d-1", vai_number="VAI-1", unrelated="x")
        ))

        assert entry["event_id"] == "e-1"
        assert entry["delivery_id"] == "d-1"
        assert entry["vai_number"] == "VAI-1"
        assert "unrelated" not in entry

    def test_includes_exception(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredJsonFormatter().format(record))
        assert "ValueError: bad row" in entry["exception"]

    def test_record_correlation_id_wins_over_context(self):
        set_correlation_id("cid-context")
        entry = json.loads(StructuredJsonFormatter().format(_record(correlation_id="cid-worker")))

        assert entry["correlation_id"] == "cid-worker"


class TestWebhookContext:
    def test_drops_unset_and_stringifies(self):
        delivery_id = uuid.uuid4()

        ctx = webhook_context(delivery_id=delivery_id, target_endpoint=None)

        assert ctx == {"delivery_id": str(delivery_id)}

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValueError, match="partner_id"):
            webhook_context(event_id="e-1", partner_id="x")

    def test_fields_reach_json_output(self):
        logger = logging.getLogger("vaisync.test.context")
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredJsonFormatter())
        logger.addHandler(handler)
        try:
            logger.warning("queued", extra=webhook_context(event_id="e-9", event_type="vai.expired"))
        finally:
            logger.removeHandler(handler)

        entry = json.loads(stream.getvalue())
        assert entry["event_id"] == "e-9"
        assert entry["event_type"] == "vai.expired"


class TestConfigureStructuredLogging:
    def _restore_root(self):
        root = logging.getLogger()
        return root, root.handlers[:], root.level

    def test_json_format_installs_single_handler(self):
        root, handlers, level = self._restore_root()
        try:
            configure_structured_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        finally:
            root.handlers[:] = handlers
            root.setLevel(level)

    def test_text_format_renders_correlation_id(self):
        root, handlers, level = self._restore_root()
        try:
            configure_structured_logging("INFO", "text")
            handler = root.handlers[0]
            set_correlation_id("cid-text")
            record = _record()
            handler.filter(record)

            line = handler.format(record)
            assert "[cid-text]" in line
            assert line.endswith("vaisync.test: hello world")
        finally:
            root.handlers[:] = handlers
            root.setLevel(level)
