"""
Tests for structured logging helpers.
"""

import json
import logging

from puff_sync.logging_utils import StructuredJsonFormatter, SyncLoggerAdapter


class TestStructuredJsonFormatter:
    def test_formats_single_line_json(self):
        record = logging.LogRecord("puff_sync.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.unsynced = 3

        payload = json.loads(StructuredJsonFormatter().format(record))

        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "puff_sync.test"
        assert payload["unsynced"] == 3

    def test_unserializable_extra_becomes_string(self):
        record = logging.LogRecord("puff_sync.test", logging.INFO, __file__, 1, "x", (), None)
        record.thing = object()

        payload = json.loads(StructuredJsonFormatter().format(record))

        assert payload["thing"].startswith("<object")


class TestSyncLoggerAdapter:
    def test_context_is_merged_into_extra(self, caplog):
        adapter = SyncLoggerAdapter(logging.getLogger("puff_sync.test"), {"server_url": "ws://fake"})

        with caplog.at_level(logging.INFO, logger="puff_sync.test"):
            adapter.info("connected", extra={"attempt": 2})

        record = caplog.records[-1]
        assert record.server_url == "ws://fake"
        assert record.attempt == 2
