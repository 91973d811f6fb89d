"""
Tests for the logging utilities.

The Azure queue is the only external service here and is patched.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from unified_inbox_core.context import tenant_context
from unified_inbox_core.utils import logger as logger_module
from unified_inbox_core.utils.logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    TenantContextFilter,
    configure_logging,
    get_logger,
)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("unified_inbox", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContextAwareLogger:
    def test_extras_are_appended_to_message(self, caplog):
        caplog.set_level(logging.INFO, logger="test.context_aware")
        log = ContextAwareLogger(logging.getLogger("test.context_aware"))

        log.info("Connection stored", extra={"connection_id": "conn-1", "provider_name": "slack"})

        assert "Connection stored | connection_id=conn-1 | provider_name=slack" in caplog.text
        assert caplog.records[-1].connection_id == "conn-1"

    def test_reserved_record_fields_do_not_break_logging(self, caplog):
        caplog.set_level(logging.INFO, logger="test.context_aware")
        log = ContextAwareLogger(logging.getLogger("test.context_aware"))

        log.warning("Reserved keys", extra={"message": "shadow", "module": "x", "tenant_id": "t"})

        assert "Reserved keys | message=shadow" in caplog.text

    def test_exception_logs_traceback(self, caplog):
        caplog.set_level(logging.INFO, logger="test.context_aware")
        log = ContextAwareLogger(logging.getLogger("test.context_aware"))

        try:
            raise ValueError("broken")
        except ValueError:
            log.exception("Handler failed")

        assert caplog.records[-1].exc_info is not None
        assert caplog.records[-1].levelno == logging.ERROR


class TestTenantContextFilter:
    def test_scope_is_stamped_on_records(self):
        record = make_record()

        with tenant_context("tenant-a", "user-1"):
            assert TenantContextFilter().filter(record)

        assert record.tenant_id == "tenant-a"
        assert record.user_id == "user-1"

    def test_no_scope_leaves_record_untouched(self):
        record = make_record()

        TenantContextFilter().filter(record)

        assert not hasattr(record, "tenant_id")


class TestAzureQueueHandler:
    def test_entry_carries_scope_and_context(self):
        handler = AzureQueueHandler(connection_string=None)
        record = make_record("Access token refreshed", tenant_id="tenant-a", connection_id="conn-1")

        entry = handler.build_entry(record)

        assert entry["message"] == "Access token refreshed"
        assert entry["level"] == "INFO"
        assert entry["tenant_id"] == "tenant-a"
        assert entry["context"] == {"connection_id": "conn-1"}

    def test_entry_includes_exception(self):
        handler = AzureQueueHandler(connection_string=None)
        try:
            raise RuntimeError("provider down")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        entry = handler.build_entry(record)

        assert entry["exception"]["type"] == "RuntimeError"
        assert entry["exception"]["message"] == "provider down"

    def test_without_connection_string_entries_stay_buffered(self):
        handler = AzureQueueHandler(connection_string=None, batch_size=1)

        handler.emit(make_record())

        assert len(handler.log_buffer) == 1

    def test_batch_is_sent_one_message_per_entry(self):
        queue_client = MagicMock()
        service_client = MagicMock()
        service_client.list_queues.return_value = []

        with patch.object(
            logger_module.QueueServiceClient, "from_connection_string", return_value=service_client
        ), patch.object(logger_module.QueueClient, "from_connection_string", return_value=queue_client):
            handler = AzureQueueHandler(
                queue_name="logs-queue", connection_string="UseDevelopmentStorage=true", batch_size=2
            )
            handler.emit(make_record("first"))
            handler.emit(make_record("second"))

        service_client.create_queue.assert_called_once_with("logs-queue")
        assert queue_client.send_message.call_count == 2
        sent = [json.loads(call.args[0])["message"] for call in queue_client.send_message.call_args_list]
        assert sent == ["first", "second"]
        assert handler.log_buffer == []


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_global_logger(self, monkeypatch):
        monkeypatch.setattr(logger_module, "_app_logger", None)
        yield
        for handler in logging.getLogger("test_inbox").handlers[:]:
            logging.getLogger("test_inbox").removeHandler(handler)

    def test_configured_logger_becomes_the_app_logger(self):
        configured = configure_logging(app_name="test_inbox", log_level="DEBUG", enable_queue=False)

        assert get_logger() is configured
        assert configured.logger.level == logging.DEBUG
        assert len(configured.logger.handlers) == 1
        assert configured.logger.propagate is False

    def test_reconfiguring_replaces_handlers(self):
        configure_logging(app_name="test_inbox", enable_queue=False)
        configured = configure_logging(app_name="test_inbox", enable_queue=False)

        assert len(configured.logger.handlers) == 1

    def test_queue_handler_added_when_enabled(self):
        configured = configure_logging(app_name="test_inbox", enable_queue=True, connection_string="")

        assert any(isinstance(h, AzureQueueHandler) for h in configured.logger.handlers)

    def test_default_logger_wraps_package_logger(self):
        assert get_logger().logger.name == "unified_inbox_core"
