"""Structured logging: JSON rendering, LogContext and configure_logging."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from textbook_kernel.domain.hierarchy import Level
from textbook_kernel.exceptions import InsufficientStockError
from textbook_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def emitted():
    """Configure logging into a buffer; return a reader of parsed lines."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    configure_logging(handler=handler, level=logging.DEBUG)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _read


class TestRendering:

    def test_base_keys(self, emitted):
        get_logger("test").info("hello")

        [record] = emitted()
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "textbook_kernel.test"
        assert record["ts"].endswith("+00:00")

    def test_extras_become_keys(self, emitted):
        document_id = uuid4()
        get_logger("test").info(
            "dispatch_issued",
            extra={
                "document_id": document_id,
                "total_quantity": 60,
                "rate": Decimal("45.50"),
                "issued_on": date(2024, 6, 1),
                "level_name": Level.DISTRICT,
            },
        )

        [record] = emitted()
        assert record["document_id"] == str(document_id)
        assert record["total_quantity"] == 60
        assert record["rate"] == "45.50"
        assert record["issued_on"] == "2024-06-01"
        assert record["level_name"] == "DISTRICT"

    def test_context_wins_over_extra(self, emitted):
        with LogContext.bind(actor_id="block-160101"):
            get_logger("test").info("requisition_transitioned", extra={"actor_id": "spoofed"})

        [record] = emitted()
        assert record["actor_id"] == "block-160101"

    def test_empty_context_adds_nothing(self, emitted):
        get_logger("test").info("bare")

        [record] = emitted()
        assert set(record) == {"ts", "level", "logger", "message"}

    def test_plain_exception(self, emitted):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").exception("failed")

        [record] = emitted()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_kernel_error_fields(self, emitted):
        try:
            raise InsufficientStockError("STATE", "16", "book-1", 10, 50)
        except InsufficientStockError:
            get_logger("test").error("dispatch_failed", exc_info=True)

        [record] = emitted()
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_available"] == 10
        assert record["exc_requested"] == 50

    def test_formatter_usable_standalone(self):
        record = logging.LogRecord("textbook_kernel.x", logging.WARNING, __file__, 1, "w %s", ("arg",), None)
        rendered = json.loads(StructuredFormatter().format(record))
        assert rendered["message"] == "w arg"


class TestLogContext:

    def test_set_merges(self):
        LogContext.set(correlation_id="c-1")
        LogContext.set(requisition_id="r-9", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "c-1", "requisition_id": "r-9"}

    def test_clear(self):
        LogContext.set(trace_id="t")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", challan_no="C-1"):
            with LogContext.bind(challan_no="C-2"):
                assert LogContext.get_all() == {"actor_id": "inner", "challan_no": "C-2"}
            assert LogContext.get_all()["challan_no"] == "C-1"
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(requisition_id="r-1"):
                raise RuntimeError
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="school"):
            LogContext.set(school="16010100101")

    def test_every_field_accepted(self):
        LogContext.set(**{name: name.upper() for name in LogContext.FIELDS})
        assert len(LogContext.get_all()) == len(LogContext.FIELDS)


class TestConfigureLogging:

    def test_only_first_call_counts(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("textbook_kernel").handlers) == 1

    def test_default_level_drops_debug(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream))
        logger = get_logger("services.stock")
        logger.debug("hidden")
        logger.info("shown")
        assert [json.loads(l)["message"] for l in stream.getvalue().splitlines()] == ["shown"]

    def test_does_not_propagate(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert logging.getLogger("textbook_kernel").propagate is False

    def test_nested_logger_names(self, emitted):
        get_logger("services.dispatch").debug("deep")
        assert emitted()[0]["logger"] == "textbook_kernel.services.dispatch"

    def test_reset_allows_reconfigure(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        reset_logging()
        assert logging.getLogger("textbook_kernel").handlers == []
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("textbook_kernel").handlers) == 1
