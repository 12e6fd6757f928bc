"""Tests for output sinks."""

import io
import json
import threading
from unittest.mock import patch

import httpx
import pytest

from vigil.config import LoggerConfig
from vigil.core.types import LogLevel
from vigil.telemetry.logger import StructuredLogger
from vigil.telemetry.sinks import BreadcrumbSink, CallbackSink, ConsoleSink, StoreSink


@pytest.fixture
def make_log(clock):
    log = StructuredLogger(LoggerConfig(console=False), sinks=[], clock=clock)
    return log


class TestConsoleSink:
    async def test_writes_one_line_per_entry(self, make_log):
        stream = io.StringIO()
        sink = ConsoleSink(stream)
        await sink.send(make_log.info("Order placed", {"order_id": "o-1", "trace_id": "trace_1"}))
        line = stream.getvalue()
        assert line.endswith("\n")
        assert "INFO" in line
        assert "[vigil]" in line
        assert "Order placed" in line
        assert "trace=trace_1" in line
        assert '"order_id": "o-1"' in line

    def test_accepts_every_level(self, make_log):
        assert ConsoleSink().accepts(make_log.debug("d"))


class TestStoreSink:
    async def test_appends_ndjson_records(self, make_log, tmp_path):
        sink = StoreSink(tmp_path / "logs" / "vigil.ndjson")
        await sink.send(make_log.info("first"))
        await sink.send(make_log.error("second", {"action": "charge"}))

        records = sink.read()
        assert [r["message"] for r in records] == ["first", "second"]
        assert records[1]["level"] == "ERROR"
        assert records[1]["fingerprint"]
        assert records[0]["service"] == "vigil"
        assert sink.read(limit=1)[0]["message"] == "second"

    async def test_writes_off_the_event_loop(self, make_log, tmp_path):
        sink = StoreSink(tmp_path / "vigil.ndjson")
        threads = []
        write = sink._append

        def record_thread(line):
            threads.append(threading.get_ident())
            write(line)

        with patch.object(sink, "_append", side_effect=record_thread):
            await sink.send(make_log.info("off loop"))
        assert threads and threads[0] != threading.get_ident()
        assert sink.read()[0]["message"] == "off loop"

    def test_skips_debug(self, make_log, tmp_path):
        sink = StoreSink(tmp_path / "x.ndjson")
        assert not sink.accepts(make_log.debug("noise"))
        assert sink.accepts(make_log.info("signal"))

    def test_read_missing_file(self, tmp_path):
        assert StoreSink(tmp_path / "missing.ndjson").read() == []


class TestBreadcrumbSink:
    def test_accepts_warn_and_above(self, make_log):
        sink = BreadcrumbSink("http://tracker.local/breadcrumbs")
        assert not sink.accepts(make_log.info("fine"))
        assert sink.accepts(make_log.warn("hmm"))
        assert sink.accepts(make_log.fatal("down"))

    def test_breadcrumb_shape(self, make_log):
        sink = BreadcrumbSink("http://tracker.local/breadcrumbs")
        crumb = sink.breadcrumb(make_log.error("Payment failed", {"action": "charge"}))
        assert crumb["category"] == "charge"
        assert crumb["level"] == "error"
        assert crumb["message"] == "Payment failed"
        assert crumb["data"]["fingerprint"]

    async def test_posts_breadcrumb(self, make_log):
        posted = []

        def handler(request):
            posted.append(json.loads(request.content))
            return httpx.Response(202)

        sink = BreadcrumbSink("http://tracker.local/breadcrumbs")
        sink._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        await sink.send(make_log.warn("Slow checkout"))
        assert posted[0]["level"] == "warning"
        assert posted[0]["category"] == "log"
        await sink.close()

    async def test_rejected_post_raises(self, make_log):
        sink = BreadcrumbSink("http://tracker.local/breadcrumbs")
        sink._client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(httpx.HTTPStatusError):
            await sink.send(make_log.error("boom"))
        await sink.close()


class TestCallbackSink:
    async def test_predicate_and_level(self, make_log):
        seen = []

        async def collect(entry):
            seen.append(entry)

        sink = CallbackSink("checkout_only", collect, min_level=LogLevel.INFO,
                            predicate=lambda e: e.operation == "checkout")
        assert not sink.accepts(make_log.debug("x", {"operation": "checkout"}))
        assert not sink.accepts(make_log.info("x", {"operation": "search"}))
        entry = make_log.info("x", {"operation": "checkout"})
        assert sink.accepts(entry)
        await sink.send(entry)
        assert seen == [entry]
