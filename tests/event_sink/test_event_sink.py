"""
Tests for the Event Sink and its deliveries.

============================================================
PURPOSE
============================================================
- Size and interval flush triggers
- Failed flushes keep undelivered records for retry
- send_from_timestamp_ms cutoff
- ApiDelivery chunking, headers and retry classification

============================================================
"""

import asyncio
import io
import json
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from core.backoff import BackoffPolicy
from core.clock import MockClock
from core.exceptions import DeliveryError
from core.rate_limiter import RateLimiter
from event_sink.delivery import ApiDelivery, Delivery, StdoutDelivery
from event_sink.sink import EventSink


class FlakyDelivery(Delivery):
    """Accepts records until `fail_after` total, then raises."""

    def __init__(self, fail_after=None):
        self.received: List[Dict[str, Any]] = []
        self.fail_after = fail_after
        self.closed = False

    @property
    def name(self) -> str:
        return "flaky"

    async def send(self, batch):
        if self.fail_after is None:
            self.received.extend(batch)
            return
        room = max(self.fail_after - len(self.received), 0)
        accepted = batch[:room]
        self.received.extend(accepted)
        if len(accepted) < len(batch):
            raise DeliveryError(
                "collector down",
                status_code=503,
                batch_size=len(batch),
                delivered_count=len(accepted),
            )

    async def close(self):
        self.closed = True


def window_record(start_ms: int) -> Dict[str, Any]:
    return {"eventType": "time_weighted_balance", "startUnixTimestampMs": start_ms}


def action_record(ts_ms: int) -> Dict[str, Any]:
    return {"eventType": "action", "unixTimestampMs": ts_ms}


# ============================================================
# SINK
# ============================================================

class TestEventSinkTriggers:

    @pytest.mark.asyncio
    async def test_size_trigger(self):
        delivery = FlakyDelivery()
        sink = EventSink(delivery, max_buffer_size=3, flush_interval_seconds=60, clock=MockClock())

        sink.add([window_record(i) for i in range(2)])
        assert await sink.maybe_flush() == 0

        sink.add([window_record(2)])
        assert await sink.maybe_flush() == 3
        assert sink.buffered == 0
        assert len(delivery.received) == 3

    @pytest.mark.asyncio
    async def test_interval_trigger(self):
        clock = MockClock()
        delivery = FlakyDelivery()
        sink = EventSink(delivery, max_buffer_size=100, flush_interval_seconds=10, clock=clock)

        sink.add([window_record(0)])
        clock.advance(9)
        assert not sink.should_flush()

        clock.advance(1)
        assert sink.should_flush()
        assert await sink.maybe_flush() == 1

    def test_empty_buffer_never_flushes(self):
        clock = MockClock()
        sink = EventSink(FlakyDelivery(), flush_interval_seconds=0, clock=clock)
        clock.advance(100)
        assert not sink.should_flush()

    def test_invalid_buffer_size(self):
        with pytest.raises(ValueError):
            EventSink(FlakyDelivery(), max_buffer_size=0)


class TestEventSinkDelivery:

    @pytest.mark.asyncio
    async def test_buffer_handed_to_delivery(self):
        delivery = MagicMock(spec=Delivery)
        delivery.name = "mock"
        delivery.send = AsyncMock()
        sink = EventSink(delivery, clock=MockClock())
        records = [window_record(1), action_record(2)]
        sink.add(records)

        assert await sink.flush() == 2

        delivery.send.assert_awaited_once_with(records)
        assert sink.buffered == 0


class TestEventSinkFailures:

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_records(self):
        delivery = FlakyDelivery(fail_after=0)
        sink = EventSink(delivery, max_buffer_size=2, clock=MockClock())
        sink.add([window_record(0), window_record(1)])

        delivered = await sink.flush()

        assert delivered == 0
        assert sink.buffered == 2
        assert sink.get_stats()["failed_flushes"] == 1

    @pytest.mark.asyncio
    async def test_partial_delivery_drops_delivered_prefix(self):
        delivery = FlakyDelivery(fail_after=2)
        sink = EventSink(delivery, max_buffer_size=10, clock=MockClock())
        records = [window_record(i) for i in range(5)]
        sink.add(records)

        assert await sink.flush() == 2
        assert sink.buffered == 3

        delivery.fail_after = None
        assert await sink.flush() == 3
        assert delivery.received == records
        assert sink.get_stats()["delivered"] == 5

    @pytest.mark.asyncio
    async def test_close_flushes_and_closes_delivery(self):
        delivery = FlakyDelivery()
        sink = EventSink(delivery, max_buffer_size=100, clock=MockClock())
        sink.add([action_record(5)])

        await sink.close()

        assert len(delivery.received) == 1
        assert delivery.closed

    @pytest.mark.asyncio
    async def test_close_with_undeliverable_records(self, caplog):
        delivery = FlakyDelivery(fail_after=0)
        sink = EventSink(delivery, clock=MockClock())
        sink.add([action_record(5)])

        await sink.close()

        assert delivery.closed
        assert sink.buffered == 1
        assert "undelivered at shutdown" in caplog.text


class TestSendFromCutoff:

    def test_records_before_cutoff_dropped(self):
        sink = EventSink(FlakyDelivery(), send_from_timestamp_ms=1_000, clock=MockClock())

        accepted = sink.add([
            window_record(999),
            window_record(1_000),
            action_record(500),
            action_record(2_000),
        ])

        assert accepted == 2
        assert sink.buffered == 2
        assert sink.get_stats()["dropped_before_cutoff"] == 2

    def test_no_cutoff_accepts_everything(self):
        sink = EventSink(FlakyDelivery(), clock=MockClock())
        assert sink.add([window_record(0), action_record(0)]) == 2


# ============================================================
# STDOUT DELIVERY
# ============================================================

class TestStdoutDelivery:

    @pytest.mark.asyncio
    async def test_writes_json_lines(self):
        stream = io.StringIO()
        delivery = StdoutDelivery(stream)

        await delivery.send([window_record(1), action_record(2)])

        lines = stream.getvalue().splitlines()
        assert [json.loads(line) for line in lines] == [window_record(1), action_record(2)]


# ============================================================
# API DELIVERY
# ============================================================

class FakePostResponse:

    def __init__(self, status):
        self.status = status

    async def text(self):
        return "error body"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePostSession:
    """Answers POSTs with a scripted list of status codes (or exceptions)."""

    def __init__(self, statuses):
        self._statuses = list(statuses)
        self.posts = []
        self.closed = False

    def post(self, url, json=None, headers=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        status = self._statuses.pop(0) if self._statuses else 200
        if isinstance(status, Exception):
            raise status
        return FakePostResponse(status)


def make_api(session, batch_size=50, max_retries=3) -> ApiDelivery:
    return ApiDelivery(
        base_url="https://collector.example.com/",
        api_key="secret",
        session=session,
        batch_size=batch_size,
        backoff=BackoffPolicy.no_delay(max_retries=max_retries),
        rate_limiter=RateLimiter(0),
    )


class TestApiDelivery:

    @pytest.mark.asyncio
    async def test_chunks_and_headers(self):
        session = FakePostSession([])
        api = make_api(session)

        await api.send([action_record(i) for i in range(120)])

        assert [len(p["json"]) for p in session.posts] == [50, 50, 20]
        assert session.posts[0]["url"] == "https://collector.example.com/api/log"
        assert session.posts[0]["headers"]["x-api-key"] == "secret"
        assert api.sent_count == 120

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        session = FakePostSession([500, 429, 200])
        api = make_api(session)

        await api.send([action_record(1)])

        assert len(session.posts) == 3

    @pytest.mark.asyncio
    async def test_connection_error_retried(self):
        session = FakePostSession([aiohttp.ClientConnectionError("reset"), 200])
        api = make_api(session)

        await api.send([action_record(1)])

        assert len(session.posts) == 2

    @pytest.mark.asyncio
    async def test_timeout_retried(self):
        session = FakePostSession([asyncio.TimeoutError(), 200])
        api = make_api(session)

        await api.send([action_record(1)])

        assert len(session.posts) == 2
        assert api.sent_count == 1

    @pytest.mark.asyncio
    async def test_sink_keeps_records_after_timeouts(self):
        session = FakePostSession([asyncio.TimeoutError()] * 3)
        sink = EventSink(make_api(session, max_retries=2), clock=MockClock())
        sink.add([action_record(1)])

        assert await sink.flush() == 0
        assert sink.buffered == 1
        assert sink.get_stats()["failed_flushes"] == 1

        assert await sink.flush() == 1
        assert sink.buffered == 0

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        session = FakePostSession([200, 400])
        api = make_api(session, batch_size=2)

        with pytest.raises(DeliveryError) as exc_info:
            await api.send([action_record(i) for i in range(4)])

        assert len(session.posts) == 2
        assert exc_info.value.delivered_count == 2
        assert exc_info.value.status_code == 400
        assert not exc_info.value.is_retryable

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        session = FakePostSession([503, 503, 503])
        api = make_api(session, max_retries=2)

        with pytest.raises(DeliveryError) as exc_info:
            await api.send([action_record(1)])

        assert exc_info.value.delivered_count == 0
        assert len(session.posts) == 3

    @pytest.mark.asyncio
    async def test_sink_resumes_after_partial_api_failure(self):
        session = FakePostSession([200, 400])
        api = make_api(session, batch_size=2)
        sink = EventSink(api, max_buffer_size=100, clock=MockClock())
        sink.add([action_record(i) for i in range(4)])

        assert await sink.flush() == 2
        assert sink.buffered == 2

        assert await sink.flush() == 2
        assert sink.buffered == 0
        assert session.posts[-1]["json"] == [action_record(2), action_record(3)]

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            make_api(FakePostSession([]), batch_size=0)
