"""Tests for the resilient VIES transport.

Covers:
- Retry on transport errors and non-2xx, with 2^attempt backoff
- Giving up after the configured retries
- Circuit breaker: opens after consecutive transient failures, single half-open trial
- Open circuit rejects without touching the network and is not retried
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from src.vies.transport import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    ResilientTransport,
    is_transient_status,
)

URL = "https://vies.test/checkVatService"

# ── Helpers ──────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _scripted(outcomes: list) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """MockTransport replaying *outcomes*: status codes or exceptions."""
    seen: list[httpx.Request] = []
    queue = list(outcomes)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="body")

    return httpx.MockTransport(handler), seen


def _blocking() -> tuple[httpx.MockTransport, list[httpx.Request], asyncio.Event]:
    """MockTransport answering 200 once *release* is set."""
    seen: list[httpx.Request] = []
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        await release.wait()
        return httpx.Response(200, text="body")

    return httpx.MockTransport(handler), seen, release


def _client(transport: ResilientTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport)


# ── Retry ────────────────────────────────────────────────────────────


class TestRetry:
    @pytest.mark.asyncio()
    async def test_success_first_try(self):
        inner, seen = _scripted([200])
        sleep = AsyncMock()

        async with _client(ResilientTransport(inner, sleep=sleep)) as client:
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 200
        assert len(seen) == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio()
    async def test_retries_non_success_with_backoff(self):
        inner, seen = _scripted([503, 500, 200])
        sleep = AsyncMock()

        async with _client(ResilientTransport(inner, sleep=sleep)) as client:
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 200
        assert len(seen) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio()
    async def test_retries_transport_errors(self):
        inner, seen = _scripted([httpx.ConnectError("refused"), 200])
        sleep = AsyncMock()

        async with _client(ResilientTransport(inner, sleep=sleep)) as client:
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 200
        assert len(seen) == 2

    @pytest.mark.asyncio()
    async def test_request_body_resent_on_retry(self):
        inner, seen = _scripted([500, 200])

        async with _client(ResilientTransport(inner, sleep=AsyncMock())) as client:
            await client.post(URL, content=b"<envelope/>")

        assert [r.content for r in seen] == [b"<envelope/>", b"<envelope/>"]

    @pytest.mark.asyncio()
    async def test_gives_up_and_returns_last_response(self):
        inner, seen = _scripted([500, 500, 500, 500])
        sleep = AsyncMock()

        async with _client(ResilientTransport(inner, sleep=sleep)) as client:
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 500
        assert response.text == "body"
        assert len(seen) == 4  # 1 attempt + 3 retries
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio()
    async def test_gives_up_and_raises_last_error(self):
        inner, seen = _scripted([httpx.ReadTimeout("slow")] * 4)

        async with _client(ResilientTransport(inner, sleep=AsyncMock())) as client:
            with pytest.raises(httpx.ReadTimeout):
                await client.post(URL, content=b"<x/>")

        assert len(seen) == 4

    @pytest.mark.asyncio()
    async def test_retry_count_zero(self):
        inner, seen = _scripted([502])

        async with _client(ResilientTransport(inner, retry_count=0, sleep=AsyncMock())) as client:
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 502
        assert len(seen) == 1


# ── Circuit breaker ──────────────────────────────────────────────────


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=3, break_duration=60, clock=clock)

        for _ in range(2):
            breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_success_resets_count(self):
        breaker = CircuitBreaker(failure_threshold=2, clock=FakeClock())
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED

    def test_half_open_after_break(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, break_duration=60, clock=clock)
        breaker.record_failure()

        clock.now += 59
        assert breaker.state is CircuitState.OPEN
        clock.now += 1
        assert breaker.state is CircuitState.HALF_OPEN

        breaker.before_call()  # trial allowed
        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=5, break_duration=60, clock=clock)
        for _ in range(5):
            breaker.record_failure()

        clock.now += 60
        breaker.before_call()
        breaker.record_failure()  # a single failure is enough while half-open

        assert breaker.state is CircuitState.OPEN

    def test_half_open_allows_single_trial(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, break_duration=60, clock=clock)
        breaker.record_failure()
        clock.now += 60

        breaker.before_call()  # the trial
        with pytest.raises(CircuitOpenError, match="trial call in progress"):
            breaker.before_call()

        breaker.record_success()
        breaker.before_call()
        assert breaker.state is CircuitState.CLOSED

    def test_released_trial_hands_over_to_next_call(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, break_duration=60, clock=clock)
        breaker.record_failure()
        clock.now += 60

        breaker.before_call()
        breaker.release_trial()

        assert breaker.state is CircuitState.HALF_OPEN
        breaker.before_call()  # next caller becomes the trial
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_transient_statuses(self):
        assert is_transient_status(500) is True
        assert is_transient_status(503) is True
        assert is_transient_status(408) is True
        assert is_transient_status(400) is False
        assert is_transient_status(200) is False


class TestTransportWithBreaker:
    @pytest.mark.asyncio()
    async def test_open_circuit_short_circuits(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=5, break_duration=60, clock=clock)
        inner, seen = _scripted([500] * 4 + [httpx.ConnectError("down")] * 4)
        transport = ResilientTransport(inner, breaker=breaker, sleep=AsyncMock())

        async with _client(transport) as client:
            # 4 failures, retries exhausted, circuit still closed
            response = await client.post(URL, content=b"<x/>")
            assert response.status_code == 500
            assert breaker.state is CircuitState.CLOSED

            # 5th consecutive failure opens the circuit, the retry is rejected
            with pytest.raises(CircuitOpenError):
                await client.post(URL, content=b"<x/>")

        assert len(seen) == 5
        assert breaker.state is CircuitState.OPEN

    @pytest.mark.asyncio()
    async def test_client_errors_do_not_trip_breaker(self):
        breaker = CircuitBreaker(failure_threshold=2, clock=FakeClock())
        inner, _ = _scripted([400] * 8)
        transport = ResilientTransport(inner, breaker=breaker, sleep=AsyncMock())

        async with _client(transport) as client:
            response = await client.post(URL, content=b"<x/>")
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 400
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio()
    async def test_recovers_after_break(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, break_duration=60, clock=clock)
        inner, seen = _scripted([500, 200])
        transport = ResilientTransport(inner, retry_count=0, breaker=breaker, sleep=AsyncMock())

        async with _client(transport) as client:
            await client.post(URL, content=b"<x/>")
            with pytest.raises(CircuitOpenError):
                await client.post(URL, content=b"<x/>")

            clock.now += 60
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 200
        assert breaker.state is CircuitState.CLOSED
        assert len(seen) == 2

    @pytest.mark.asyncio()
    async def test_concurrent_calls_rejected_while_trial_runs(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, break_duration=60, clock=clock)
        breaker.record_failure()
        clock.now += 60
        inner, seen, release = _blocking()
        transport = ResilientTransport(inner, retry_count=0, breaker=breaker, sleep=AsyncMock())

        async with _client(transport) as client:
            trial = asyncio.create_task(client.post(URL, content=b"<x/>"))
            while not seen:
                await asyncio.sleep(0)

            with pytest.raises(CircuitOpenError):
                await client.post(URL, content=b"<x/>")

            release.set()
            response = await trial

        assert response.status_code == 200
        assert breaker.state is CircuitState.CLOSED
        assert len(seen) == 1

    @pytest.mark.asyncio()
    async def test_cancelled_trial_does_not_wedge_half_open(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, break_duration=60, clock=clock)
        breaker.record_failure()
        clock.now += 60
        inner, seen, release = _blocking()
        transport = ResilientTransport(inner, retry_count=0, breaker=breaker, sleep=AsyncMock())

        async with _client(transport) as client:
            trial = asyncio.create_task(client.post(URL, content=b"<x/>"))
            while not seen:
                await asyncio.sleep(0)
            trial.cancel()
            with pytest.raises(asyncio.CancelledError):
                await trial
            assert breaker.state is CircuitState.HALF_OPEN

            release.set()
            response = await client.post(URL, content=b"<x/>")

        assert response.status_code == 200
        assert breaker.state is CircuitState.CLOSED
        assert len(seen) == 2
