"""Resilient httpx transport — retry with exponential backoff + circuit breaker.

Wraps the real transport so every request made through the VIES
``httpx.AsyncClient`` gets the same policy:

    retry (outer)          up to N retries on transport errors or non-2xx,
                           sleeping base ** attempt seconds (2s, 4s, 8s)
      circuit breaker      opens after K consecutive transient failures
        (inner)            (transport error, 5xx, 408) for D seconds,
                           then lets a half-open trial through

Usage:
    transport = ResilientTransport(httpx.AsyncHTTPTransport())
    client = httpx.AsyncClient(transport=transport)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT_STATUS = 408


class CircuitOpenError(httpx.TransportError):
    """Raised instead of sending a request while the circuit is open."""


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Shared by all concurrent requests going through one transport. Runs on a
    single event loop, so state changes need no locking.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        break_duration: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._break_duration = break_duration
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None
        self._half_open = False

    @property
    def state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.HALF_OPEN if self._half_open else CircuitState.CLOSED
        if self._clock() - self._opened_at >= self._break_duration:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def before_call(self) -> None:
        """Raise CircuitOpenError if calls are currently rejected."""
        state = self.state
        if state is CircuitState.OPEN:
            remaining = self._break_duration - (self._clock() - (self._opened_at or 0.0))
            msg = f"Circuit breaker is open, retry in {remaining:.0f}s"
            raise CircuitOpenError(msg)
        if state is CircuitState.HALF_OPEN:
            if self._opened_at is None:
                # One trial call at a time
                msg = "Circuit breaker is half-open, trial call in progress"
                raise CircuitOpenError(msg)
            logger.info("Circuit breaker is half-open, testing if VIES has recovered")
            self._opened_at = None
            self._half_open = True

    def release_trial(self) -> None:
        """Give up a trial call that ended without an outcome (e.g. cancelled).

        The circuit stays half-open so the next call becomes the trial.
        """
        if self._half_open:
            self._half_open = False
            self._opened_at = self._clock() - self._break_duration

    def record_success(self) -> None:
        if self._half_open:
            logger.info("Circuit breaker reset, normal operation resumed")
        self._failures = 0
        self._half_open = False

    def record_failure(self) -> None:
        self._failures += 1
        if self._half_open or self._failures >= self._failure_threshold:
            self._open()

    def _open(self) -> None:
        logger.warning(
            "Circuit breaker opened for %.0f seconds after %d consecutive failures",
            self._break_duration,
            self._failures,
        )
        self._opened_at = self._clock()
        self._half_open = False
        self._failures = 0


def is_transient_status(status_code: int) -> bool:
    """5xx and 408 count against the circuit breaker."""
    return status_code >= 500 or status_code == _REQUEST_TIMEOUT_STATUS


class ResilientTransport(httpx.AsyncBaseTransport):
    """httpx transport applying retry/backoff and a circuit breaker."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        retry_count: int = 3,
        backoff_base: float = 2.0,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._retry_count = retry_count
        self._backoff_base = backoff_base
        self._sleep = sleep
        self.breaker = breaker or CircuitBreaker()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempt = 0
        while True:
            error: httpx.TransportError | None = None
            response: httpx.Response | None = None
            try:
                response = await self._send_once(request)
            except CircuitOpenError:
                raise
            except httpx.TransportError as exc:
                error = exc

            if response is not None and response.is_success:
                return response

            if attempt >= self._retry_count:
                if error is not None:
                    raise error
                return response  # type: ignore[return-value]

            attempt += 1
            delay = self._backoff_base ** attempt
            outcome = type(error).__name__ if error is not None else f"HTTP {response.status_code}"  # type: ignore[union-attr]
            logger.warning(
                "Retry %d/%d after %.0fs due to %s (%s %s)",
                attempt,
                self._retry_count,
                delay,
                outcome,
                request.method,
                request.url,
            )
            if response is not None:
                await response.aclose()
            await self._sleep(delay)

    async def _send_once(self, request: httpx.Request) -> httpx.Response:
        self.breaker.before_call()
        try:
            response = await self._transport.handle_async_request(request)
        except httpx.TransportError:
            self.breaker.record_failure()
            raise
        except BaseException:
            self.breaker.release_trial()
            raise

        if is_transient_status(response.status_code):
            self.breaker.record_failure()
        else:
            self.breaker.record_success()
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()
