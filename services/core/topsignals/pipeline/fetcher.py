"""Bounded retry fetcher: one logical HTTP fetch with retries, backoff and a deadline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import aiohttp

from ..providers.base import FetchError, FetchErrorKind, HttpRequest, HttpResponse


logger = logging.getLogger(__name__)

DEFAULT_NO_RETRY_STATUSES = frozenset({404})


class ResponseDecodeError(ValueError):
    """A 2xx response whose body is not valid JSON."""
    pass


@dataclass
class FetchResult:
    response: HttpResponse | None = None
    error: FetchError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.response is not None


@dataclass
class _Progress:
    attempts: int = 0
    last_status: int | None = None


class BoundedRetryFetcher:
    """
    Perform a single logical GET with ``max_retries`` retries.

    The delay before retry k (1-indexed) is ``base_backoff_ms * 2**(k-1)``.
    The whole sequence, waits included, is bounded by ``deadline_seconds``.
    Expected failures never raise; they come back as ``FetchResult.error``.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        max_retries: int = 2,
        base_backoff_ms: int = 100,
        deadline_seconds: float = 20.0,
        request_timeout_seconds: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session = session
        self.max_retries = max_retries
        self.base_backoff_ms = base_backoff_ms
        self.deadline_seconds = deadline_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self._sleep = sleep

    async def fetch(
        self,
        request: HttpRequest,
        max_retries: int | None = None,
        base_backoff_ms: int | None = None,
        no_retry_statuses: frozenset[int] = DEFAULT_NO_RETRY_STATUSES,
    ) -> FetchResult:
        retries = self.max_retries if max_retries is None else max_retries
        backoff_ms = self.base_backoff_ms if base_backoff_ms is None else base_backoff_ms
        if retries < 0:
            raise ValueError("max_retries must be >= 0")
        if backoff_ms <= 0:
            raise ValueError("base_backoff_ms must be > 0")

        progress = _Progress()
        try:
            return await asyncio.wait_for(
                self._attempt_loop(request, retries, backoff_ms, no_retry_statuses, progress),
                timeout=self.deadline_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Fetch deadline of {self.deadline_seconds}s exceeded after "
                f"{progress.attempts} attempt(s): {request.redacted()}"
            )
            return FetchResult(
                error=FetchError(
                    kind=FetchErrorKind.TIMEOUT,
                    last_status=progress.last_status,
                    attempts=progress.attempts,
                    message="deadline exceeded",
                ),
                attempts=progress.attempts,
            )

    async def _attempt_loop(
        self,
        request: HttpRequest,
        retries: int,
        backoff_ms: int,
        no_retry_statuses: frozenset[int],
        progress: _Progress,
    ) -> FetchResult:
        error: FetchError | None = None

        for attempt in range(1, retries + 2):
            if attempt > 1:
                retry_number = attempt - 1
                delay = backoff_ms * (2 ** (retry_number - 1)) / 1000.0
                logger.warning(
                    f"Retry {retry_number}/{retries} in {delay:.3f}s "
                    f"({error.kind.value if error else 'unknown'}): {request.redacted()}"
                )
                await self._sleep(delay)

            progress.attempts = attempt
            try:
                response = await self._send(request)
            except asyncio.TimeoutError:
                error = FetchError(FetchErrorKind.TIMEOUT, progress.last_status, attempt, "request timed out")
                continue
            except aiohttp.ClientError as e:
                error = FetchError(FetchErrorKind.NETWORK, progress.last_status, attempt, str(e))
                continue
            except ResponseDecodeError as e:
                # Retrying an undecodable body only repeats it.
                return FetchResult(
                    error=FetchError(FetchErrorKind.DECODE, 200, attempt, str(e)),
                    attempts=attempt,
                )

            progress.last_status = response.status
            if 200 <= response.status < 300:
                return FetchResult(response=response, attempts=attempt)

            error = FetchError(
                FetchErrorKind.HTTP_ERROR,
                response.status,
                attempt,
                str(response.payload)[:200],
            )
            if response.status in no_retry_statuses:
                break

        return FetchResult(error=error, attempts=progress.attempts)

    async def _send(self, request: HttpRequest) -> HttpResponse:
        """Issue one HTTP request. Non-2xx bodies are returned as text."""
        if self.session is None:
            async with aiohttp.ClientSession() as session:
                return await self._send_with(session, request)
        return await self._send_with(self.session, request)

    async def _send_with(self, session: aiohttp.ClientSession, request: HttpRequest) -> HttpResponse:
        async with session.request(
            request.method,
            request.url,
            params=request.params or None,
            headers=request.headers or None,
            timeout=aiohttp.ClientTimeout(total=self.request_timeout_seconds),
        ) as response:
            if not 200 <= response.status < 300:
                text = await response.text()
                return HttpResponse(status=response.status, payload=text)
            try:
                payload = await response.json(content_type=None)
            except ValueError as e:
                raise ResponseDecodeError(f"Invalid JSON body: {e}") from e
            return HttpResponse(status=response.status, payload=payload)
