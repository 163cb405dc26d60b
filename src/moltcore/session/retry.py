"""Retry helpers for LLM streaming."""

import asyncio
import math
import time
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional

from ..provider.errors import retryable as _retryable
from ..util.abort import sleep


def _now_ms() -> int:
    return int(time.time() * 1000)


def _float(value: object) -> Optional[float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(num):
        return None
    if num < 0:
        return None
    return num


def _headers(error: BaseException) -> Optional[Mapping[str, str]]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    if not hasattr(headers, "get"):
        return None
    return headers


def _http_date_ms(value: str) -> Optional[int]:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    delta = math.ceil(parsed.timestamp() * 1000 - _now_ms())
    if delta <= 0:
        return None
    return int(delta)


class SessionRetry:
    """Backoff policy for transient stream failures.

    ``attempt`` counts from 1, so with the default base of one second the
    waits are 2s, 4s, 8s up to ``max_ms``. A ``retry-after-ms`` or
    ``retry-after`` response header takes precedence over the backoff.
    """

    RETRY_MAX_DELAY_MS = 2_147_483_647

    retryable = staticmethod(_retryable)

    def __init__(self, attempts: int = 3, base_ms: int = 1000, max_ms: int = 30_000) -> None:
        self.attempts = attempts
        self.base_ms = base_ms
        self.max_ms = max_ms

    @classmethod
    def _header_delay_ms(cls, error: Optional[BaseException]) -> Optional[int]:
        if error is None:
            return None
        headers = _headers(error)
        if headers is None:
            return None

        retry_after_ms = _float(headers.get("retry-after-ms"))
        if retry_after_ms is not None:
            return int(math.ceil(retry_after_ms))

        retry_after = headers.get("retry-after")
        if retry_after is None:
            return None

        retry_seconds = _float(retry_after)
        if retry_seconds is not None:
            return int(math.ceil(retry_seconds * 1000))

        return _http_date_ms(retry_after)

    def delay_ms(self, attempt: int, error: Optional[BaseException] = None) -> int:
        turn = max(int(attempt), 1)
        header_delay = self._header_delay_ms(error)
        if header_delay is not None:
            return min(header_delay, self.RETRY_MAX_DELAY_MS)
        return min(self.base_ms * (2 ** turn), self.max_ms)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """True if ``error`` is transient and fewer than ``attempts`` retries ran."""
        return attempt < self.attempts and self.retryable(error)

    @staticmethod
    async def sleep(ms: int, abort: Optional[asyncio.Event] = None) -> None:
        await sleep(max(ms, 0), abort)
