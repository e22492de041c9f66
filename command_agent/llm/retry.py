"""Quota-aware exponential backoff for outbound calls."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, TypeVar

from command_agent.errors import ProviderError

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_RETRY_IN_RE = re.compile(r"retry in ([0-9]+(?:\.[0-9]+)?)\s*s", re.IGNORECASE)
_DURATION_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)s$")
_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


class RetryPolicy:
    """Retries rate/quota failures with exponential backoff.

    Two ceilings bound the total time spent waiting: ``max_single_wait``
    per attempt (a larger server-suggested wait means the quota is exhausted,
    not transiently limited) and ``max_total_wait`` across all attempts.
    Whenever a ceiling or the attempt budget is hit the original error is
    re-raised unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 2.0,
        max_single_wait: float = 15.0,
        max_total_wait: float = 40.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_single_wait = max_single_wait
        self.max_total_wait = max_total_wait
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        waited = 0.0
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                suggested = suggested_wait_seconds(exc)
                if suggested is not None and suggested > self.max_single_wait:
                    _LOGGER.warning(
                        "%s: server asks to wait %.1fs (ceiling %.1fs), treating as quota exhaustion",
                        label,
                        suggested,
                        self.max_single_wait,
                    )
                    raise
                wait = suggested if suggested is not None else self.base_delay * (2 ** (attempt - 1))
                wait = min(wait, self.max_single_wait)
                if waited + wait > self.max_total_wait:
                    _LOGGER.warning(
                        "%s: cumulative wait would reach %.1fs (ceiling %.1fs), giving up",
                        label,
                        waited + wait,
                        self.max_total_wait,
                    )
                    raise
                _LOGGER.warning(
                    "%s rate limited, retrying in %.1fs (attempt %d/%d)",
                    label,
                    wait,
                    attempt,
                    self.max_attempts - 1,
                )
                await self._sleep(wait)
                waited += wait
                attempt += 1


def is_retryable(exc: BaseException) -> bool:
    """True if the failure signature indicates a rate or quota condition."""

    if isinstance(exc, ProviderError):
        if exc.status_code == 429:
            return True
        status = (exc.body.get("error") or {}).get("status") if isinstance(exc.body, dict) else None
        if status == "RESOURCE_EXHAUSTED":
            return True
    text = str(exc).lower()
    return "rate limit" in text or "quota" in text or "resource_exhausted" in text


def suggested_wait_seconds(exc: BaseException) -> float | None:
    """Extract a server-suggested wait from the error payload, if any."""

    if isinstance(exc, ProviderError):
        retry_after = {k.lower(): v for k, v in exc.headers.items()}.get("retry-after")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                _LOGGER.debug("Ignoring non-numeric Retry-After header %r", retry_after)
        error = exc.body.get("error") if isinstance(exc.body, dict) else None
        for detail in (error or {}).get("details", []) or []:
            if detail.get("@type") == _RETRY_INFO_TYPE:
                match = _DURATION_RE.match(str(detail.get("retryDelay", "")))
                if match:
                    return float(match.group(1))
    match = _RETRY_IN_RE.search(str(exc))
    if match:
        return float(match.group(1))
    return None
