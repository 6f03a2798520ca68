"""
poller.py
~~~~~~~~~
Generic poll driver: turns a client's submit/poll pair into a bounded wait.

Waiting uses ``asyncio.sleep`` so a job that is polling four providers never
blocks the worker's event loop.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

import httpx

from trustforge.core.config import ProviderConfig
from trustforge.core.errors import MalformedResponse, ScanFailed, ScanTimeout

if TYPE_CHECKING:
    from trustforge.services.outcomes import Payload
    from trustforge.services.scanners.base import ProviderHandle, ScannerClient

logger = logging.getLogger(__name__)

# Status codes worth polling through; anything else in 4xx means the request itself is wrong.
_TRANSIENT_STATUS_CODES = {404, 408, 425, 429}


class PollState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PollOutcome:
    state: PollState
    payload: "Payload | None" = None
    reason: str | None = None

    @classmethod
    def pending(cls, reason: str | None = None) -> "PollOutcome":
        return cls(PollState.PENDING, reason=reason)

    @classmethod
    def done(cls, payload: "Payload") -> "PollOutcome":
        return cls(PollState.DONE, payload=payload)

    @classmethod
    def failed(cls, reason: str) -> "PollOutcome":
        return cls(PollState.FAILED, reason=reason)


@dataclass(frozen=True)
class PollPolicy:
    """Bounded retry policy: at most ``max_attempts`` polls, ``interval_seconds`` apart."""
    interval_seconds: float
    max_attempts: int

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "PollPolicy":
        return cls(interval_seconds=config.poll_interval_seconds, max_attempts=config.max_attempts)


def is_transient(exc: BaseException) -> bool:
    """Network hiccups, malformed intermediate bodies, 5xx and a few retryable 4xx."""
    if isinstance(exc, MalformedResponse):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code >= 500 or code in _TRANSIENT_STATUS_CODES
    return isinstance(exc, httpx.HTTPError)


async def poll_until_done(
    client: "ScannerClient",
    handle: "ProviderHandle",
    policy: PollPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> "Payload":
    """
    Poll ``client`` until it reports done, fails, or the attempt budget runs out.

    Returns:
        The provider payload from the first ``done`` outcome.

    Raises:
        ScanFailed:  The provider reported an explicit failure (raised at once).
        ScanTimeout: ``policy.max_attempts`` polls never produced a result.
    """
    provider = client.name
    last_error: str | None = None

    for attempt in range(1, policy.max_attempts + 1):
        logger.info(f"Checking {provider} results (attempt {attempt}/{policy.max_attempts})...")
        try:
            outcome = await client.poll(handle)
        except ScanFailed:
            raise
        except Exception as e:
            if not is_transient(e):
                raise ScanFailed(provider, f"poll request rejected: {e}") from e
            last_error = str(e)
            logger.warning(f"{provider} poll attempt {attempt} failed: {e}")
        else:
            if outcome.state is PollState.DONE:
                logger.info(f"{provider} scan completed after {attempt} attempt(s)")
                return outcome.payload
            if outcome.state is PollState.FAILED:
                logger.warning(f"{provider} reported failure: {outcome.reason}")
                raise ScanFailed(provider, outcome.reason or "provider reported failure")
            if outcome.reason:
                logger.info(f"{provider} still pending: {outcome.reason}")

        if attempt < policy.max_attempts:
            await sleep(policy.interval_seconds)

    message = f"scan timed out after {policy.max_attempts} attempts"
    if last_error:
        message += f": {last_error}"
    raise ScanTimeout(provider, message)
