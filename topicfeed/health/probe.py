"""Accessibility probe for source feed URLs."""

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import Any

import aiohttp

from ..config import get_settings
from ..logging import get_logger
from .errors import ErrorCategory, classify_error, classify_status

logger = get_logger(__name__)


@dataclass
class ProbeResult:
    """Outcome of one accessibility probe."""
    url: str
    accessible: bool
    status_code: int | None = None
    response_time: float | None = None
    category: ErrorCategory | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value if self.category else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProbeResult":
        category = data.get("category")
        return cls(**{**data, "category": ErrorCategory(category) if category else None})


async def _request(session: aiohttp.ClientSession, method: str, url: str) -> int:
    async with session.request(method, url, allow_redirects=True) as response:
        return response.status


async def probe_source(
    url: str,
    session: aiohttp.ClientSession | None = None,
    timeout: float | None = None,
) -> ProbeResult:
    """Check that a feed URL answers.

    Sends a HEAD request and retries once with GET when the server does not
    allow HEAD. Never raises for network failures; they are classified into
    the returned result.
    """
    settings = get_settings()
    timeout = timeout if timeout is not None else settings.probe_timeout_seconds

    own_session = session is None
    if own_session:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"User-Agent": settings.user_agent},
        )

    start = time.monotonic()
    try:
        status = await _request(session, "HEAD", url)
        if status == 405:
            status = await _request(session, "GET", url)
        elapsed = time.monotonic() - start

        category = classify_status(status)
        if category is not None:
            logger.debug("Probe got error status", url=url, status=status)
            return ProbeResult(
                url=url,
                accessible=False,
                status_code=status,
                response_time=elapsed,
                category=category,
                error=f"HTTP {status}",
            )
        return ProbeResult(url=url, accessible=True, status_code=status, response_time=elapsed)

    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        category = classify_error(e)
        logger.debug("Probe failed", url=url, category=category.value, error=str(e))
        return ProbeResult(
            url=url,
            accessible=False,
            response_time=time.monotonic() - start,
            category=category,
            error=str(e) or e.__class__.__name__,
        )
    finally:
        if own_session:
            await session.close()
