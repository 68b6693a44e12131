"""Tests for connection error classification and accessibility probes."""

import asyncio
import socket

import aiohttp
import pytest
from conftest import NOW

from topicfeed.health.errors import ErrorCategory, classify_error, guidance_for
from topicfeed.health.monitor import SourceHealthMonitor
from topicfeed.health.probe import ProbeResult, probe_source


class FakeResponse:
    def __init__(self, status: int):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession.request()."""

    def __init__(self, statuses=None, error: Exception | None = None):
        self.statuses = list(statuses or [])
        self.error = error
        self.calls: list[str] = []

    def request(self, method, url, **kwargs):
        self.calls.append(method)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.statuses.pop(0))


@pytest.mark.parametrize("error,expected", [
    (asyncio.TimeoutError(), ErrorCategory.TIMEOUT),
    (aiohttp.ServerTimeoutError("Timeout on reading data from socket"), ErrorCategory.TIMEOUT),
    (socket.gaierror(-2, "Name or service not known"), ErrorCategory.DNS),
    (ConnectionRefusedError(111, "Connection refused"), ErrorCategory.CONNECTION_REFUSED),
    (ConnectionResetError(104, "Connection reset by peer"), ErrorCategory.CONNECTION_REFUSED),
    (aiohttp.ClientResponseError(None, (), status=403), ErrorCategory.HTTP_4XX),
    (aiohttp.ClientResponseError(None, (), status=503), ErrorCategory.HTTP_5XX),
    (ValueError("something odd"), ErrorCategory.UNKNOWN),
])
def test_classify_exceptions(error, expected):
    assert classify_error(error) == expected


@pytest.mark.parametrize("value,expected", [
    (404, ErrorCategory.HTTP_4XX),
    (502, ErrorCategory.HTTP_5XX),
    (200, ErrorCategory.UNKNOWN),
    (True, ErrorCategory.UNKNOWN),
    ("certificate verify failed", ErrorCategory.TLS),
    ("Connection timed out after 10s", ErrorCategory.TIMEOUT),
    ("getaddrinfo ENOTFOUND news.example", ErrorCategory.DNS),
    ("read ECONNRESET", ErrorCategory.CONNECTION_REFUSED),
    ("", ErrorCategory.UNKNOWN),
])
def test_classify_codes_and_messages(value, expected):
    assert classify_error(value) == expected


def test_exception_type_wins_over_message():
    assert classify_error(ConnectionRefusedError("ssl handshake")) == ErrorCategory.CONNECTION_REFUSED


def test_every_category_has_guidance():
    for category in ErrorCategory:
        assert guidance_for(category)


@pytest.mark.asyncio
async def test_probe_accessible():
    session = FakeSession([200])
    result = await probe_source("https://news.example/feed", session=session)

    assert result.accessible
    assert result.status_code == 200
    assert result.category is None
    assert session.calls == ["HEAD"]


@pytest.mark.asyncio
async def test_probe_falls_back_to_get():
    session = FakeSession([405, 200])
    result = await probe_source("https://news.example/feed", session=session)

    assert result.accessible
    assert session.calls == ["HEAD", "GET"]


@pytest.mark.asyncio
async def test_probe_error_status():
    result = await probe_source("https://news.example/feed", session=FakeSession([503]))

    assert not result.accessible
    assert result.status_code == 503
    assert result.category == ErrorCategory.HTTP_5XX
    assert result.error == "HTTP 503"


@pytest.mark.asyncio
async def test_probe_network_failure_is_classified():
    session = FakeSession(error=socket.gaierror(-2, "Name or service not known"))
    result = await probe_source("https://gone.example/feed", session=session)

    assert not result.accessible
    assert result.status_code is None
    assert result.category == ErrorCategory.DNS


@pytest.mark.asyncio
async def test_probe_timeout_has_readable_error():
    result = await probe_source("https://slow.example/feed", session=FakeSession(error=asyncio.TimeoutError()))

    assert result.category == ErrorCategory.TIMEOUT
    assert result.error == "TimeoutError"


def test_probe_result_serialization():
    result = ProbeResult(url="https://x.example", accessible=False, category=ErrorCategory.TLS, error="bad cert")
    assert ProbeResult.from_dict(result.to_dict()) == result


@pytest.mark.asyncio
async def test_recent_probe_is_reused(store, settings):
    source = await store.add_source("Herald", "https://herald.example/feed", "rss", success_rate=90)
    monitor = SourceHealthMonitor(store, settings)
    session = FakeSession([404])

    first = await monitor.evaluate_source(source, [], apply=False, session=session, now=NOW)
    second = await monitor.evaluate_source(source, [], apply=False, session=session, now=NOW)

    assert session.calls == ["HEAD"]
    assert first.probe.category == ErrorCategory.HTTP_4XX
    assert second.probe == first.probe
    assert (await store.get_source(source.id)).last_probe_ok is False
