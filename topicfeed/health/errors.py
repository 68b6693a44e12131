"""Classification of network failures seen while probing or scraping a source."""

import asyncio
import socket
from enum import Enum

import aiohttp


class ErrorCategory(str, Enum):
    TIMEOUT = "timeout"
    DNS = "dns"
    TLS = "tls"
    CONNECTION_REFUSED = "connection_refused"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    UNKNOWN = "unknown"


GUIDANCE: dict[ErrorCategory, str] = {
    ErrorCategory.TIMEOUT: "Connection timeout. The site is slow or unreliable; try again later or find an alternative source.",
    ErrorCategory.DNS: "Domain not found. The URL may be incorrect or the site may no longer exist.",
    ErrorCategory.TLS: "SSL/TLS certificate error. The site may have security issues; try the HTTP version.",
    ErrorCategory.CONNECTION_REFUSED: "Connection refused. The site may be blocking automated requests.",
    ErrorCategory.HTTP_4XX: "The site rejected the request. Check the URL or whether it blocks automated access.",
    ErrorCategory.HTTP_5XX: "The site returned a server error. It may recover on its own; check again later.",
    ErrorCategory.UNKNOWN: "Connection failed. Verify the URL and try again.",
}


def classify_status(status: int) -> ErrorCategory | None:
    """Category of an HTTP status, None for non-error statuses."""
    if 400 <= status < 500:
        return ErrorCategory.HTTP_4XX
    if status >= 500:
        return ErrorCategory.HTTP_5XX
    return None


def classify_message(message: str) -> ErrorCategory:
    """Fallback classification on the error text."""
    lower = message.lower()
    if "certificate" in lower or "ssl" in lower or "tls" in lower:
        return ErrorCategory.TLS
    if "timeout" in lower or "timed out" in lower:
        return ErrorCategory.TIMEOUT
    if "enotfound" in lower or "getaddrinfo" in lower or "name or service not known" in lower:
        return ErrorCategory.DNS
    if "econnrefused" in lower or "econnreset" in lower or "connection refused" in lower:
        return ErrorCategory.CONNECTION_REFUSED
    return ErrorCategory.UNKNOWN


def classify_error(error: BaseException | int | str) -> ErrorCategory:
    """Classify an exception, an HTTP status code or an error message.

    Exception types are checked first; the message text is only used when
    the type says nothing useful.
    """
    if isinstance(error, bool):
        return ErrorCategory.UNKNOWN
    if isinstance(error, int):
        return classify_status(error) or ErrorCategory.UNKNOWN
    if isinstance(error, str):
        return classify_message(error)

    # ClientSSLError subclasses ClientConnectorError, so it goes first
    if isinstance(error, aiohttp.ClientSSLError):
        return ErrorCategory.TLS
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, aiohttp.ClientResponseError):
        return classify_status(error.status) or ErrorCategory.UNKNOWN
    if isinstance(error, socket.gaierror):
        return ErrorCategory.DNS
    if isinstance(error, (ConnectionRefusedError, ConnectionResetError)):
        return ErrorCategory.CONNECTION_REFUSED
    if isinstance(error, aiohttp.ClientConnectorError):
        os_error = getattr(error, "os_error", None)
        if isinstance(os_error, socket.gaierror):
            return ErrorCategory.DNS
        if isinstance(os_error, (ConnectionRefusedError, ConnectionResetError)):
            return ErrorCategory.CONNECTION_REFUSED

    return classify_message(str(error))


def guidance_for(category: ErrorCategory) -> str:
    return GUIDANCE[category]
