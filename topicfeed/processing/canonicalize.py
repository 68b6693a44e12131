"""URL canonicalization and content fingerprints used for deduplication.

Every dedup decision in the package goes through :func:`normalize_url`:
the content store's unique key, in-batch dedup and discard suppression all
compare normalized URLs, never raw ones.
"""

import re
import zlib
from urllib.parse import urlparse

TRACKING_PARAMS = frozenset({"fbclid", "gclid"})
TRACKING_PREFIXES = ("utm_",)

_SCHEME_RE = re.compile(r"^https?://")


def _is_tracking_param(param: str) -> bool:
    name = param.split("=", 1)[0]
    return name in TRACKING_PARAMS or name.startswith(TRACKING_PREFIXES)


def normalize_url(url: str | None) -> str:
    """Normalize a URL into the dedup key for an article.

    - Lowercase everything
    - Strip ``http://`` / ``https://`` and a leading ``www.``
    - Drop ``utm_*``, ``fbclid`` and ``gclid`` query parameters
    - Strip trailing slashes and a now-empty ``?`` / ``&``

    Never raises: anything that is not a string normalizes to ``""``.

    Args:
        url: Raw URL string

    Returns:
        Normalized URL key
    """
    if not isinstance(url, str):
        return ""

    normalized = _SCHEME_RE.sub("", url.strip().lower())
    if normalized.startswith("www."):
        normalized = normalized[4:]

    base, _, query = normalized.partition("?")
    kept = [p for p in query.split("&") if p and not _is_tracking_param(p)]

    base = base.rstrip("/")
    if kept:
        return f"{base}?{'&'.join(kept)}"
    return base


def extract_domain(url: str | None) -> str:
    """Extract the host of a URL without a ``www.`` prefix.

    Args:
        url: URL string, with or without scheme

    Returns:
        Lowercase domain, or ``""`` when none can be found
    """
    if not isinstance(url, str) or not url.strip():
        return ""

    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"

    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        return ""

    if host.startswith("www."):
        host = host[4:]
    return host


def content_checksum(title: str | None, body: str | None) -> str:
    """Cheap rolling hash over title and body.

    Only used to notice content edits behind an already-known URL; it is not a
    cross-URL dedup signal.
    """
    payload = f"{title or ''}\n{body or ''}".encode("utf-8")
    return f"{zlib.adler32(payload) & 0xFFFFFFFF:08x}"
