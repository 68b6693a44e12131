"""Utility functions for topicfeed."""

from datetime import UTC, datetime
from pathlib import Path

from .logging import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_date_string(date_str: str) -> datetime | None:
    """Parse various date string formats.

    Args:
        date_str: Date string to parse

    Returns:
        Parsed timezone-aware datetime or None if parsing fails
    """
    if not date_str:
        return None

    date_str = date_str.strip()

    try:
        return ensure_aware(datetime.fromisoformat(date_str.replace("Z", "+00:00")))
    except ValueError:
        pass

    # RSS feeds mostly emit RFC 2822
    try:
        from email.utils import parsedate_to_datetime
        return ensure_aware(parsedate_to_datetime(date_str))
    except (ValueError, TypeError):
        pass

    formats = [
        "%Y-%m-%d %H:%M:%S",
        "%d/%m/%Y",
        "%B %d, %Y",
        "%b %d, %Y",
        "%d %B %Y",
        "%d %b %Y",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue

    logger.warning("Failed to parse date string", date_string=date_str)
    return None


def format_datetime_iso(dt: datetime) -> str:
    """Format datetime as ISO string.

    Args:
        dt: Datetime to format

    Returns:
        ISO formatted datetime string
    """
    return ensure_aware(dt).isoformat()


def count_words(text: str | None) -> int:
    """Count whitespace-separated words."""
    if not text:
        return 0
    return len(text.split())


def ensure_directory(path: str | Path, mode: int = 0o700) -> Path:
    """Ensure directory exists.

    Args:
        path: Directory path
        mode: Directory permissions (default: 0o700 - owner read/write/execute only)

    Returns:
        Path object
    """
    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True, mode=mode)
    return path_obj
