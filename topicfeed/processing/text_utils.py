"""Text matching helpers shared by admission, scoring and story dedup."""

import re
from functools import lru_cache


def canonical_title(title: str | None) -> str:
    """Convert a story title to its grouping key.

    Args:
        title: Story or article title

    Returns:
        Lowercased, trimmed title
    """
    if not title:
        return ""
    return title.lower().strip()


def contains_phrase(text: str, phrase: str) -> bool:
    """Case-insensitive substring match.

    Args:
        text: Haystack (any case)
        phrase: Needle (any case)

    Returns:
        True when the phrase occurs in the text
    """
    phrase = (phrase or "").strip().lower()
    if not phrase or not text:
        return False
    return phrase in text.lower()


def find_phrases(text: str, phrases: list[str]) -> list[str]:
    """Return the phrases that occur in text, in the given order."""
    return [phrase for phrase in phrases if contains_phrase(text, phrase)]


@lru_cache(maxsize=512)
def _word_pattern(term: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)


def count_term(text: str, term: str) -> int:
    """Count whole-word occurrences of a term.

    Args:
        text: Text to search
        term: Term such as a region or place name

    Returns:
        Number of occurrences
    """
    term = (term or "").strip()
    if not term or not text:
        return 0
    return len(_word_pattern(term).findall(text))


def count_linked_mentions(text: str, term: str, other: str) -> int:
    """Count mentions of ``term`` joined to ``other`` ("A and B", "A to B").

    Such mentions describe a relation between two places and should not count
    as a story being *about* ``term``.
    """
    term = (term or "").strip().lower()
    other = (other or "").strip().lower()
    if not term or not other or not text:
        return 0

    lowered = text.lower()
    joined = [
        f"{term} and {other}",
        f"{other} and {term}",
        f"{term} to {other}",
        f"{other} to {term}",
    ]
    return sum(lowered.count(phrase) for phrase in joined)


def count_periods(text: str | None) -> int:
    """Number of sentence-terminating periods in text."""
    if not text:
        return 0
    return len(re.findall(r"\.(?=\s|$)", text))
