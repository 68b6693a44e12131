"""Content processing module.

Only the dependency-free leaves are re-exported here; admission, scoring,
relevance and dedupe depend on :mod:`topicfeed.records` and are imported by
their module path.
"""

from .canonicalize import content_checksum, extract_domain, normalize_url
from .text_utils import canonical_title, contains_phrase, count_term, find_phrases

__all__ = [
    'normalize_url',
    'extract_domain',
    'content_checksum',
    'canonical_title',
    'contains_phrase',
    'count_term',
    'find_phrases',
]
