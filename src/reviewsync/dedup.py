"""Collapse duplicate review submissions from the same reviewer.

Bots occasionally post the same review twice (re-runs, retried webhooks).
Reviews are fingerprinted on their textual content and only the most recent
review per (reviewer, fingerprint) pair is kept.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

from reviewsync.models import ReviewFingerprint

if TYPE_CHECKING:
    from reviewsync.models import Review

logger = logging.getLogger(__name__)

_PART_SEPARATOR = "|"
_SIMILARITY_MIN_LENGTH = 50
_SIMILARITY_MIN_RATIO = 0.8


def generate_fingerprint(review: Review) -> ReviewFingerprint:
    """Fingerprint a review from its body and each comment's ``file:line:body``."""
    parts: list[str] = []
    body = review.body.strip()
    if body:
        parts.append(body)

    comment_ids: list[int] = []
    for comment in review.comments:
        parts.append(f"{comment.file}:{comment.line}:{comment.body.strip()}")
        if comment.id != 0:
            comment_ids.append(comment.id)

    digest = hashlib.sha256(_PART_SEPARATOR.join(parts).encode()).hexdigest()
    return ReviewFingerprint(reviewer=review.reviewer, content_hash=digest, comment_ids=sorted(comment_ids))


def deduplicate_reviews(reviews: list[Review]) -> list[Review]:
    """Keep the latest review per (reviewer, content hash), in chronological order.

    Reviews from different reviewers, or with different content, are never
    merged. Ties on ``submitted_at`` keep the first review seen.
    """
    if len(reviews) <= 1:
        return list(reviews)

    latest: dict[tuple[str, str], Review] = {}
    for review in reviews:
        key = (review.reviewer, generate_fingerprint(review).content_hash)
        existing = latest.get(key)
        if existing is None or review.submitted_at > existing.submitted_at:
            latest[key] = review

    deduplicated = sorted(latest.values(), key=lambda r: r.submitted_at)
    dropped = len(reviews) - len(deduplicated)
    if dropped:
        logger.debug("Dropped %d duplicate review(s)", dropped)
    return deduplicated


def _normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def is_similar_content(first: str, second: str) -> bool:
    """Loose near-duplicate check for review text.

    Equal after whitespace normalization, or (for texts longer than 50
    characters) the shorter one is a substring of the longer and more than
    80% of its length.
    """
    a = _normalize_whitespace(first)
    b = _normalize_whitespace(second)
    if a == b:
        return True

    if len(a) <= _SIMILARITY_MIN_LENGTH or len(b) <= _SIMILARITY_MIN_LENGTH:
        return False

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if shorter not in longer:
        return False
    return len(shorter) / len(longer) > _SIMILARITY_MIN_RATIO
