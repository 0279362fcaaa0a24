"""Decide whether a newsletter is a digest or carries the full article itself.

Full-content newsletters need no article extraction: the email IS the
article. The rules are deliberately conservative. Treating a full-content
newsletter as a digest only costs a wasted extraction attempt, while
treating a digest as full content silently loses its articles.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

# Known digest senders: never treat as full content, always extract articles
KNOWN_DIGEST_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"getfivethings",       # Five Things Tech
        r"morningbrew",
        r"techmeme",
        r"theinformation",
        r"strictlyvc",
        r"businessinsider",
        r"washingtonpost",
        r"nytimes",
        r"wsj\.com",
        r"newyorker",
        r"theatlantic",
        r"beehiiv",             # mostly digests
        r"handelsblatt",
    )
]

PERSONAL_PLATFORM_PATTERN = re.compile(r"@substack\.com", re.IGNORECASE)

DIGEST_LINK_COUNT = 3
MIN_FULL_CONTENT_LENGTH = 2000
LONG_CONTENT_LENGTH = 10000
LONG_CONTENT_MAX_LINKS = 1
PERSONAL_PLATFORM_LENGTH = 5000


@dataclass(frozen=True)
class MessageFeatures:
    """Inputs the rules look at."""

    content_length: int
    article_link_count: int
    sender: str


@dataclass(frozen=True)
class Rule:
    name: str
    predicate: Callable[[MessageFeatures], bool]
    result: bool


def _is_known_digest(f: MessageFeatures) -> bool:
    return any(p.search(f.sender) for p in KNOWN_DIGEST_PATTERNS)


def _is_personal_platform(f: MessageFeatures) -> bool:
    return bool(PERSONAL_PLATFORM_PATTERN.search(f.sender))


# Evaluated in order, first match wins
RULES: tuple[Rule, ...] = (
    Rule("known_digest_sender", _is_known_digest, False),
    Rule("many_article_links", lambda f: f.article_link_count >= DIGEST_LINK_COUNT, False),
    Rule("too_short", lambda f: f.content_length < MIN_FULL_CONTENT_LENGTH, False),
    Rule(
        "long_with_few_links",
        lambda f: f.content_length > LONG_CONTENT_LENGTH
        and f.article_link_count <= LONG_CONTENT_MAX_LINKS,
        True,
    ),
    Rule(
        "personal_platform_essay",
        lambda f: _is_personal_platform(f)
        and f.content_length > PERSONAL_PLATFORM_LENGTH
        and f.article_link_count == 0,
        True,
    ),
)

DEFAULT_RULE = "default_digest"


def classify_message(
    plain_text: str, article_link_count: int, sender: str | None
) -> tuple[bool, str]:
    """Return (is_full_content, name of the rule that decided)."""
    features = MessageFeatures(
        content_length=len(plain_text or ""),
        article_link_count=article_link_count,
        sender=sender or "",
    )
    for rule in RULES:
        if rule.predicate(features):
            return rule.result, rule.name
    return False, DEFAULT_RULE


def is_full_content_newsletter(
    plain_text: str, article_link_count: int, sender: str | None
) -> bool:
    """Detect if a newsletter contains the full article rather than teasers.

    Args:
        plain_text: The newsletter's plain text content.
        article_link_count: Links categorized as article BEFORE URL/text filtering.
        sender: The raw sender (From header or address).

    Returns:
        True only when the message is very likely a standalone article.
    """
    result, rule = classify_message(plain_text, article_link_count, sender)
    if result:
        logger.info(
            "Detected full-content newsletter (%s: %d chars, %d article links)",
            rule, len(plain_text or ""), article_link_count,
        )
    return result
