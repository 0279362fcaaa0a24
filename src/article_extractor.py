"""Article page extraction — resolve redirects, read the publish date, pull the text."""

import json
import logging
from datetime import UTC, datetime
from typing import Protocol

import requests
import trafilatura
from bs4 import BeautifulSoup

from config import settings
from src.exceptions import ArticleExtractError
from src.models import ExtractedArticle

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; DailyRepoBot/1.0)"
REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
}

# Checked in order; the first parseable value wins
DATE_SELECTORS = [
    ('meta[property="article:published_time"]', "content"),
    ('meta[property="og:published_time"]', "content"),
    ('meta[name="pubdate"]', "content"),
    ('meta[name="publishdate"]', "content"),
    ('meta[name="date"]', "content"),
    ('meta[name="DC.date.issued"]', "content"),
    ('meta[itemprop="datePublished"]', "content"),
    ('meta[property="article:modified_time"]', "content"),
    ("time[datetime]", "datetime"),
    ("time[pubdate]", "datetime"),
]


class ArticleExtractor(Protocol):
    """Anything that turns a URL into an extracted article."""

    def extract(self, url: str) -> ExtractedArticle | None: ...


def _parse_date(value: str) -> datetime | None:
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _json_ld_dates(soup: BeautifulSoup):
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if isinstance(item, dict):
                yield item.get("datePublished") or item.get("dateCreated") or ""


def extract_publish_date(html: str) -> datetime | None:
    """Read an article's publish date from meta tags, <time> or JSON-LD."""
    soup = BeautifulSoup(html, "lxml")

    for selector, attribute in DATE_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        parsed = _parse_date(element.get(attribute) or element.get("content") or "")
        if parsed:
            return parsed

    for value in _json_ld_dates(soup):
        parsed = _parse_date(value)
        if parsed:
            return parsed

    return None


class WebArticleExtractor:
    """Fetches article pages over HTTP and extracts them with trafilatura."""

    def __init__(self, timeout: int | None = None, session: requests.Session | None = None):
        self.timeout = timeout or settings.article_fetch_timeout
        self.session = session or requests.Session()
        self.session.headers.update(REQUEST_HEADERS)

    def extract(self, url: str) -> ExtractedArticle | None:
        """Fetch and extract one article.

        Returns None when the page cannot be fetched or has no readable text.
        ``final_url`` is only set when redirects led somewhere else.

        Raises:
            ArticleExtractError: the page was fetched but could not be parsed.
        """
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.Timeout:
            logger.warning("Timeout fetching %s", url)
            return None
        except requests.RequestException as e:
            logger.warning("Failed to fetch %s: %s", url, e)
            return None

        html = response.text
        try:
            published = extract_publish_date(html)
            content = trafilatura.extract(
                html,
                include_comments=False,
                include_tables=True,
                output_format="txt",
            )
        except Exception as e:
            raise ArticleExtractError(f"Failed to extract {url}: {e}") from e

        if not content:
            logger.warning("No content extracted from %s", url)
            return None

        metadata = trafilatura.extract_metadata(html)
        title = metadata.title if metadata and metadata.title else ""

        final_url = response.url if response.url and response.url != url else None
        if final_url:
            logger.info("Resolved redirect: %s -> %s", url[:60], final_url[:60])

        return ExtractedArticle(
            title=title,
            content=content,
            published_date=published,
            final_url=final_url,
        )


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def is_article_too_old(
    published: datetime | None, max_age_hours: int, now: datetime | None = None
) -> bool:
    """Check if an article is older than ``max_age_hours``. Unknown dates pass.

    Naive dates are read as UTC.
    """
    if published is None:
        return False
    now = now or datetime.now(UTC)
    age_hours = (_as_utc(now) - _as_utc(published)).total_seconds() / 3600
    return age_hours > max_age_hours


def describe_age(published: datetime, now: datetime | None = None) -> str:
    """Human-readable age, e.g. "5 days old"."""
    now = now or datetime.now(UTC)
    days = round((_as_utc(now) - _as_utc(published)).total_seconds() / 86400)
    return f"{days} day old" if days == 1 else f"{days} days old"
