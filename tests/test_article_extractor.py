"""Tests for article_extractor module."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from src.article_extractor import (
    WebArticleExtractor,
    describe_age,
    extract_publish_date,
    is_article_too_old,
)
from src.exceptions import ArticleExtractError

NOW = datetime(2099, 3, 15, 12, 0, tzinfo=UTC)
PAGE = """
<html><head>
<meta property="article:published_time" content="2099-03-14T09:30:00Z">
<title>Chips</title>
</head><body><article><p>Long article text.</p></article></body></html>
"""


def _session(url="https://example.com/story", text=PAGE, error=None):
    session = MagicMock()
    session.headers = {}
    if error:
        session.get.side_effect = error
    else:
        response = MagicMock()
        response.url = url
        response.text = text
        session.get.return_value = response
    return session


def test_publish_date_from_meta_tag():
    assert extract_publish_date(PAGE) == datetime(2099, 3, 14, 9, 30, tzinfo=UTC)


def test_publish_date_from_time_element_without_timezone():
    html = '<html><body><time datetime="2099-03-10T08:00:00">March 10</time></body></html>'
    assert extract_publish_date(html) == datetime(2099, 3, 10, 8, 0, tzinfo=UTC)


def test_publish_date_from_json_ld():
    html = (
        '<html><head><script type="application/ld+json">'
        '{"@type": "NewsArticle", "datePublished": "2099-03-01T10:00:00+01:00"}'
        "</script></head><body></body></html>"
    )
    assert extract_publish_date(html) == datetime(2099, 3, 1, 9, 0, tzinfo=UTC)


def test_publish_date_skips_unparseable_values():
    html = (
        '<html><head><meta name="date" content="yesterday">'
        '<meta property="article:modified_time" content="2099-03-02T00:00:00Z"></head></html>'
    )
    assert extract_publish_date(html) == datetime(2099, 3, 2, tzinfo=UTC)


def test_publish_date_missing():
    assert extract_publish_date("<html><body><p>No date</p></body></html>") is None


def test_extract_returns_article():
    session = _session()
    with patch("src.article_extractor.trafilatura") as mock_trafilatura:
        mock_trafilatura.extract.return_value = "Long article text."
        mock_trafilatura.extract_metadata.return_value = SimpleNamespace(title="Chips are scarce")
        article = WebArticleExtractor(timeout=5, session=session).extract("https://example.com/story")

    assert article.title == "Chips are scarce"
    assert article.content == "Long article text."
    assert article.published_date == datetime(2099, 3, 14, 9, 30, tzinfo=UTC)
    assert article.final_url is None
    session.get.assert_called_once_with("https://example.com/story", timeout=5, allow_redirects=True)
    assert "DailyRepoBot" in session.headers["User-Agent"]


def test_extract_reports_redirect_target():
    session = _session(url="https://example.com/real-story")
    with patch("src.article_extractor.trafilatura") as mock_trafilatura:
        mock_trafilatura.extract.return_value = "Text"
        mock_trafilatura.extract_metadata.return_value = None
        article = WebArticleExtractor(session=session).extract("https://click.example.com/r/1")

    assert article.final_url == "https://example.com/real-story"
    assert article.title == ""


def test_extract_without_readable_text_returns_none():
    with patch("src.article_extractor.trafilatura") as mock_trafilatura:
        mock_trafilatura.extract.return_value = None
        assert WebArticleExtractor(session=_session()).extract("https://example.com/story") is None


def test_extract_network_errors_return_none():
    for error in (requests.Timeout("slow"), requests.ConnectionError("down")):
        extractor = WebArticleExtractor(session=_session(error=error))
        assert extractor.extract("https://example.com/story") is None


def test_extract_http_error_returns_none():
    session = _session()
    session.get.return_value.raise_for_status.side_effect = requests.HTTPError("403")
    assert WebArticleExtractor(session=session).extract("https://example.com/story") is None


def test_is_article_too_old():
    assert is_article_too_old(NOW - timedelta(hours=49), 48, NOW) is True
    assert is_article_too_old(NOW - timedelta(hours=47), 48, NOW) is False
    assert is_article_too_old(None, 48, NOW) is False


def test_describe_age():
    assert describe_age(NOW - timedelta(days=5), NOW) == "5 days old"
    assert describe_age(NOW - timedelta(hours=30), NOW) == "1 day old"


def test_naive_publish_dates_are_read_as_utc():
    naive = datetime(2099, 3, 10, 12, 0)
    assert is_article_too_old(naive, 48, NOW) is True
    assert is_article_too_old(datetime(2099, 3, 15, 9, 0), 48, NOW) is False
    assert describe_age(naive, NOW) == "5 days old"


def test_extract_wraps_parser_failures():
    with patch("src.article_extractor.trafilatura") as mock_trafilatura:
        mock_trafilatura.extract.side_effect = ValueError("broken markup")
        with pytest.raises(ArticleExtractError, match="broken markup"):
            WebArticleExtractor(session=_session()).extract("https://example.com/story")
