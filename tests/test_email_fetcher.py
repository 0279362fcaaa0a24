"""Tests for email_fetcher module."""

import base64
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from src.email_fetcher import (
    GmailMailSource,
    _after_clause,
    _extract_body,
    _get_gmail_service,
    _get_header,
    _parse_date,
    normalize_label,
)
from src.exceptions import ConfigurationError, EmailFetchError

AFTER = datetime(2099, 3, 14, 12, 0, tzinfo=UTC)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode()


def _message(message_id, sender, subject, date="Sat, 14 Mar 2099 15:00:00 +0000", html="<p>Hi</p>"):
    return {
        "id": message_id,
        "payload": {
            "mimeType": "text/html",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": date},
            ],
            "body": {"data": _b64(html)},
        },
    }


class _Call:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def execute(self):
        if self.error:
            raise self.error
        return self.result


class FakeGmailService:
    """Just enough of users().messages() to answer list and get."""

    def __init__(self, messages, pages=None, broken=()):
        self.by_id = {m["id"]: m for m in messages}
        self.pages = pages
        self.broken = set(broken)
        self.queries = []
        self.formats = []

    def users(self):
        return self

    def messages(self):
        return self

    def list(self, userId, q, maxResults, pageToken=None, includeSpamTrash=False):
        self.queries.append(q)
        if self.pages is not None:
            index = int(pageToken or 0)
            page = {"messages": [{"id": i} for i in self.pages[index]]}
            if index + 1 < len(self.pages):
                page["nextPageToken"] = str(index + 1)
            return _Call(page)
        return _Call({"messages": [{"id": i} for i in self.by_id]})

    def get(self, userId, id, format, metadataHeaders=None):
        self.formats.append(format)
        if id in self.broken:
            return _Call(error=RuntimeError("boom"))
        return _Call(self.by_id[id])


def test_get_header_finds_header():
    headers = [
        {"name": "Subject", "value": "Test Subject"},
        {"name": "From", "value": "sender@example.com"},
    ]
    assert _get_header(headers, "Subject") == "Test Subject"
    assert _get_header(headers, "from") == "sender@example.com"


def test_get_header_returns_empty_for_missing():
    headers = [{"name": "Subject", "value": "Test"}]
    assert _get_header(headers, "From") == ""


def test_extract_body_plain_text():
    payload = {"mimeType": "text/plain", "body": {"data": _b64("Hello world")}}
    html, plain = _extract_body(payload)
    assert plain == "Hello world"
    assert html == ""


def test_extract_body_html():
    html_content = "<html><body><p>Hello</p></body></html>"
    payload = {"mimeType": "text/html", "body": {"data": _b64(html_content)}}
    html, plain = _extract_body(payload)
    assert html == html_content
    assert plain == ""


def test_extract_body_multipart():
    payload = {
        "mimeType": "multipart/alternative",
        "parts": [
            {"mimeType": "text/plain", "body": {"data": _b64("Plain text")}},
            {"mimeType": "text/html", "body": {"data": _b64("<p>HTML text</p>")}},
        ],
    }
    result_html, result_text = _extract_body(payload)
    assert result_text == "Plain text"
    assert result_html == "<p>HTML text</p>"


def test_parse_date_falls_back_to_now():
    assert _parse_date("Sat, 14 Mar 2099 15:00:00 +0000") == datetime(2099, 3, 14, 15, 0, tzinfo=UTC)
    assert _parse_date("not a date").tzinfo is not None


def test_after_clause_uses_next_day_for_exclusive_before():
    assert _after_clause(AFTER) == "after:2099/03/14"
    assert _after_clause(AFTER, AFTER) == "after:2099/03/14 before:2099/03/15"


def test_normalize_label():
    assert normalize_label("#Newsstand AI") == "Newsstand-AI"
    assert normalize_label("newsstand/marketing") == "newsstand-marketing"


def test_service_raises_without_credentials():
    with patch("src.email_fetcher.settings") as mock_settings:
        mock_settings.gmail_credentials_json = ""
        mock_settings.gmail_token_json = ""
        with pytest.raises(ConfigurationError, match="not configured"):
            _get_gmail_service()


def test_service_wraps_bad_token():
    with pytest.raises(EmailFetchError, match="authenticate"):
        _get_gmail_service(credentials_json="{}", token_json="not json")


def test_fetch_by_senders_builds_or_query_and_merges():
    service = FakeGmailService([_message("m1", "A <a@example.com>", "One")])
    source = GmailMailSource(service=service)

    emails = source.fetch_by_senders(["a@example.com", "b@example.com"], 50, AFTER)

    assert service.queries == ["(from:a@example.com OR from:b@example.com) after:2099/03/14"]
    assert [e.id for e in emails] == ["m1"]
    assert emails[0].sender_email == "a@example.com"
    assert emails[0].body_html == "<p>Hi</p>"


def test_fetch_by_senders_chunks_long_lists():
    service = FakeGmailService([_message("m1", "a@example.com", "One")])
    senders = [f"s{i}@example.com" for i in range(45)]

    emails = GmailMailSource(service=service).fetch_by_senders(senders, 50, AFTER)

    assert len(service.queries) == 2
    # Same message returned by both chunks is kept once
    assert len(emails) == 1


def test_list_paginates_up_to_max_results():
    messages = [_message(f"m{i}", "a@example.com", "S") for i in range(5)]
    service = FakeGmailService(messages, pages=[["m0", "m1"], ["m2", "m3"], ["m4"]])

    emails = GmailMailSource(service=service).fetch_single_sender("a@example.com", 3, AFTER)

    assert [e.id for e in emails] == ["m0", "m1", "m2"]


def test_fetch_by_label_normalizes_label():
    service = FakeGmailService([])
    GmailMailSource(service=service).fetch_by_label("#Newsstand AI", 10, AFTER)
    assert service.queries == ["label:Newsstand-AI after:2099/03/14"]


def test_fetch_by_subject_rechecks_plus_tag_locally():
    service = FakeGmailService([
        _message("n1", "me@example.com", "Read this +dailyrepo"),
        _message("n2", "me@example.com", "Read this dailyrepo"),
    ])

    notes = GmailMailSource(service=service).fetch_by_subject(None, "+dailyrepo", 50, 24)

    assert [n.id for n in notes] == ["n1"]
    assert 'subject:"dailyrepo"' in service.queries[0]
    assert "from:" not in service.queries[0]


def test_search_failure_raises_fetch_error():
    service = FakeGmailService([_message("m1", "a@example.com", "S")], broken=["m1"])
    with pytest.raises(EmailFetchError):
        GmailMailSource(service=service).fetch_single_sender("a@example.com", 5, AFTER)


def test_scan_unique_senders_aggregates_and_sorts():
    service = FakeGmailService([
        _message("1", '"Big News" <big@example.com>', "First"),
        _message("2", '"Big News" <big@example.com>', "Second", date="Sun, 15 Mar 2099 08:00:00 +0000"),
        _message("3", "solo@example.com", "Only"),
        _message("4", "no address", "Broken"),
        _message("5", "ghost@example.com", "Unreadable"),
    ], broken=["5"])

    senders = GmailMailSource(service=service).scan_unique_senders(AFTER, 1, 100)

    assert [s.email for s in senders] == ["big@example.com", "solo@example.com"]
    assert senders[0].name == "Big News"
    assert senders[0].count == 2
    assert senders[0].subjects == ["First", "Second"]
    assert senders[0].latest_date == datetime(2099, 3, 15, 8, 0, tzinfo=UTC)
    assert senders[1].name == "solo@example.com"
    assert set(service.formats) == {"metadata"}
    assert "-in:sent" in service.queries[0]


def test_scan_unique_senders_applies_min_count():
    service = FakeGmailService([
        _message("1", "a@example.com", "x"),
        _message("2", "a@example.com", "y"),
        _message("3", "b@example.com", "z"),
    ])
    senders = GmailMailSource(service=service).scan_unique_senders(AFTER, 2, 100)
    assert [s.email for s in senders] == ["a@example.com"]
