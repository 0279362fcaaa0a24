"""Shared fixtures: an isolated repository plus in-memory mail and web doubles."""

from datetime import UTC, datetime

import pytest

from src.database import Repository
from src.exceptions import EmailFetchError
from src.models import CandidateEmail, ExtractedArticle, SenderSummary

NOW = datetime(2099, 3, 15, 12, 0, 0, tzinfo=UTC)

DIGEST_HTML = """
<html><body>
  <h1>Morning Digest</h1>
  <p>Three stories worth your time today.</p>
  <p><a href="https://example.com/2099/03/ai-chips-shortage">AI chips are in short supply</a></p>
  <p><a href="https://news.example.org/articles/open-models-rise">Open models are catching up</a></p>
  <p><a href="https://twitter.com/digest">Follow us</a></p>
  <footer><a href="https://digest.example.com/unsubscribe">Unsubscribe</a></footer>
</body></html>
"""


def make_email(message_id, sender="Digest <digest@example.com>", subject="Daily Digest",
               date=None, body_html=DIGEST_HTML, body_text=""):
    return CandidateEmail(
        id=message_id,
        sender=sender,
        subject=subject,
        date=date or NOW,
        body_html=body_html,
        body_text=body_text,
    )


class FakeMailSource:
    """MailSource double answering from in-memory lists and recording calls."""

    def __init__(self, emails=None, labels=None, notes=None, scan=None,
                 batch_drops=(), fail_labels=(), scan_error=None, notes_error=None):
        self.emails = list(emails or [])
        self.labels = dict(labels or {})
        self.notes = list(notes or [])
        self.scan = list(scan or [])
        self.batch_drops = {s.lower() for s in batch_drops}
        self.fail_labels = set(fail_labels)
        self.scan_error = scan_error
        self.notes_error = notes_error
        self.calls = []

    def fetch_by_senders(self, senders, max_results, after, before=None):
        self.calls.append(("senders", tuple(senders), max_results, after, before))
        wanted = {s.lower() for s in senders} - self.batch_drops
        return [e for e in self.emails if e.sender_email in wanted][:max_results]

    def fetch_by_label(self, label, max_results, after):
        self.calls.append(("label", label, max_results))
        if label in self.fail_labels:
            raise EmailFetchError(f"Label {label} not found")
        return list(self.labels.get(label, []))[:max_results]

    def fetch_by_subject(self, sender, subject_contains, max_results, hours_back):
        self.calls.append(("subject", sender, subject_contains, max_results, hours_back))
        if self.notes_error:
            raise self.notes_error
        return [n for n in self.notes if subject_contains.lower() in n.subject.lower()]

    def fetch_single_sender(self, sender, max_results, after):
        self.calls.append(("single", sender, max_results))
        return [e for e in self.emails if e.sender_email == sender.lower()][:max_results]

    def scan_unique_senders(self, after, min_count, message_cap):
        self.calls.append(("scan", after, min_count, message_cap))
        if self.scan_error:
            raise self.scan_error
        return [s for s in self.scan if s.count >= min_count]


class FakeExtractor:
    """ArticleExtractor double keyed by URL. Unknown URLs extract to None."""

    def __init__(self, pages=None, errors=None):
        self.pages = dict(pages or {})
        self.errors = dict(errors or {})
        self.requested = []

    def extract(self, url):
        self.requested.append(url)
        if url in self.errors:
            raise self.errors[url]
        return self.pages.get(url)


def make_article(title="Story", content="Article body " * 20, published=None, final_url=None):
    return ExtractedArticle(title=title, content=content, published_date=published, final_url=final_url)


def make_sender(email, count=3, name="Sender"):
    return SenderSummary(email=email, name=name, count=count, subjects=["Hello"], latest_date=NOW)


@pytest.fixture
def repository(tmp_path):
    return Repository(tmp_path / "test.db")
