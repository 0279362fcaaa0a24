"""Data models for the Daily Repo ingestion pipeline."""

import json
import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum


class SourceType(StrEnum):
    """Kind of content stored in the repository."""

    NEWSLETTER = "newsletter"
    ARTICLE = "article"
    EMAIL_NOTE = "email_note"


class LinkType(StrEnum):
    """Category assigned to a link found in a newsletter."""

    ARTICLE = "article"
    SOCIAL = "social"
    UNSUBSCRIBE = "unsubscribe"
    OTHER = "other"


class EventType(StrEnum):
    START = "start"
    NEWSLETTER = "newsletter"
    ARTICLE = "article"
    EMAIL_NOTE = "email_note"
    UNFETCHED_EMAILS = "unfetched_emails"
    COMPLETE = "complete"
    ERROR = "error"


class Phase(StrEnum):
    FETCHING = "fetching"
    PROCESSING = "processing"
    IMPORTING_NOTES = "importing_notes"
    EXTRACTING = "extracting"
    SCANNING_UNFETCHED = "scanning_unfetched"
    DONE = "done"


class ItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


_ADDRESS_PATTERN = re.compile(r"<([^>]+)>")


def sender_address(sender: str) -> str:
    """Return the lower-cased address from a From header value."""
    match = _ADDRESS_PATTERN.search(sender or "")
    return (match.group(1) if match else sender or "").strip().lower()


@dataclass
class CandidateEmail:
    """A fetched email, keyed by the provider's message id."""

    id: str
    sender: str
    subject: str
    date: datetime
    body_html: str = ""
    body_text: str = ""

    @property
    def sender_email(self) -> str:
        return sender_address(self.sender)


@dataclass
class ExtractedLink:
    """A link found in a newsletter body."""

    url: str
    text: str
    link_type: LinkType


@dataclass
class ParsedNewsletter:
    """Plain text and categorized links of a newsletter body."""

    plain_text: str
    links: list[ExtractedLink] = field(default_factory=list)

    @property
    def article_links(self) -> list[ExtractedLink]:
        return [link for link in self.links if link.link_type == LinkType.ARTICLE]


@dataclass
class ArticleLinkCandidate:
    """An article link collected from a digest newsletter."""

    url: str
    text: str
    newsletter_subject: str
    newsletter_email: str


@dataclass
class ExtractedArticle:
    """Result of extracting a single article page."""

    title: str
    content: str
    published_date: datetime | None = None
    final_url: str | None = None


@dataclass
class RepositoryItem:
    """One unit of ingested content (a row in repository_items)."""

    source_type: SourceType
    title: str
    content: str
    ingest_date: str  # YYYY-MM-DD day bucket
    received_at: datetime
    source_email: str | None = None
    source_url: str | None = None
    raw_html: str | None = None
    external_message_id: str | None = None
    id: int | None = None


@dataclass
class SenderSummary:
    """Aggregated sender info from a mailbox scan."""

    email: str
    name: str
    count: int
    subjects: list[str]
    latest_date: datetime

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "name": self.name,
            "count": self.count,
            "subjects": self.subjects[:3],
            "latestDate": self.latest_date.isoformat(),
        }


@dataclass(frozen=True)
class FetchWindow:
    """The [after, before] range used to bound a mail fetch.

    Rolling windows apply a fine-grained timestamp filter because Gmail's
    ``after:`` operator only has day precision. Historical windows keep
    every email of the requested day.
    """

    after: datetime
    before: datetime | None = None
    historical: bool = False

    @classmethod
    def rolling(cls, hours: int, now: datetime | None = None) -> "FetchWindow":
        now = now or datetime.now(UTC)
        return cls(after=now - timedelta(hours=hours))

    @classmethod
    def for_day(cls, day: date) -> "FetchWindow":
        return cls(
            after=datetime.combine(day, time(0, 0, 0), tzinfo=UTC),
            before=datetime.combine(day, time(23, 59, 59), tzinfo=UTC),
            historical=True,
        )

    def includes(self, moment: datetime) -> bool:
        if self.historical:
            return True
        return moment >= self.after


@dataclass
class RunSummary:
    """Counters reported in the final ``complete`` event."""

    newsletters: int = 0
    articles: int = 0
    email_notes: int = 0
    errors: int = 0
    total_characters: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "newsletters": self.newsletters,
            "articles": self.articles,
            "emailNotes": self.email_notes,
            "errors": self.errors,
            "totalCharacters": self.total_characters,
        }


@dataclass
class ProgressItem:
    title: str
    status: ItemStatus
    sender: str | None = None
    url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"title": self.title, "status": str(self.status)}
        if self.sender is not None:
            data["from"] = self.sender
        if self.url is not None:
            data["url"] = self.url
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ProgressEvent:
    """One event of the streamed progress log. Never persisted."""

    type: EventType
    phase: Phase
    current: int | None = None
    total: int | None = None
    batch: tuple[int, int] | None = None
    item: ProgressItem | None = None
    summary: RunSummary | None = None
    unfetched_emails: list[SenderSummary] | None = None

    def to_dict(self) -> dict:
        data: dict = {"type": str(self.type), "phase": str(self.phase)}
        if self.current is not None:
            data["current"] = self.current
        if self.total is not None:
            data["total"] = self.total
        if self.batch is not None:
            data["batch"] = {"current": self.batch[0], "total": self.batch[1]}
        if self.item is not None:
            data["item"] = self.item.to_dict()
        if self.summary is not None:
            data["summary"] = self.summary.to_dict()
        if self.unfetched_emails is not None:
            data["unfetchedEmails"] = [s.to_dict() for s in self.unfetched_emails]
        return data

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"
