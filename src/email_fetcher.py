"""Gmail API integration — fetch newsletters, tagged notes and sender statistics."""

import base64
import json
import logging
import re
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Protocol

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from config import settings
from src.content_parser import extract_sender_name
from src.exceptions import ConfigurationError, EmailFetchError
from src.models import CandidateEmail, SenderSummary, sender_address

logger = logging.getLogger(__name__)

# Keep OR-queries short enough for Gmail's query length limit
SENDER_CHUNK_SIZE = 40
# Gmail caps messages.list page size at 500
MAX_PAGE_SIZE = 500


class MailSource(Protocol):
    """The five mailbox queries the ingestion run relies on."""

    def fetch_by_senders(
        self, senders: list[str], max_results: int, after: datetime, before: datetime | None = None
    ) -> list[CandidateEmail]: ...

    def fetch_by_label(self, label: str, max_results: int, after: datetime) -> list[CandidateEmail]: ...

    def fetch_by_subject(
        self, sender: str | None, subject_contains: str, max_results: int, hours_back: int
    ) -> list[CandidateEmail]: ...

    def fetch_single_sender(self, sender: str, max_results: int, after: datetime) -> list[CandidateEmail]: ...

    def scan_unique_senders(
        self, after: datetime, min_count: int, message_cap: int
    ) -> list[SenderSummary]: ...


def _get_gmail_service(credentials_json: str | None = None, token_json: str | None = None):
    """Build and return an authenticated Gmail API service."""
    creds_json = credentials_json if credentials_json is not None else settings.gmail_credentials_json
    token_json = token_json if token_json is not None else settings.gmail_token_json

    if not creds_json or not token_json:
        raise ConfigurationError("Gmail credentials or token not configured.")

    try:
        token_data = json.loads(token_json)
        creds = Credentials.from_authorized_user_info(token_data)

        if creds.expired and creds.refresh_token:
            creds.refresh(Request())

        return build("gmail", "v1", credentials=creds)
    except Exception as e:
        raise EmailFetchError(f"Failed to authenticate with Gmail: {e}") from e


def _extract_body(payload: dict) -> tuple[str, str]:
    """Extract HTML and plain text body from a Gmail message payload.

    Args:
        payload: The message payload from Gmail API.

    Returns:
        Tuple of (body_html, body_text).
    """
    body_html = ""
    body_text = ""

    def _walk_parts(parts):
        nonlocal body_html, body_text
        for part in parts:
            mime_type = part.get("mimeType", "")
            data = part.get("body", {}).get("data", "")

            if mime_type == "text/html" and data and not body_html:
                body_html = base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")
            elif mime_type == "text/plain" and data and not body_text:
                body_text = base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")

            if "parts" in part:
                _walk_parts(part["parts"])

    mime_type = payload.get("mimeType", "")
    if mime_type.startswith("multipart/"):
        _walk_parts(payload.get("parts", []))
    else:
        data = payload.get("body", {}).get("data", "")
        if data:
            decoded = base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")
            if mime_type == "text/html":
                body_html = decoded
            else:
                body_text = decoded

    return body_html, body_text


def _get_header(headers: list[dict], name: str) -> str:
    """Get a header value by name from Gmail message headers."""
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def _parse_date(date_str: str) -> datetime:
    """Parse an RFC 2822 Date header, falling back to now."""
    try:
        parsed = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError):
        return datetime.now(UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _gmail_day(moment: datetime) -> str:
    """Format a datetime as Gmail's day-precision YYYY/MM/DD (UTC)."""
    return moment.astimezone(UTC).strftime("%Y/%m/%d")


def _after_clause(after: datetime, before: datetime | None = None) -> str:
    clause = f"after:{_gmail_day(after)}"
    if before is not None:
        # before: is exclusive, so the whole last day needs the next date
        clause += f" before:{_gmail_day(before + timedelta(days=1))}"
    return clause


def normalize_label(label: str) -> str:
    """Turn a display label ("#Newsstand AI") into Gmail's search form."""
    label = label.strip().lstrip("#").strip()
    return re.sub(r"[\s/]+", "-", label)


class GmailMailSource:
    """MailSource backed by the Gmail API (read-only scope)."""

    def __init__(self, service=None):
        self.service = service or _get_gmail_service()

    def _list_message_ids(self, query: str, max_results: int) -> list[str]:
        """Page through messages.list until ``max_results`` ids are collected."""
        ids: list[str] = []
        page_token = None

        while len(ids) < max_results:
            result = (
                self.service.users()
                .messages()
                .list(
                    userId="me",
                    q=query,
                    maxResults=min(MAX_PAGE_SIZE, max_results - len(ids)),
                    pageToken=page_token,
                    includeSpamTrash=False,
                )
                .execute()
            )

            ids.extend(ref["id"] for ref in result.get("messages", []) if ref.get("id"))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return ids[:max_results]

    def _get_message(self, message_id: str) -> CandidateEmail:
        msg = (
            self.service.users()
            .messages()
            .get(userId="me", id=message_id, format="full")
            .execute()
        )

        payload = msg.get("payload", {})
        headers = payload.get("headers", [])
        body_html, body_text = _extract_body(payload)

        return CandidateEmail(
            id=msg.get("id", message_id),
            sender=_get_header(headers, "From"),
            subject=_get_header(headers, "Subject"),
            date=_parse_date(_get_header(headers, "Date")),
            body_html=body_html,
            body_text=body_text,
        )

    def _search(self, query: str, max_results: int) -> list[CandidateEmail]:
        logger.info("Querying Gmail: %s", query)
        try:
            ids = self._list_message_ids(query, max_results)
            messages = [self._get_message(message_id) for message_id in ids]
        except Exception as e:
            raise EmailFetchError(f"Failed to fetch emails: {e}") from e

        logger.info("Fetched %d emails", len(messages))
        return messages

    def fetch_by_senders(
        self, senders: list[str], max_results: int, after: datetime, before: datetime | None = None
    ) -> list[CandidateEmail]:
        """Fetch mail from any of ``senders`` inside the window, merged by id."""
        if not senders:
            return []

        merged: dict[str, CandidateEmail] = {}
        for start in range(0, len(senders), SENDER_CHUNK_SIZE):
            chunk = senders[start:start + SENDER_CHUNK_SIZE]
            from_query = " OR ".join(f"from:{sender}" for sender in chunk)
            query = f"({from_query}) {_after_clause(after, before)}"
            for email in self._search(query, max_results):
                merged.setdefault(email.id, email)

        return list(merged.values())

    def fetch_by_label(self, label: str, max_results: int, after: datetime) -> list[CandidateEmail]:
        query = f"label:{normalize_label(label)} {_after_clause(after)}"
        return self._search(query, max_results)

    def fetch_by_subject(
        self, sender: str | None, subject_contains: str, max_results: int, hours_back: int
    ) -> list[CandidateEmail]:
        """Fetch mail whose subject carries ``subject_contains`` (e.g. "+dailyrepo").

        Gmail's subject search ignores "+", so results are re-checked locally.
        """
        after = datetime.now(UTC) - timedelta(hours=hours_back)
        from_filter = f"from:{sender} " if sender else ""
        query = f'{from_filter}subject:"{subject_contains.replace("+", "")}" {_after_clause(after)}'

        needle = subject_contains.lower()
        return [e for e in self._search(query, max_results) if needle in e.subject.lower()]

    def fetch_single_sender(self, sender: str, max_results: int, after: datetime) -> list[CandidateEmail]:
        query = f"from:{sender} {_after_clause(after)}"
        return self._search(query, max_results)

    def scan_unique_senders(
        self, after: datetime, min_count: int, message_cap: int
    ) -> list[SenderSummary]:
        """Aggregate senders of recent mail, most frequent first.

        Only headers are fetched. A message whose headers cannot be read is
        skipped.
        """
        query = f"{_after_clause(after)} -in:sent -in:drafts -in:trash"
        logger.info("Scanning unique senders: %s", query)

        try:
            ids = self._list_message_ids(query, message_cap)
        except Exception as e:
            raise EmailFetchError(f"Failed to scan senders: {e}") from e

        summaries: dict[str, SenderSummary] = {}
        for message_id in ids:
            try:
                msg = (
                    self.service.users()
                    .messages()
                    .get(
                        userId="me",
                        id=message_id,
                        format="metadata",
                        metadataHeaders=["From", "Subject", "Date"],
                    )
                    .execute()
                )
            except Exception as e:
                logger.warning("Skipping message %s during scan: %s", message_id, e)
                continue

            headers = msg.get("payload", {}).get("headers", [])
            sender = _get_header(headers, "From")
            address = sender_address(sender)
            if "@" not in address:
                continue

            subject = _get_header(headers, "Subject")
            date_str = _get_header(headers, "Date")
            received = _parse_date(date_str) if date_str else datetime.now(UTC)

            summary = summaries.get(address)
            if summary is None:
                summaries[address] = SenderSummary(
                    email=address,
                    name=extract_sender_name(sender) if "<" in sender else address,
                    count=1,
                    subjects=[subject] if subject else [],
                    latest_date=received,
                )
                continue

            summary.count += 1
            if subject and len(summary.subjects) < 3:
                summary.subjects.append(subject)
            if received > summary.latest_date:
                summary.latest_date = received

        results = [s for s in summaries.values() if s.count >= min_count]
        results.sort(key=lambda s: s.count, reverse=True)
        logger.info("Found %d unique senders", len(results))
        return results
