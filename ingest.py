"""Orchestrator — newsletter ingestion run with a streamed progress log.

Phases run in a fixed order and each one proceeds past per-item failures:

    fetching -> processing newsletters -> importing tagged notes
             -> extracting articles -> scanning for new sources -> done

Correctness across overlapping windows, re-runs and concurrent runs rests on
message-id and article-URL dedup, never on window precision.
"""

import argparse
import asyncio
import logging
import math
import sys
import uuid
from collections.abc import AsyncIterator, Callable
from datetime import UTC, date, datetime, time, timedelta

from config import settings
from src.article_extractor import ArticleExtractor, describe_age, is_article_too_old
from src.content_classifier import is_full_content_newsletter
from src.content_parser import (
    clean_note_subject,
    html_to_plain_text,
    parse_newsletter_html,
    substack_newsletter_url,
)
from src.database import Repository
from src.dedup import Decision, MessageIndex, UrlIndex, write_item
from src.email_fetcher import MailSource
from src.exceptions import ContentParseError, DailyRepoError, DuplicateItemError
from src.link_classifier import filter_article_links, is_likely_article_url
from src.models import (
    ArticleLinkCandidate,
    CandidateEmail,
    EventType,
    ExtractedArticle,
    FetchWindow,
    ItemStatus,
    Phase,
    ProgressEvent,
    ProgressItem,
    RepositoryItem,
    RunSummary,
    SenderSummary,
    SourceType,
)

logger = logging.getLogger(__name__)

MIN_NOTE_LENGTH = 10
UNKNOWN_ARTICLE_TITLE = "Unknown article"


def _event(event_type: EventType, phase: Phase, title: str, status: ItemStatus, **kwargs) -> ProgressEvent:
    """Build an event carrying a single progress item."""
    item = ProgressItem(
        title=title,
        status=status,
        sender=kwargs.pop("sender", None),
        url=kwargs.pop("url", None),
        error=kwargs.pop("error", None),
    )
    return ProgressEvent(type=event_type, phase=phase, item=item, **kwargs)


class _ArticleResult:
    """Outcome of one article candidate, emitted after its batch completes."""

    __slots__ = ("status", "title", "url", "error", "characters")

    def __init__(self, status: ItemStatus, title: str, url: str, error: str | None = None,
                 characters: int = 0):
        self.status = status
        self.title = title
        self.url = url
        self.error = error
        self.characters = characters


async def _fetch_candidates(
    mail: MailSource, senders: list[str], window: FetchWindow
) -> tuple[list[CandidateEmail], int]:
    """Merge sender, label and fallback fetches by message id.

    Returns the merged emails and the number added by the fallback.
    """
    max_results = max(settings.min_sender_fetch_results, len(senders) * settings.min_results_per_source)
    logger.info("Fetching from %d sources (max_results=%d)", len(senders), max_results)
    by_sender = await asyncio.to_thread(
        mail.fetch_by_senders, senders, max_results, window.after, window.before
    )

    by_label: list[CandidateEmail] = []
    for label in settings.label_list:
        try:
            emails = await asyncio.to_thread(
                mail.fetch_by_label, label, settings.label_fetch_results, window.after
            )
        except DailyRepoError as e:
            logger.warning("No emails from label '%s' (may not exist): %s", label, e)
            continue
        logger.info("Fetched %d emails from label '%s'", len(emails), label)
        by_label.extend(emails)

    merged: dict[str, CandidateEmail] = {}
    for email in by_sender + by_label:
        merged.setdefault(email.id, email)

    # Batched sender queries can silently drop low-volume senders
    fetched_senders = {email.sender_email for email in merged.values()}
    missed = [s for s in senders if s.lower() not in fetched_senders]
    fallback_added = 0

    if 0 < len(missed) <= settings.fallback_sender_cap:
        logger.info("Fallback: %d registered senders had no emails in batch", len(missed))
        for sender in missed:
            try:
                emails = await asyncio.to_thread(
                    mail.fetch_single_sender, sender, settings.fallback_per_sender_results, window.after
                )
            except DailyRepoError as e:
                logger.warning("Fallback failed for %s: %s", sender, e)
                continue
            for email in emails:
                if email.id not in merged:
                    merged[email.id] = email
                    fallback_added += 1
    elif len(missed) > settings.fallback_sender_cap:
        logger.warning("%d missed senders (too many for fallback)", len(missed))

    return list(merged.values()), fallback_added


def _discovery_start(repository: Repository, now: datetime) -> datetime:
    """More recent of the latest stored day bucket and the lookback floor."""
    floor_day = (now - timedelta(days=settings.discovery_floor_days)).date()
    floor = datetime.combine(floor_day, time.min, tzinfo=UTC)

    latest = repository.latest_ingest_date()
    if not latest:
        return now - timedelta(days=settings.discovery_fallback_days)

    latest_dt = datetime.combine(date.fromisoformat(latest), time.min, tzinfo=UTC)
    return max(latest_dt, floor)


def _finish_article(
    repository: Repository,
    url_index: UrlIndex,
    candidate: ArticleLinkCandidate,
    extracted: ExtractedArticle | BaseException | None,
    fetch_date: str,
    force: bool,
    now: datetime,
) -> _ArticleResult:
    """Filter, dedup and store one extracted article."""
    if isinstance(extracted, BaseException):
        return _ArticleResult(ItemStatus.ERROR, candidate.text, candidate.url, str(extracted) or "Extraction failed")
    if extracted is None or not extracted.content:
        return _ArticleResult(ItemStatus.ERROR, candidate.text, candidate.url, "No content extracted")

    title = extracted.title or candidate.text
    resolved = extracted.final_url or candidate.url

    # A tracking link can land on a login wall or profile page
    if not is_likely_article_url(resolved):
        logger.info("Filtered resolved URL: %s", resolved[:80])
        return _ArticleResult(ItemStatus.SKIPPED, title, resolved, "Resolved URL is not an article")

    if is_article_too_old(extracted.published_date, settings.article_max_age_hours, now):
        age = describe_age(extracted.published_date, now)
        return _ArticleResult(ItemStatus.SKIPPED, title, candidate.url, f"Article too old ({age})")

    decision = url_index.decide(resolved, force)
    if decision == Decision.SKIP:
        return _ArticleResult(ItemStatus.SKIPPED, title, resolved)

    item = RepositoryItem(
        source_type=SourceType.ARTICLE,
        title=title,
        content=extracted.content,
        ingest_date=fetch_date,
        received_at=now,
        source_email=candidate.newsletter_email,
        source_url=resolved,
    )
    try:
        write_item(repository, item, decision, url_index.existing_id(resolved))
    except DuplicateItemError:
        logger.info("Article stored concurrently, skipping: %s", resolved[:80])
        return _ArticleResult(ItemStatus.SKIPPED, title, resolved)

    url_index.mark_inserted(resolved)
    url_index.mark_inserted(candidate.url)
    return _ArticleResult(ItemStatus.SUCCESS, title, resolved, characters=len(extracted.content))


async def run_ingestion(
    mail_factory: Callable[[], MailSource],
    extractor: ArticleExtractor,
    repository: Repository,
    target_date: date | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> AsyncIterator[ProgressEvent]:
    """Run one ingestion and yield its progress events in order.

    The stream always ends with exactly one ``complete`` or ``error`` event.
    No exception escapes.

    Args:
        mail_factory: Zero-argument callable building the mail source (may raise on missing credentials).
        extractor: Article extractor used for digest links.
        repository: Store receiving all items.
        target_date: Re-import this UTC day instead of the rolling window.
        force: Delete and re-insert items that already exist.
        now: Clock override for tests.
    """
    now = now or datetime.now(UTC)
    run_id = uuid.uuid4().hex[:12]
    summary = RunSummary()
    finished = False

    repository.start_run(run_id)
    logger.info("Starting ingestion run %s%s", run_id, f" for {target_date}" if target_date else "")

    try:
        # --- Setup ---
        try:
            source = mail_factory()
        except DailyRepoError as e:
            logger.error("Mail source unavailable: %s", e)
            repository.log_step(run_id, "setup", "failed", str(e))
            repository.finish_run(run_id, "failed", str(e))
            finished = True
            yield _event(EventType.ERROR, Phase.FETCHING, "Mailbox not connected", ItemStatus.ERROR, error=str(e))
            return

        senders = repository.enabled_source_emails()
        if not senders:
            message = "No enabled newsletter sources registered"
            logger.error(message)
            repository.log_step(run_id, "setup", "failed", message)
            repository.finish_run(run_id, "failed", message)
            finished = True
            yield _event(EventType.ERROR, Phase.FETCHING, "No newsletter sources", ItemStatus.ERROR, error=message)
            return

        yield ProgressEvent(type=EventType.START, phase=Phase.FETCHING, total=len(senders))

        # --- Fetching ---
        window = FetchWindow.for_day(target_date) if target_date else FetchWindow.rolling(
            settings.fetch_window_hours, now
        )
        fetch_date = (target_date or now.date()).isoformat()
        logger.info("Fetch window: %s .. %s", window.after.isoformat(), window.before or "now")

        yield _event(EventType.NEWSLETTER, Phase.FETCHING, "Fetching emails...", ItemStatus.PROCESSING)
        all_emails, fallback_added = await _fetch_candidates(source, senders, window)
        if fallback_added:
            yield _event(
                EventType.NEWSLETTER, Phase.FETCHING,
                f"Fallback: {fallback_added} additional emails found", ItemStatus.SUCCESS,
            )

        # Gmail's after: only has day precision
        emails = [e for e in all_emails if window.includes(e.date)]
        if len(emails) < len(all_emails):
            logger.info("Filtered %d emails older than %s", len(all_emails) - len(emails), window.after)

        unique_senders = {e.sender for e in emails}
        repository.log_step(run_id, "fetching", "success", f"{len(emails)} emails")
        yield _event(
            EventType.NEWSLETTER, Phase.PROCESSING,
            f"{len(emails)} emails found ({len(unique_senders)} sources)", ItemStatus.SUCCESS,
            current=0, total=len(emails),
        )

        # --- Processing newsletters ---
        index = MessageIndex.load(repository, [e.id for e in emails])
        candidates: list[ArticleLinkCandidate] = []
        total = len(emails)

        for i, email in enumerate(emails, start=1):
            progress = {"current": i, "total": total, "sender": email.sender}
            yield _event(EventType.NEWSLETTER, Phase.PROCESSING, email.subject, ItemStatus.PROCESSING, **progress)

            decision = index.decide(email.id, force)
            if decision == Decision.SKIP:
                summary.skipped += 1
                logger.info("Skipping duplicate (message id %s): '%s'", email.id, email.subject)
                yield _event(EventType.NEWSLETTER, Phase.PROCESSING, email.subject, ItemStatus.SKIPPED, **progress)
                continue

            try:
                html = email.body_html or email.body_text or ""
                parsed = parse_newsletter_html(html)
                links = filter_article_links(parsed.links)
                full_content = is_full_content_newsletter(
                    parsed.plain_text, len(parsed.article_links), email.sender
                )

                item = RepositoryItem(
                    source_type=SourceType.NEWSLETTER,
                    title=email.subject,
                    content=parsed.plain_text,
                    ingest_date=fetch_date,
                    received_at=email.date,
                    source_email=email.sender_email,
                    source_url=substack_newsletter_url(email.sender_email) or (links[0].url if links else None),
                    raw_html=html,
                    external_message_id=email.id,
                )
                write_item(repository, item, decision, index.existing_id(email.id))
            except DuplicateItemError:
                summary.skipped += 1
                logger.info("Newsletter stored concurrently, skipping: '%s'", email.subject)
                yield _event(EventType.NEWSLETTER, Phase.PROCESSING, email.subject, ItemStatus.SKIPPED, **progress)
                continue
            except Exception as e:
                summary.errors += 1
                logger.warning("Failed to process '%s': %s", email.subject, e)
                yield _event(
                    EventType.NEWSLETTER, Phase.PROCESSING, email.subject, ItemStatus.ERROR,
                    error=str(e) or type(e).__name__, **progress,
                )
                continue

            index.mark_inserted(email.id)
            summary.newsletters += 1
            summary.total_characters += len(parsed.plain_text)

            if full_content:
                logger.info("Skipping article extraction, '%s' has full content", email.subject)
            else:
                candidates.extend(
                    ArticleLinkCandidate(
                        url=link.url,
                        text=link.text or UNKNOWN_ARTICLE_TITLE,
                        newsletter_subject=email.subject,
                        newsletter_email=email.sender_email,
                    )
                    for link in links
                )

            yield _event(EventType.NEWSLETTER, Phase.PROCESSING, email.subject, ItemStatus.SUCCESS, **progress)

        repository.log_step(run_id, "processing", "success", f"{summary.newsletters} newsletters")

        # --- Importing tagged notes ---
        yield _event(
            EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES,
            f"Searching {settings.note_subject_tag} emails...", ItemStatus.PROCESSING,
        )
        try:
            notes = await asyncio.to_thread(
                source.fetch_by_subject,
                None,
                settings.note_subject_tag,
                settings.note_max_results,
                settings.note_hours_back,
            )
        except DailyRepoError as e:
            logger.error("Error fetching %s emails: %s", settings.note_subject_tag, e)
            notes = None
            yield _event(
                EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES,
                f"{settings.note_subject_tag} import failed", ItemStatus.ERROR, error=str(e),
            )

        if notes == []:
            yield _event(
                EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES,
                f"No {settings.note_subject_tag} emails found", ItemStatus.SKIPPED,
            )
        elif notes:
            yield _event(
                EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES,
                f"{len(notes)} {settings.note_subject_tag} emails found", ItemStatus.SUCCESS,
                current=0, total=len(notes),
            )
            note_index = MessageIndex.load(repository, [n.id for n in notes])

            for i, note in enumerate(notes, start=1):
                title = clean_note_subject(note.subject, settings.note_subject_tag, settings.note_default_title)
                progress = {"current": i, "total": len(notes), "sender": note.sender}
                yield _event(EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES, title, ItemStatus.PROCESSING, **progress)

                decision = note_index.decide(note.id, force)
                if decision == Decision.SKIP:
                    summary.skipped += 1
                    yield _event(EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES, title, ItemStatus.SKIPPED, **progress)
                    continue

                try:
                    content = html_to_plain_text(note.body_html, note.body_text)
                    if len(content) < MIN_NOTE_LENGTH:
                        raise ContentParseError("no content")

                    item = RepositoryItem(
                        source_type=SourceType.EMAIL_NOTE,
                        title=title,
                        content=content,
                        ingest_date=fetch_date,
                        received_at=note.date,
                        source_email=note.sender_email,
                        external_message_id=note.id,
                    )
                    write_item(repository, item, decision, note_index.existing_id(note.id))
                except DuplicateItemError:
                    summary.skipped += 1
                    yield _event(EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES, title, ItemStatus.SKIPPED, **progress)
                    continue
                except Exception as e:
                    summary.errors += 1
                    logger.warning("Failed to import note '%s': %s", title, e)
                    yield _event(
                        EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES, title, ItemStatus.ERROR,
                        error=str(e) or type(e).__name__, **progress,
                    )
                    continue

                note_index.mark_inserted(note.id)
                summary.email_notes += 1
                summary.total_characters += len(content)
                yield _event(EventType.EMAIL_NOTE, Phase.IMPORTING_NOTES, title, ItemStatus.SUCCESS, **progress)

        repository.log_step(run_id, "importing_notes", "success", f"{summary.email_notes} notes")

        # --- Extracting articles ---
        to_process = candidates[:settings.max_articles_per_run]
        if len(candidates) > len(to_process):
            logger.info("Capping article candidates at %d of %d", len(to_process), len(candidates))

        if to_process:
            batch_size = settings.article_batch_size
            total_batches = math.ceil(len(to_process) / batch_size)
            yield _event(
                EventType.ARTICLE, Phase.EXTRACTING,
                f"Extracting articles ({total_batches} batches)...", ItemStatus.PROCESSING,
                current=0, total=len(to_process),
            )

            url_index = UrlIndex()
            for batch_number, start in enumerate(range(0, len(to_process), batch_size), start=1):
                batch = to_process[start:start + batch_size]
                results: list[_ArticleResult | None] = [None] * len(batch)

                # Raw-URL pass
                url_index.extend(repository, [c.url for c in batch])
                pending: list[int] = []
                for j, candidate in enumerate(batch):
                    if url_index.decide(candidate.url, force) == Decision.SKIP:
                        results[j] = _ArticleResult(ItemStatus.SKIPPED, candidate.text, candidate.url)
                    else:
                        pending.append(j)

                extracted = await asyncio.gather(
                    *(asyncio.to_thread(extractor.extract, batch[j].url) for j in pending),
                    return_exceptions=True,
                )

                # Resolved-URL pass, only known after extraction
                url_index.extend(repository, [
                    e.final_url for e in extracted if isinstance(e, ExtractedArticle) and e.final_url
                ])

                for j, outcome in zip(pending, extracted):
                    if isinstance(outcome, Exception):
                        logger.warning("Extraction failed for %s: %s", batch[j].url[:80], outcome)
                    elif isinstance(outcome, BaseException):
                        raise outcome
                    try:
                        results[j] = _finish_article(
                            repository, url_index, batch[j], outcome, fetch_date, force, now
                        )
                    except Exception as e:
                        logger.warning("Failed to store article %s: %s", batch[j].url[:80], e)
                        results[j] = _ArticleResult(
                            ItemStatus.ERROR, batch[j].text, batch[j].url, str(e) or type(e).__name__
                        )

                for j, result in enumerate(results):
                    if result.status == ItemStatus.SUCCESS:
                        summary.articles += 1
                        summary.total_characters += result.characters
                    elif result.status == ItemStatus.ERROR:
                        summary.errors += 1
                    else:
                        summary.skipped += 1
                    yield _event(
                        EventType.ARTICLE, Phase.EXTRACTING, result.title, result.status,
                        url=result.url, error=result.error,
                        current=start + j + 1, total=len(to_process),
                        batch=(batch_number, total_batches),
                    )

        repository.log_step(run_id, "extracting", "success", f"{summary.articles} articles")

        # --- Scanning for new sources (best effort) ---
        unfetched: list[SenderSummary] = []
        try:
            yield _event(
                EventType.NEWSLETTER, Phase.SCANNING_UNFETCHED,
                "Scanning mail for newsletter sources...", ItemStatus.PROCESSING,
            )
            known = repository.all_source_emails()
            excluded = repository.excluded_sender_emails()
            scan_after = _discovery_start(repository, now)
            yield _event(
                EventType.NEWSLETTER, Phase.SCANNING_UNFETCHED,
                f"Scanning mail since {scan_after.date().isoformat()}...", ItemStatus.PROCESSING,
            )

            scanned = await asyncio.to_thread(
                source.scan_unique_senders,
                scan_after,
                settings.discovery_min_count,
                settings.discovery_message_cap,
            )
            as_source = sum(1 for s in scanned if s.email.lower() in known)
            as_excluded = sum(1 for s in scanned if s.email.lower() in excluded and s.email.lower() not in known)
            unfetched = sorted(
                (s for s in scanned if s.email.lower() not in known and s.email.lower() not in excluded),
                key=lambda s: s.count,
                reverse=True,
            )
            breakdown = f"({as_source} already sources, {as_excluded} excluded)"
            if unfetched:
                yield _event(
                    EventType.NEWSLETTER, Phase.SCANNING_UNFETCHED,
                    f"{len(unfetched)} new sources found {breakdown}", ItemStatus.SUCCESS,
                )
            else:
                yield _event(
                    EventType.NEWSLETTER, Phase.SCANNING_UNFETCHED,
                    f"No new sources {breakdown}", ItemStatus.SKIPPED,
                )
            repository.log_step(run_id, "scanning_unfetched", "success", f"{len(unfetched)} new senders")
        except Exception as e:
            logger.error("Error scanning unfetched emails: %s", e)
            repository.log_step(run_id, "scanning_unfetched", "failed", str(e))
            yield _event(
                EventType.NEWSLETTER, Phase.SCANNING_UNFETCHED, "Scan failed", ItemStatus.ERROR, error=str(e),
            )

        # --- Done ---
        logger.info(
            "Complete: %d newsletters, %d articles, %d notes, %d skipped, %d errors",
            summary.newsletters, summary.articles, summary.email_notes, summary.skipped, summary.errors,
        )
        if unfetched:
            yield ProgressEvent(type=EventType.UNFETCHED_EMAILS, phase=Phase.DONE, unfetched_emails=unfetched)

        repository.finish_run(run_id, "success")
        finished = True
        yield ProgressEvent(type=EventType.COMPLETE, phase=Phase.DONE, summary=summary)

    except Exception as e:
        logger.exception("Critical error in ingestion run %s", run_id)
        if not finished:
            repository.log_step(run_id, "Unexpected error", "failed", str(e))
            repository.finish_run(run_id, "failed", str(e))
            finished = True
        yield _event(EventType.ERROR, Phase.DONE, "Critical error", ItemStatus.ERROR, error=str(e) or type(e).__name__)
    finally:
        if not finished:
            # Consumer went away mid-stream; rows written so far stay valid
            repository.finish_run(run_id, "interrupted")


async def ingest_newsletters(
    mail_factory: Callable[[], MailSource],
    extractor: ArticleExtractor,
    repository: Repository,
    target_date: date | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> tuple[RunSummary | None, list[ProgressEvent]]:
    """Run an ingestion to completion.

    Returns:
        The final summary (None when the run ended in an error event) and all events.
    """
    events: list[ProgressEvent] = []
    summary: RunSummary | None = None
    async for event in run_ingestion(
        mail_factory, extractor, repository, target_date=target_date, force=force, now=now
    ):
        events.append(event)
        if event.type == EventType.COMPLETE:
            summary = event.summary
    return summary, events


def main() -> None:
    """Entry point for a manual or scheduled ingestion run."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    parser = argparse.ArgumentParser(description="Fetch newsletters into the daily repository.")
    parser.add_argument("--date", type=date.fromisoformat, help="Re-import one day (YYYY-MM-DD, UTC)")
    parser.add_argument("--force", action="store_true", help="Delete and re-insert existing items")
    args = parser.parse_args()

    from src.article_extractor import WebArticleExtractor
    from src.email_fetcher import GmailMailSource

    try:
        summary, events = asyncio.run(
            ingest_newsletters(GmailMailSource, WebArticleExtractor(), Repository(),
                               target_date=args.date, force=args.force)
        )
    except KeyboardInterrupt:
        logger.info("Ingestion interrupted.")
        sys.exit(0)

    if summary is None:
        failure = next((e.item.error for e in events if e.type == EventType.ERROR and e.item), "unknown error")
        logger.error("Ingestion failed: %s", failure)
        sys.exit(1)

    logger.info("Summary: %s", summary.to_dict())


if __name__ == "__main__":
    main()
