"""Tests for dedup module."""

from datetime import UTC, datetime

from src.dedup import Decision, MessageIndex, UrlIndex, write_item
from src.models import RepositoryItem, SourceType


def _note(message_id, content="Body"):
    return RepositoryItem(
        source_type=SourceType.EMAIL_NOTE,
        title="Note",
        content=content,
        ingest_date="2099-03-15",
        received_at=datetime(2099, 3, 15, tzinfo=UTC),
        external_message_id=message_id,
    )


def _article(url):
    return RepositoryItem(
        source_type=SourceType.ARTICLE,
        title="Story",
        content="Text",
        ingest_date="2099-03-15",
        received_at=datetime(2099, 3, 15, tzinfo=UTC),
        source_url=url,
    )


def test_message_index_decisions(repository):
    repository.insert_item(_note("old"))
    index = MessageIndex.load(repository, ["old", "new"])

    assert index.decide("new") == Decision.INSERT
    assert index.decide("old") == Decision.SKIP
    assert index.decide("old", force=True) == Decision.REPLACE
    assert index.existing_id("old") is not None
    assert index.existing_id("new") is None


def test_message_seen_twice_in_one_run_is_skipped_even_with_force(repository):
    index = MessageIndex.load(repository, ["m1"])
    index.mark_inserted("m1")
    assert index.decide("m1", force=True) == Decision.SKIP


def test_write_item_insert_and_skip(repository):
    assert write_item(repository, _note("m1"), Decision.INSERT) is not None
    assert write_item(repository, _note("m2"), Decision.SKIP) is None
    assert repository.count_items() == 1


def test_write_item_replace_deletes_then_inserts(repository):
    old_id = repository.insert_item(_note("m1", content="old"))
    index = MessageIndex.load(repository, ["m1"])

    new_id = write_item(repository, _note("m1", content="new"), index.decide("m1", force=True),
                        index.existing_id("m1"))

    assert new_id != old_id
    assert repository.get_item(old_id) is None
    assert repository.get_item(new_id).content == "new"
    assert repository.count_items() == 1


def test_url_index_load_and_extend(repository):
    stored = repository.insert_item(_article("https://example.com/resolved"))
    index = UrlIndex.load(repository, ["https://t.example.com/r/1"])

    assert index.decide("https://t.example.com/r/1") == Decision.INSERT
    assert index.decide("https://example.com/resolved") == Decision.INSERT

    index.extend(repository, ["https://example.com/resolved", None])

    assert index.decide("https://example.com/resolved") == Decision.SKIP
    assert index.existing_id("https://example.com/resolved") == stored


def test_url_index_marks_inserted(repository):
    index = UrlIndex()
    index.mark_inserted("https://example.com/a")
    assert index.decide("https://example.com/a", force=True) == Decision.SKIP
