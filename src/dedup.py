"""Skip / replace / insert decisions for incoming items.

Existence is looked up once per batch and kept in memory, never queried per
item. Message ids are the only identity for emails. Articles are keyed by
their resolved URL.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from src.database import Repository
from src.models import RepositoryItem

logger = logging.getLogger(__name__)


class Decision(StrEnum):
    SKIP = "skip"
    REPLACE = "replace"
    INSERT = "insert"


def _decide(exists: bool, force: bool) -> Decision:
    if not exists:
        return Decision.INSERT
    return Decision.REPLACE if force else Decision.SKIP


@dataclass
class MessageIndex:
    """In-memory view of which message ids are already stored."""

    existing: dict[str, int] = field(default_factory=dict)
    inserted: set[str] = field(default_factory=set)

    @classmethod
    def load(cls, repository: Repository, message_ids: list[str]) -> "MessageIndex":
        """Build the index with a single batched lookup."""
        existing = repository.find_by_message_ids(message_ids)
        logger.info(
            "Dedup index: %d of %d message ids already stored", len(existing), len(set(message_ids))
        )
        return cls(existing=existing)

    def decide(self, message_id: str, force: bool = False) -> Decision:
        if message_id in self.inserted:
            # Same message reached twice in one run
            return Decision.SKIP
        return _decide(message_id in self.existing, force)

    def existing_id(self, message_id: str) -> int | None:
        return self.existing.get(message_id)

    def mark_inserted(self, message_id: str) -> None:
        self.inserted.add(message_id)
        self.existing.pop(message_id, None)


@dataclass
class UrlIndex:
    """In-memory view of which article URLs are already stored."""

    existing: dict[str, int] = field(default_factory=dict)
    inserted: set[str] = field(default_factory=set)

    @classmethod
    def load(cls, repository: Repository, urls: list[str]) -> "UrlIndex":
        return cls(existing=repository.find_articles_by_urls(urls))

    def extend(self, repository: Repository, urls: list[str]) -> None:
        """Second lookup pass for URLs only known after extraction."""
        missing = [u for u in urls if u and u not in self.existing and u not in self.inserted]
        if missing:
            self.existing.update(repository.find_articles_by_urls(missing))

    def decide(self, url: str, force: bool = False) -> Decision:
        if url in self.inserted:
            return Decision.SKIP
        return _decide(url in self.existing, force)

    def existing_id(self, url: str) -> int | None:
        return self.existing.get(url)

    def mark_inserted(self, url: str) -> None:
        self.inserted.add(url)
        self.existing.pop(url, None)


def write_item(
    repository: Repository,
    item: RepositoryItem,
    decision: Decision,
    existing_id: int | None = None,
) -> int | None:
    """Apply a decision. Returns the new row id, or None when skipped.

    ``replace`` deletes the stored row first and never updates in place. The
    store's unique indexes reject a concurrent duplicate with
    DuplicateItemError.
    """
    if decision == Decision.SKIP:
        return None
    if decision == Decision.REPLACE and existing_id is not None:
        repository.delete_item(existing_id)
        logger.info("Force mode: deleted item %d before re-insert", existing_id)
    return repository.insert_item(item)
