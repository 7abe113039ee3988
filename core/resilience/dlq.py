"""
VIP Pricing Dead Letter Queue — Keep Failed Access Events.

Access log writes that fail are captured with their payload so they can be
replayed once the log store recovers, or discarded after too many attempts.
Supports:
- Per-queue, per-shop filtering
- Retry status tracking
- Statistics for the health endpoint
- Purging of resolved entries
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


class DLQStatus(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    RESOLVED = "resolved"
    DISCARDED = "discarded"


@dataclass
class DeadLetter:
    """A failed event captured in the DLQ."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    queue_name: str = ""
    shop: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    retry_count: int = 0
    max_retries: int = 3
    status: DLQStatus = DLQStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def can_retry(self) -> bool:
        return self.status == DLQStatus.PENDING and self.retry_count < self.max_retries

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queue_name": self.queue_name,
            "shop": self.shop,
            "error": self.error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class DLQStats:
    """Aggregate statistics for a DLQ."""
    queue_name: str
    total: int = 0
    pending: int = 0
    retrying: int = 0
    resolved: int = 0
    discarded: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_name": self.queue_name,
            "total": self.total,
            "pending": self.pending,
            "retrying": self.retrying,
            "resolved": self.resolved,
            "discarded": self.discarded,
        }


class DeadLetterQueue:
    """In-memory DLQ. Entries do not survive a restart."""

    def __init__(self, max_retries: int = 3):
        self.max_retries = max_retries
        self._letters: dict[str, DeadLetter] = {}

    def __len__(self) -> int:
        return len(self._letters)

    def enqueue(self, queue_name: str, shop: str, payload: dict[str, Any], error: str) -> DeadLetter:
        letter = DeadLetter(
            queue_name=queue_name,
            shop=shop,
            payload=payload,
            error=error,
            max_retries=self.max_retries,
        )
        self._letters[letter.id] = letter
        return letter

    def get(self, letter_id: str) -> DeadLetter | None:
        return self._letters.get(letter_id)

    def list_pending(
        self,
        queue_name: str | None = None,
        shop: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetter]:
        """Pending letters, oldest first."""
        results = [dl for dl in self._letters.values() if dl.status == DLQStatus.PENDING]
        if queue_name:
            results = [dl for dl in results if dl.queue_name == queue_name]
        if shop:
            results = [dl for dl in results if dl.shop == shop]
        results.sort(key=lambda dl: dl.created_at)
        return results[:limit]

    def mark_retrying(self, letter_id: str) -> bool:
        letter = self._letters.get(letter_id)
        if not letter or not letter.can_retry:
            return False
        letter.status = DLQStatus.RETRYING
        letter.retry_count += 1
        letter.updated_at = datetime.now(timezone.utc)
        return True

    def mark_failed_again(self, letter_id: str, error: str) -> bool:
        """Return a retried letter to pending, or discard it when out of retries."""
        letter = self._letters.get(letter_id)
        if not letter:
            return False
        letter.error = error
        letter.updated_at = datetime.now(timezone.utc)
        if letter.retry_count >= letter.max_retries:
            letter.status = DLQStatus.DISCARDED
        else:
            letter.status = DLQStatus.PENDING
        return True

    def mark_resolved(self, letter_id: str) -> bool:
        letter = self._letters.get(letter_id)
        if not letter:
            return False
        letter.status = DLQStatus.RESOLVED
        letter.updated_at = datetime.now(timezone.utc)
        return True

    def get_stats(self, queue_name: str = "") -> DLQStats:
        letters = list(self._letters.values())
        if queue_name:
            letters = [dl for dl in letters if dl.queue_name == queue_name]

        stats = DLQStats(queue_name=queue_name or "all")
        stats.total = len(letters)
        stats.pending = sum(1 for dl in letters if dl.status == DLQStatus.PENDING)
        stats.retrying = sum(1 for dl in letters if dl.status == DLQStatus.RETRYING)
        stats.resolved = sum(1 for dl in letters if dl.status == DLQStatus.RESOLVED)
        stats.discarded = sum(1 for dl in letters if dl.status == DLQStatus.DISCARDED)
        return stats

    def purge_resolved(self, queue_name: str | None = None) -> int:
        """Remove resolved entries. Returns count removed."""
        to_remove = [
            dl_id for dl_id, dl in self._letters.items()
            if dl.status == DLQStatus.RESOLVED
            and (queue_name is None or dl.queue_name == queue_name)
        ]
        for dl_id in to_remove:
            del self._letters[dl_id]
        return len(to_remove)
