"""Access Logger — durable, append-only record of VIP visits.

`AccessLogger.record_access` writes one entry and reports the outcome as a
value: write failures are logged and returned, never raised, so a broken log
store cannot break the storefront response.

`AccessLogSink` puts a bounded queue in front of the logger. Request handlers
call `submit()`, which never waits; a single worker task performs the writes
and hands failures to the dead letter queue for later replay.
"""
from __future__ import annotations
import asyncio
import contextlib
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from core.database import log_session
from core.errors import LogWriteError
from core.logging import get_logger
from core.resilience.dlq import DeadLetterQueue
from verticals.vip_pricing.repository import AccessLogRepository

logger = get_logger("vip_pricing.access_log")

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class LogStatus(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"
    QUEUED = "queued"


@dataclass
class LogOutcome:
    status: LogStatus
    reason: Optional[str] = None
    error: Optional[LogWriteError] = None
    entry_id: Optional[str] = None

    @classmethod
    def saved(cls, entry_id: Optional[str] = None) -> "LogOutcome":
        return cls(status=LogStatus.SAVED, entry_id=entry_id)

    @classmethod
    def skipped(cls, reason: str) -> "LogOutcome":
        return cls(status=LogStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, error: LogWriteError) -> "LogOutcome":
        return cls(status=LogStatus.FAILED, reason=error.message, error=error)

    @classmethod
    def queued(cls) -> "LogOutcome":
        return cls(status=LogStatus.QUEUED)


# ---------------------------------------------------------------------------
# Order count
# ---------------------------------------------------------------------------

def orders_count_fallback(
    direct: Optional[int],
    connection: Optional[int],
    previous: Any = None,
) -> int:
    """Pick the order count to display.

    Live values win whenever either one is present, even when both are 0.
    Only when the platform returned neither is the previously stored value
    used. Unparsable stored values count as 0.
    """
    live = [int(v) for v in (direct, connection) if v is not None]
    if live:
        return max(live)

    if previous is None:
        return 0
    try:
        return int(previous)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(previous))
    except (TypeError, ValueError, OverflowError):
        return 0


def join_tags(tags: Union[str, Iterable[str]]) -> str:
    if isinstance(tags, str):
        return tags
    return ", ".join(tags)


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------

class AccessLogger:
    """Writes access log entries through a short-lived session per entry."""

    def __init__(self, session_factory: SessionFactory = log_session):
        self.session_factory = session_factory

    async def record_access(
        self,
        shop: str,
        customer_key: str,
        tag_snapshot: Union[str, Iterable[str]],
        order_count_snapshot: Any,
        display_name: Optional[str] = None,
    ) -> LogOutcome:
        if not shop:
            return LogOutcome.skipped("missing shop")
        if not customer_key:
            return LogOutcome.skipped("missing customer key")

        try:
            async with self.session_factory() as session:
                entry = await AccessLogRepository(session).record(
                    shop=shop,
                    customer_key=customer_key,
                    tag_snapshot=join_tags(tag_snapshot),
                    orders_count=str(order_count_snapshot if order_count_snapshot is not None else 0),
                    display_name=display_name,
                )
                entry_id = str(entry.id) if entry.id else None
        except Exception as exc:
            error = LogWriteError(
                f"access log write failed: {exc}",
                details={"shop": shop, "customer_key": customer_key},
            )
            logger.error("Access log write failed", customer_key=customer_key, exc_info=True)
            return LogOutcome.failed(error)

        logger.debug("Access logged", customer_key=customer_key, entry_id=entry_id)
        return LogOutcome.saved(entry_id)


# ---------------------------------------------------------------------------
# Asynchronous sink
# ---------------------------------------------------------------------------

@dataclass
class AccessEvent:
    shop: str
    customer_key: str
    tag_snapshot: str
    order_count_snapshot: Any
    display_name: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccessEvent":
        return cls(**payload)


class AccessLogSink:
    """Bounded queue + single worker in front of an AccessLogger.

    Usage::

        sink = AccessLogSink(AccessLogger(), maxsize=1000)
        sink.start()
        sink.submit(AccessEvent(shop, key, "VIP", 3))
        await sink.stop()
    """

    QUEUE_NAME = "access_log"

    def __init__(
        self,
        access_logger: AccessLogger,
        maxsize: int = 1000,
        dead_letters: Optional[DeadLetterQueue] = None,
    ):
        self.access_logger = access_logger
        self.queue: asyncio.Queue[AccessEvent] = asyncio.Queue(maxsize=maxsize)
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="access-log-sink")
            logger.info("Access log sink started", maxsize=self.queue.maxsize)

    async def stop(self) -> None:
        """Write everything still queued, then stop the worker."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
            logger.info("Access log sink stopped")

    def submit(self, event: AccessEvent) -> LogOutcome:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Access log queue full, dropping event", customer_key=event.customer_key)
            return LogOutcome.skipped("log queue full")
        return LogOutcome.queued()

    async def drain(self) -> None:
        """Wait until the queue is empty. Writes inline when no worker runs."""
        if self.running:
            await self.queue.join()
            return
        while not self.queue.empty():
            event = self.queue.get_nowait()
            try:
                await self._write(event)
            finally:
                self.queue.task_done()

    async def replay_dead_letters(self, limit: int = 50) -> dict[str, int]:
        """Retry pending dead letters. Returns counts of resolved and failed."""
        resolved = failed = 0
        for letter in self.dead_letters.list_pending(queue_name=self.QUEUE_NAME, limit=limit):
            if not self.dead_letters.mark_retrying(letter.id):
                continue
            event = AccessEvent.from_payload(letter.payload)
            outcome = await self.access_logger.record_access(**event.to_payload())
            if outcome.status is LogStatus.FAILED:
                self.dead_letters.mark_failed_again(letter.id, outcome.reason or "")
                failed += 1
            else:
                self.dead_letters.mark_resolved(letter.id)
                resolved += 1

        if resolved or failed:
            logger.info("Dead letters replayed", resolved=resolved, failed=failed)
        return {"resolved": resolved, "failed": failed}

    # -- internals --

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self._write(event)
            except Exception:
                logger.exception("Access log sink write crashed", customer_key=event.customer_key)
            finally:
                self.queue.task_done()

    async def _write(self, event: AccessEvent) -> LogOutcome:
        outcome = await self.access_logger.record_access(**event.to_payload())
        if outcome.status is LogStatus.FAILED:
            self.dead_letters.enqueue(
                self.QUEUE_NAME,
                event.shop,
                event.to_payload(),
                outcome.reason or "",
            )
        return outcome
