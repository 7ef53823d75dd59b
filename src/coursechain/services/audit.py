# src/coursechain/services/audit.py
"""Background audit trail writer and audit log queries."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Final

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursechain.db.time import utcnow
from coursechain.models import AuditLog

# Configure logger for this module
logger = logging.getLogger(__name__)

HIGH_RISK_THRESHOLD: Final[int] = 70


class AuditAction(str, Enum):
    """Auditable actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    FAILED_AUTH = "FAILED_AUTH"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class ResourceType(str, Enum):
    USER = "user"
    AUTH = "auth"
    SYSTEM = "system"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class AuditEntry:
    """One audit event waiting to be persisted."""

    action: AuditAction
    resource_type: ResourceType
    user_id: str | None = None
    wallet_address: str | None = None
    resource_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = None
    status: AuditStatus = AuditStatus.SUCCESS
    error_message: str | None = None
    session_id: str | None = None
    risk_score: int = 0

    def to_model(self) -> AuditLog:
        return AuditLog(
            user_id=self.user_id,
            wallet_address=self.wallet_address,
            action=self.action.value,
            resource_type=self.resource_type.value,
            resource_id=self.resource_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            details=self.metadata,
            status=self.status.value,
            error_message=self.error_message,
            session_id=self.session_id,
            risk_score=self.risk_score,
        )


class AuditWorker:
    """Persists audit entries from a queue so request handlers never wait on them.

    ``submit`` only enqueues. The consumer writes each entry in a worker
    thread, retrying database errors up to ``max_retries`` times before
    dropping it. Any other failure drops the entry at once.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        queue_size: int = 1000,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        drain_timeout: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._queue: asyncio.Queue[AuditEntry] = asyncio.Queue(maxsize=queue_size)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._drain_timeout = drain_timeout
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background consumer."""
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Drain queued entries and stop the consumer.

        Waits at most ``drain_timeout`` seconds; whatever is still queued
        after that is discarded.
        """
        task, self._task = self._task, None
        if task is None:
            return
        if task.done():
            if not task.cancelled() and task.exception() is not None:
                logger.error("Audit consumer had died: %s", task.exception())
        else:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
            except asyncio.TimeoutError:
                logger.error(
                    "Audit queue not drained after %.1fs, discarding %d entries",
                    self._drain_timeout,
                    self._queue.qsize(),
                )
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def submit(self, entry: AuditEntry) -> bool:
        """Enqueue ``entry`` without blocking; False if it had to be dropped."""
        if entry.risk_score > HIGH_RISK_THRESHOLD:
            logger.warning(
                "HIGH RISK AUDIT EVENT: %s on %s user=%s risk=%d",
                entry.action.value,
                entry.resource_type.value,
                entry.user_id,
                entry.risk_score,
            )
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            logger.warning("Audit queue full, dropping %s event", entry.action.value)
            return False
        return True

    async def join(self) -> None:
        """Wait until every submitted entry has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self._deliver(entry)
            finally:
                self._queue.task_done()

    async def _deliver(self, entry: AuditEntry) -> None:
        for attempt in range(1, self._max_retries + 1):
            try:
                await asyncio.to_thread(self._persist, entry)
                return
            except SQLAlchemyError as e:
                logger.warning(
                    "Audit write attempt %d/%d failed: %s", attempt, self._max_retries, e
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_delay * attempt)
            except Exception as e:
                logger.error(
                    "Dropping %s audit event after unexpected error: %r", entry.action.value, e
                )
                return
        logger.error("Dropping %s audit event after %d attempts", entry.action.value, attempt)

    def _persist(self, entry: AuditEntry) -> None:
        db = self._session_factory()
        try:
            db.add(entry.to_model())
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()


def list_audit_logs(
    db: Session,
    *,
    user_id: str | None = None,
    action: AuditAction | None = None,
    resource_type: ResourceType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> Sequence[AuditLog]:
    """Return audit entries, newest first, optionally narrowed by user, action or resource."""
    query = select(AuditLog)
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    if action is not None:
        query = query.where(AuditLog.action == action.value)
    if resource_type is not None:
        query = query.where(AuditLog.resource_type == resource_type.value)
    query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id).limit(limit).offset(offset)
    return db.scalars(query).all()


def high_risk_events(
    db: Session, *, min_risk_score: int = HIGH_RISK_THRESHOLD, limit: int = 100
) -> Sequence[AuditLog]:
    """Return entries scored at or above ``min_risk_score``, newest first."""
    query = (
        select(AuditLog)
        .where(AuditLog.risk_score >= min_risk_score)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id)
        .limit(limit)
    )
    return db.scalars(query).all()


def count_failed_auth(
    db: Session,
    ip_address: str | None = None,
    *,
    hours_back: int = 24,
    now: datetime | None = None,
) -> int:
    """Count FAILED_AUTH entries in the last ``hours_back`` hours, optionally for one IP."""
    since = (now or utcnow()) - timedelta(hours=hours_back)
    query = (
        select(func.count())
        .select_from(AuditLog)
        .where(AuditLog.action == AuditAction.FAILED_AUTH.value, AuditLog.timestamp >= since)
    )
    if ip_address is not None:
        query = query.where(AuditLog.ip_address == ip_address)
    return int(db.scalar(query) or 0)
