"""
Status history ledger.

Append-only record of status transitions per (entity_type, entity_id). The
ledger validates every append against the entity's chain and the transition
graph inside the store's critical section, so two concurrent appends for the
same entity cannot both succeed against the same predecessor.

Two stores share one interface:
- InMemoryStatusHistoryStore: per-entity locks, global sequence counter
- SqlStatusHistoryStore: rows in ``status_change_history`` within the caller's
  transaction, unique (entity_type, entity_id, position) as the compare-and-set

SessionBoundMemoryStore ties in-memory appends to a SQLAlchemy session so they
are dropped again when that session does not commit.
"""
from __future__ import annotations

import itertools
import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.hbm.errors import ValidationError
from app.hbm.models import StatusChangeRecord
from app.hbm.status.transitions import coerce_entity_type, is_valid_status_transition, status_label
from app.hbm.status.types import EntityType, StatusChange
from app.hbm.utils import utcnow

logger = logging.getLogger(__name__)

ChainCheck = Callable[[StatusChange | None], None]
Clock = Callable[[], datetime]


@dataclass(frozen=True)
class StatusHistoryFilter:
    """AND across every field that is set; ``start``/``end`` are inclusive."""

    entity_type: EntityType | str | None = None
    entity_id: str | None = None
    changed_by: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    page: int = 1
    limit: int | None = None

    def matches(self, change: StatusChange) -> bool:
        if self.entity_type is not None and change.entity_type is not EntityType(self.entity_type):
            return False
        if self.entity_id is not None and change.entity_id != str(self.entity_id):
            return False
        if self.changed_by is not None and change.changed_by != self.changed_by:
            return False
        if self.start is not None and change.changed_at < self.start:
            return False
        if self.end is not None and change.changed_at > self.end:
            return False
        return True

    @property
    def offset(self) -> int:
        if self.limit is None:
            return 0
        return max(self.page - 1, 0) * self.limit


@dataclass(frozen=True)
class StatusTimelineEntry:
    status: str
    changed_at: datetime
    changed_by: str | None
    reason: str | None
    duration: float  # seconds spent in this status (until now for the active entry)
    is_active: bool
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "changed_at": self.changed_at.isoformat(),
            "changed_by": self.changed_by,
            "reason": self.reason,
            "duration": self.duration,
            "is_active": self.is_active,
            "metadata": dict(self.metadata),
        }


class StatusHistoryStore:
    """
    Storage contract for the ledger.

    ``append`` must call ``check`` with the entity's latest change while holding
    whatever guarantees exclusivity for that entity, then stamp ``change`` with
    ``clock()`` and a fresh sequence number, persist it and return the stored
    copy. Stamping after the check keeps ``changed_at`` ordered along the chain.
    """

    def append(self, change: StatusChange, check: ChainCheck, clock: Clock) -> StatusChange:
        raise NotImplementedError

    def entity_history(self, entity_type: EntityType, entity_id: str) -> list[StatusChange]:
        """Oldest first (ascending sequence)."""
        raise NotImplementedError

    def query(self, flt: StatusHistoryFilter) -> list[StatusChange]:
        """Newest first (descending sequence), paginated by ``flt.page``/``flt.limit``."""
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError


class InMemoryStatusHistoryStore(StatusHistoryStore):
    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._entity_locks: dict[tuple[EntityType, str], threading.Lock] = {}
        self._records: dict[tuple[EntityType, str], list[StatusChange]] = {}
        self._sequence = itertools.count(1)

    def _lock_for(self, key: tuple[EntityType, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._entity_locks.get(key)
            if lock is None:
                lock = self._entity_locks[key] = threading.Lock()
            return lock

    def append(self, change: StatusChange, check: ChainCheck, clock: Clock) -> StatusChange:
        key = (change.entity_type, change.entity_id)
        with self._lock_for(key):
            existing = self._records.get(key)
            check(existing[-1] if existing else None)
            stamp = clock()
            with self._registry_lock:
                stored = replace(change, changed_at=stamp, sequence=next(self._sequence))
                self._records.setdefault(key, []).append(stored)
        return stored

    def entity_history(self, entity_type: EntityType, entity_id: str) -> list[StatusChange]:
        with self._registry_lock:
            return list(self._records.get((entity_type, entity_id), ()))

    def _snapshot(self) -> list[StatusChange]:
        with self._registry_lock:
            return [c for chain in self._records.values() for c in chain]

    def query(self, flt: StatusHistoryFilter) -> list[StatusChange]:
        rows = sorted((c for c in self._snapshot() if flt.matches(c)), key=lambda c: c.sequence, reverse=True)
        if flt.limit is None:
            return rows
        return rows[flt.offset : flt.offset + flt.limit]

    def discard(self, changes: list[StatusChange]) -> None:
        """Drop previously appended changes (by id); unknown ids are ignored."""
        for change in changes:
            key = (change.entity_type, change.entity_id)
            with self._lock_for(key):
                with self._registry_lock:
                    chain = self._records.get(key, [])
                    chain[:] = [c for c in chain if c.id != change.id]

    def count(self) -> int:
        with self._registry_lock:
            return sum(len(chain) for chain in self._records.values())


_PENDING_KEY = "hbm_memory_ledger_pending"


class SessionBoundMemoryStore(StatusHistoryStore):
    """
    Appends to a shared in-memory store that survive only if ``session``
    commits; a rollback or a close without commit takes them back out.
    Reads go straight to the shared store.
    """

    def __init__(self, shared: InMemoryStatusHistoryStore, session: Session) -> None:
        self.shared = shared
        self.s = session
        if _PENDING_KEY not in session.info:
            session.info[_PENDING_KEY] = []
            event.listen(session, "after_commit", self._after_commit)
            event.listen(session, "after_transaction_end", self._after_transaction_end)

    def _pending(self, session: Session) -> list[StatusChange]:
        return session.info.setdefault(_PENDING_KEY, [])

    def _after_commit(self, session: Session) -> None:
        self._pending(session).clear()

    def _after_transaction_end(self, session: Session, transaction) -> None:
        if transaction.parent is not None:
            return
        pending = self._pending(session)
        if pending:
            logger.warning("Discarding %d uncommitted status change(s)", len(pending))
            self.shared.discard(pending)
            pending.clear()

    def append(self, change: StatusChange, check: ChainCheck, clock: Clock) -> StatusChange:
        if not self.s.in_transaction():
            self.s.begin()
        stored = self.shared.append(change, check, clock)
        self._pending(self.s).append(stored)
        return stored

    def entity_history(self, entity_type: EntityType, entity_id: str) -> list[StatusChange]:
        return self.shared.entity_history(entity_type, entity_id)

    def query(self, flt: StatusHistoryFilter) -> list[StatusChange]:
        return self.shared.query(flt)

    def count(self) -> int:
        return self.shared.count()


def _from_row(row: StatusChangeRecord) -> StatusChange:
    return StatusChange(
        id=row.id,
        entity_type=EntityType(row.entity_type),
        entity_id=row.entity_id,
        from_status=row.from_status,
        to_status=row.to_status,
        changed_at=row.changed_at,
        sequence=row.sequence,
        changed_by=row.changed_by,
        reason=row.reason,
        metadata=json.loads(row.metadata_json) if row.metadata_json else {},
    )


class SqlStatusHistoryStore(StatusHistoryStore):
    """
    Ledger rows in the caller's session. Nothing here commits; the append is
    part of whatever transaction the caller is running.
    """

    def __init__(self, session: Session) -> None:
        self.s = session

    def append(self, change: StatusChange, check: ChainCheck, clock: Clock) -> StatusChange:
        latest_row = (
            self.s.execute(
                select(StatusChangeRecord)
                .where(
                    StatusChangeRecord.entity_type == change.entity_type.value,
                    StatusChangeRecord.entity_id == change.entity_id,
                )
                .order_by(StatusChangeRecord.sequence.desc())
                .limit(1)
                .with_for_update()
            )
            .scalars()
            .first()
        )
        check(_from_row(latest_row) if latest_row is not None else None)
        change = replace(change, changed_at=clock())

        row = StatusChangeRecord(
            id=change.id,
            entity_type=change.entity_type.value,
            entity_id=change.entity_id,
            position=(latest_row.position + 1) if latest_row is not None else 0,
            from_status=change.from_status,
            to_status=change.to_status,
            changed_by=change.changed_by,
            reason=change.reason,
            metadata_json=json.dumps(change.metadata_dict(), sort_keys=True) if change.metadata else None,
            changed_at=change.changed_at,
        )
        self.s.add(row)
        try:
            self.s.flush()
        except IntegrityError as e:
            raise ValidationError(
                f"Concurrent status change for {change.entity_type.value} {change.entity_id}; reload and retry",
                entity_type=change.entity_type.value,
                entity_id=change.entity_id,
            ) from e
        return replace(change, sequence=row.sequence)

    def entity_history(self, entity_type: EntityType, entity_id: str) -> list[StatusChange]:
        rows = (
            self.s.execute(
                select(StatusChangeRecord)
                .where(
                    StatusChangeRecord.entity_type == entity_type.value,
                    StatusChangeRecord.entity_id == entity_id,
                )
                .order_by(StatusChangeRecord.sequence.asc())
            )
            .scalars()
            .all()
        )
        return [_from_row(r) for r in rows]

    def query(self, flt: StatusHistoryFilter) -> list[StatusChange]:
        q = select(StatusChangeRecord)
        if flt.entity_type is not None:
            q = q.where(StatusChangeRecord.entity_type == EntityType(flt.entity_type).value)
        if flt.entity_id is not None:
            q = q.where(StatusChangeRecord.entity_id == str(flt.entity_id))
        if flt.changed_by is not None:
            q = q.where(StatusChangeRecord.changed_by == flt.changed_by)
        if flt.start is not None:
            q = q.where(StatusChangeRecord.changed_at >= flt.start)
        if flt.end is not None:
            q = q.where(StatusChangeRecord.changed_at <= flt.end)
        q = q.order_by(StatusChangeRecord.sequence.desc())
        if flt.limit is not None:
            q = q.offset(flt.offset).limit(flt.limit)
        return [_from_row(r) for r in self.s.execute(q).scalars().all()]

    def count(self) -> int:
        return int(self.s.scalar(select(func.count()).select_from(StatusChangeRecord)) or 0)


class StatusHistoryLedger:
    """
    Append-only status ledger over a pluggable store.

    Construct one per unit of work (or share an in-memory one); nothing here is
    global. ``clock`` returns naive UTC datetimes.
    """

    def __init__(self, store: StatusHistoryStore | None = None, *, clock: Clock = utcnow) -> None:
        self.store = store if store is not None else InMemoryStatusHistoryStore()
        self.clock = clock

    def record_status_change(
        self,
        entity_type: EntityType | str,
        entity_id: str | int,
        from_status: object | None,
        to_status: object,
        changed_by: str | None = None,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> StatusChange:
        et = coerce_entity_type(entity_type)
        eid = str(entity_id) if entity_id is not None else ""
        if not eid:
            raise ValidationError("Entity id is required")
        to_label = status_label(et, to_status)
        from_label = status_label(et, from_status) if from_status is not None else None

        def check(latest: StatusChange | None) -> None:
            if latest is None:
                if from_label is not None:
                    raise ValidationError(
                        f"{et.value} {eid} has no status history; first change must start from no status, "
                        f"not {from_label} (attempted {to_label})",
                        from_status=from_label,
                        to_status=to_label,
                    )
                return
            if from_label != latest.to_status:
                raise ValidationError(
                    f"{et.value} {eid} is currently {latest.to_status}, not {from_label or 'initial'}; "
                    f"cannot record change to {to_label}",
                    current_status=latest.to_status,
                    to_status=to_label,
                )
            if not is_valid_status_transition(et, from_label, to_label):
                raise ValidationError(
                    f"Invalid {et.value} status transition from {from_label} to {to_label}",
                    current_status=from_label,
                    to_status=to_label,
                )

        draft = StatusChange(
            id=uuid.uuid4().hex,
            entity_type=et,
            entity_id=eid,
            from_status=from_label,
            to_status=to_label,
            changed_at=datetime.min,  # stamped by the store
            sequence=0,
            changed_by=changed_by,
            reason=reason,
            metadata=dict(metadata or {}),
        )
        change = self.store.append(draft, check, self.clock)
        logger.info(
            "Status change recorded: %s %s %s -> %s by=%s",
            et.value,
            eid,
            from_label or "initial",
            to_label,
            changed_by,
        )
        return change

    def get_entity_status_history(self, entity_type: EntityType | str, entity_id: str | int) -> list[StatusChange]:
        return self.store.entity_history(coerce_entity_type(entity_type), str(entity_id))

    def get_latest_status_change(self, entity_type: EntityType | str, entity_id: str | int) -> StatusChange | None:
        history = self.get_entity_status_history(entity_type, entity_id)
        return history[-1] if history else None

    def get_first_status_change(self, entity_type: EntityType | str, entity_id: str | int) -> StatusChange | None:
        history = self.get_entity_status_history(entity_type, entity_id)
        return history[0] if history else None

    def query_status_history(self, flt: StatusHistoryFilter | None = None) -> list[StatusChange]:
        flt = flt or StatusHistoryFilter()
        if flt.entity_type is not None:
            flt = replace(flt, entity_type=coerce_entity_type(flt.entity_type))
        return self.store.query(flt)

    def get_status_timeline(
        self,
        entity_type: EntityType | str,
        entity_id: str | int,
        *,
        now: datetime | None = None,
    ) -> list[StatusTimelineEntry]:
        history = self.get_entity_status_history(entity_type, entity_id)
        now = now or self.clock()
        entries: list[StatusTimelineEntry] = []
        for i, change in enumerate(history):
            last = i == len(history) - 1
            until = now if last else history[i + 1].changed_at
            entries.append(
                StatusTimelineEntry(
                    status=change.to_status,
                    changed_at=change.changed_at,
                    changed_by=change.changed_by,
                    reason=change.reason,
                    duration=(until - change.changed_at).total_seconds(),
                    is_active=last,
                    metadata=change.metadata_dict(),
                )
            )
        return entries

    def get_status_change_statistics(
        self,
        start: datetime,
        end: datetime,
        entity_type: EntityType | str | None = None,
    ) -> dict[str, int]:
        """Counts keyed ``"<from or initial> → <to>"`` for changes with start <= changed_at <= end."""
        changes = self.query_status_history(StatusHistoryFilter(entity_type=entity_type, start=start, end=end))
        stats: dict[str, int] = {}
        for change in reversed(changes):
            key = f"{change.from_status or 'initial'} → {change.to_status}"
            stats[key] = stats.get(key, 0) + 1
        return stats

    def get_average_status_duration(
        self,
        entity_type: EntityType | str,
        status: object,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> float:
        """
        Mean seconds entities spent in ``status`` before moving on. Entities still
        in the status are not counted; returns 0.0 when nothing qualifies.
        """
        et = coerce_entity_type(entity_type)
        label = status_label(et, status)
        durations: list[float] = []
        entity_ids = {c.entity_id for c in self.query_status_history(StatusHistoryFilter(entity_type=et))}
        for eid in entity_ids:
            history = self.store.entity_history(et, eid)
            for current, following in zip(history, history[1:]):
                if current.to_status != label:
                    continue
                if start is not None and current.changed_at < start:
                    continue
                if end is not None and current.changed_at > end:
                    continue
                durations.append((following.changed_at - current.changed_at).total_seconds())
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    def find_entities_in_status_too_long(
        self,
        entity_type: EntityType | str,
        status: object,
        max_duration: timedelta,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Entity ids whose current status is ``status`` and was entered more than ``max_duration`` ago."""
        et = coerce_entity_type(entity_type)
        label = status_label(et, status)
        now = now or self.clock()
        latest: dict[str, StatusChange] = {}
        # Newest first, so the first change seen per entity is its current one.
        for change in self.query_status_history(StatusHistoryFilter(entity_type=et)):
            latest.setdefault(change.entity_id, change)
        return sorted(
            eid
            for eid, change in latest.items()
            if change.to_status == label and now - change.changed_at > max_duration
        )

    def get_unique_statuses(self, entity_type: EntityType | str) -> list[str]:
        statuses: set[str] = set()
        for change in self.query_status_history(StatusHistoryFilter(entity_type=entity_type)):
            statuses.add(change.to_status)
            if change.from_status:
                statuses.add(change.from_status)
        return sorted(statuses)

    def count(self) -> int:
        return self.store.count()
