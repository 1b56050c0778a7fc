"""Tests for the status history ledger against both stores."""
import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.hbm.errors import ValidationError
from app.hbm.models import Base, StatusChangeRecord
from app.hbm.status.history import (
    InMemoryStatusHistoryStore,
    SessionBoundMemoryStore,
    SqlStatusHistoryStore,
    StatusHistoryFilter,
    StatusHistoryLedger,
)
from app.hbm.status.types import EntityType, InquiryStatus, OrderStatus
from app.hbm.utils import format_duration

T0 = datetime(2024, 5, 1, 8, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = T0, step: timedelta = timedelta(minutes=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture(params=["memory", "sql"])
def ledger(request, tmp_path):
    clock = FakeClock()
    if request.param == "memory":
        yield StatusHistoryLedger(InMemoryStatusHistoryStore(), clock=clock)
        return
    engine = create_engine(f"sqlite:///{tmp_path/'ledger.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    s = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)()
    try:
        yield StatusHistoryLedger(SqlStatusHistoryStore(s), clock=clock)
    finally:
        s.close()
        engine.dispose()


def _walk_order(ledger, entity_id, *statuses, changed_by="staff-1"):
    previous = None
    for status in statuses:
        ledger.record_status_change("order", entity_id, previous, status, changed_by=changed_by)
        previous = status


def test_three_changes_come_back_in_order(ledger):
    _walk_order(ledger, "X", "requested", "quoted", "confirmed")

    history = ledger.get_entity_status_history("order", "X")
    assert [c.to_status for c in history] == ["requested", "quoted", "confirmed"]
    assert [c.from_status for c in history] == [None, "requested", "quoted"]
    assert history[0].changed_at < history[1].changed_at < history[2].changed_at
    assert ledger.get_first_status_change("order", "X") == history[0]
    assert ledger.get_latest_status_change("order", "X") == history[2]
    assert len({c.id for c in history}) == 3


def test_untouched_entity_has_no_history(ledger):
    _walk_order(ledger, "X", "requested")
    assert ledger.get_entity_status_history("order", "Y") == []
    assert ledger.get_latest_status_change("order", "Y") is None
    assert ledger.get_first_status_change("order", "Y") is None
    # same id, other entity type
    assert ledger.get_entity_status_history("inquiry", "X") == []


def test_record_returns_stored_change(ledger):
    change = ledger.record_status_change(
        EntityType.INQUIRY,
        12,
        None,
        InquiryStatus.NEW,
        changed_by="system",
        reason="Inquiry submitted",
        metadata={"source": "web"},
    )
    assert change.entity_type is EntityType.INQUIRY
    assert change.entity_id == "12"
    assert change.to_status == "new"
    assert change.changed_at == T0
    assert change.sequence > 0
    assert ledger.get_latest_status_change("inquiry", 12).metadata == {"source": "web"}


def test_first_change_must_start_from_nothing(ledger):
    with pytest.raises(ValidationError):
        ledger.record_status_change("order", "X", "requested", "quoted")
    assert ledger.count() == 0


def test_chain_continuity_is_enforced(ledger):
    _walk_order(ledger, "X", "requested", "quoted")
    with pytest.raises(ValidationError) as exc:
        ledger.record_status_change("order", "X", "requested", "canceled")
    assert "currently quoted" in exc.value.message
    with pytest.raises(ValidationError):
        ledger.record_status_change("order", "X", None, "requested")
    assert len(ledger.get_entity_status_history("order", "X")) == 2


def test_transition_table_is_enforced(ledger):
    ledger.record_status_change("inquiry", "I", None, "new")
    ledger.record_status_change("inquiry", "I", "new", "rejected")
    with pytest.raises(ValidationError) as exc:
        ledger.record_status_change("inquiry", "I", "rejected", "accepted")
    assert "from rejected to accepted" in exc.value.message


@pytest.mark.parametrize(
    "entity_type, status",
    [("invoice", "new"), ("order", "expired"), ("inquiry", "pending"), ("inquiry", 9)],
)
def test_unknown_entity_types_and_statuses(ledger, entity_type, status):
    with pytest.raises(ValidationError):
        ledger.record_status_change(entity_type, "X", None, status)


def test_query_filters_are_anded_and_newest_first(ledger):
    _walk_order(ledger, "A", "requested", "quoted", changed_by="alice")
    _walk_order(ledger, "B", "requested", changed_by="bob")
    ledger.record_status_change("inquiry", "A", None, "new", changed_by="alice")

    everything = ledger.query_status_history()
    assert len(everything) == 4
    assert [c.sequence for c in everything] == sorted((c.sequence for c in everything), reverse=True)

    alice_orders = ledger.query_status_history(StatusHistoryFilter(entity_type="order", changed_by="alice"))
    assert [(c.entity_id, c.to_status) for c in alice_orders] == [("A", "quoted"), ("A", "requested")]

    by_entity = ledger.query_status_history(StatusHistoryFilter(entity_type=EntityType.ORDER, entity_id="B"))
    assert [c.to_status for c in by_entity] == ["requested"]

    nobody = ledger.query_status_history(StatusHistoryFilter(entity_type="inquiry", changed_by="bob"))
    assert nobody == []


def test_query_date_range_and_pagination(ledger):
    _walk_order(ledger, "A", "requested", "quoted", "confirmed", "production")
    # changes at T0, T0+1m, T0+2m, T0+3m
    in_range = ledger.query_status_history(
        StatusHistoryFilter(start=T0 + timedelta(minutes=1), end=T0 + timedelta(minutes=2))
    )
    assert [c.to_status for c in in_range] == ["confirmed", "quoted"]

    page1 = ledger.query_status_history(StatusHistoryFilter(page=1, limit=3))
    page2 = ledger.query_status_history(StatusHistoryFilter(page=2, limit=3))
    assert [c.to_status for c in page1] == ["production", "confirmed", "quoted"]
    assert [c.to_status for c in page2] == ["requested"]


def test_statistics_count_only_changes_in_range(ledger):
    _walk_order(ledger, "A", "requested")
    _walk_order(ledger, "B", "requested")
    ledger.record_status_change("order", "A", "requested", "quoted")
    # A: T0, B: T0+1m, A quoted: T0+2m
    stats = ledger.get_status_change_statistics(T0, T0 + timedelta(minutes=1))
    assert stats == {"initial → requested": 2}

    everything = ledger.get_status_change_statistics(T0 - timedelta(days=1), T0 + timedelta(days=1), "order")
    assert everything == {"initial → requested": 2, "requested → quoted": 1}
    assert ledger.get_status_change_statistics(T0, T0 + timedelta(days=1), "inquiry") == {}


def test_timeline_marks_only_last_entry_active(ledger):
    _walk_order(ledger, "A", "requested", "quoted", "confirmed")
    timeline = ledger.get_status_timeline("order", "A", now=T0 + timedelta(minutes=10))
    assert [e.status for e in timeline] == ["requested", "quoted", "confirmed"]
    assert [e.is_active for e in timeline] == [False, False, True]
    assert [e.duration for e in timeline] == [60.0, 60.0, 480.0]
    assert timeline[0].changed_by == "staff-1"
    assert ledger.get_status_timeline("order", "nobody") == []


def test_average_duration_and_stale_entities(ledger):
    _walk_order(ledger, "A", "requested", "quoted")  # requested for 1m
    _walk_order(ledger, "B", "requested")
    ledger.record_status_change("order", "C", None, "requested")
    ledger.record_status_change("order", "B", "requested", "quoted")  # B requested for 2m

    assert ledger.get_average_status_duration("order", "requested") == pytest.approx(90.0)
    assert ledger.get_average_status_duration("order", "delivered") == 0.0

    now = T0 + timedelta(hours=1)
    assert ledger.find_entities_in_status_too_long("order", "quoted", timedelta(minutes=30), now=now) == ["A", "B"]
    assert ledger.find_entities_in_status_too_long("order", "requested", timedelta(minutes=30), now=now) == ["C"]
    assert ledger.find_entities_in_status_too_long("order", "quoted", timedelta(hours=2), now=now) == []


def test_unique_statuses_and_count(ledger):
    _walk_order(ledger, "A", "requested", "quoted", "canceled")
    ledger.record_status_change("inquiry", "A", None, InquiryStatus.NEW)
    assert ledger.get_unique_statuses("order") == ["canceled", "quoted", "requested"]
    assert ledger.get_unique_statuses("inquiry") == ["new"]
    assert ledger.count() == 4


def test_sql_rows_have_per_entity_positions(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'positions.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    with Session(engine) as s:
        ledger = StatusHistoryLedger(SqlStatusHistoryStore(s))
        _walk_order(ledger, "A", OrderStatus.REQUESTED, OrderStatus.QUOTED)
        _walk_order(ledger, "B", OrderStatus.REQUESTED)
        s.commit()
        rows = s.query(StatusChangeRecord).order_by(StatusChangeRecord.sequence).all()
        assert [(r.entity_id, r.position) for r in rows] == [("A", 0), ("A", 1), ("B", 0)]
    engine.dispose()


def test_sql_append_losing_a_race_is_rejected(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'race.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    with Session(engine) as s:
        StatusHistoryLedger(SqlStatusHistoryStore(s)).record_status_change("order", "A", None, "requested")
        s.commit()

    class RacingStore(SqlStatusHistoryStore):
        """Lets another writer take the next position between the check and the insert."""

        def append(self, change, check, clock):
            def racing_check(latest):
                check(latest)
                with Session(engine) as other:
                    other.add(
                        StatusChangeRecord(
                            id="other-writer",
                            entity_type="order",
                            entity_id="A",
                            position=1,
                            from_status="requested",
                            to_status="canceled",
                            changed_at=T0,
                        )
                    )
                    other.commit()

            return super().append(change, racing_check, clock)

    with Session(engine) as s:
        ledger = StatusHistoryLedger(RacingStore(s))
        with pytest.raises(ValidationError) as exc:
            ledger.record_status_change("order", "A", "requested", "quoted")
        assert "Concurrent status change" in exc.value.message
        s.rollback()

    with Session(engine) as s:
        history = StatusHistoryLedger(SqlStatusHistoryStore(s)).get_entity_status_history("order", "A")
        assert [c.to_status for c in history] == ["requested", "canceled"]
    engine.dispose()


def test_memory_store_parallel_appends_keep_a_single_chain():
    ledger = StatusHistoryLedger(InMemoryStatusHistoryStore())
    ledger.record_status_change("order", "A", None, "requested")
    outcomes: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            ledger.record_status_change("order", "A", "requested", "quoted")
            result = "ok"
        except ValidationError:
            result = "conflict"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 7
    history = ledger.get_entity_status_history("order", "A")
    assert [c.to_status for c in history] == ["requested", "quoted"]
    assert history[0].sequence < history[1].sequence


def test_rejected_append_does_not_take_a_timestamp(ledger):
    _walk_order(ledger, "A", "requested")
    with pytest.raises(ValidationError):
        ledger.record_status_change("order", "A", "quoted", "confirmed")
    quoted = ledger.record_status_change("order", "A", "requested", "quoted")
    assert quoted.changed_at == T0 + timedelta(minutes=1)


def test_stored_metadata_cannot_be_rewritten(ledger):
    metadata = {"source": "web", "lines": {"count": 2}}
    recorded = ledger.record_status_change("order", "A", None, "requested", metadata=metadata)
    metadata["source"] = "changed"
    metadata["lines"]["count"] = 99

    with pytest.raises(TypeError):
        recorded.metadata["source"] = "tampered"
    fetched = ledger.get_latest_status_change("order", "A")
    fetched.to_dict()["metadata"]["lines"]["count"] = 0
    fetched.metadata_dict()["source"] = "tampered"

    stored = ledger.get_latest_status_change("order", "A")
    assert stored.metadata == {"source": "web", "lines": {"count": 2}}
    assert ledger.get_status_timeline("order", "A")[0].metadata == {"source": "web", "lines": {"count": 2}}


def test_memory_store_stamps_inside_the_entity_lock():
    ticks = FakeClock()
    ledger = StatusHistoryLedger(InMemoryStatusHistoryStore(), clock=ticks)
    ledger.record_status_change("order", "A", None, "requested")
    errors: list[ValidationError] = []

    def next_writer():
        try:
            ledger.record_status_change("order", "A", "quoted", "confirmed")
        except ValidationError as e:
            errors.append(e)

    writers: list[threading.Thread] = []

    def clock():
        # the first stamp lets another writer start and wait on the same entity
        if not writers:
            writers.append(threading.Thread(target=next_writer))
            writers[0].start()
            writers[0].join(timeout=0.2)
        return ticks()

    ledger.clock = clock
    ledger.record_status_change("order", "A", "requested", "quoted")
    writers[0].join()

    assert errors == []
    history = ledger.get_entity_status_history("order", "A")
    assert [c.to_status for c in history] == ["requested", "quoted", "confirmed"]
    assert [c.changed_at for c in history] == sorted(c.changed_at for c in history)
    timeline = ledger.get_status_timeline("order", "A", now=T0 + timedelta(hours=1))
    assert all(e.duration >= 0 for e in timeline)


@pytest.mark.parametrize(
    "seconds, expected",
    [(5, "5s"), (65, "1m 5s"), (3_660, "1h 1m"), (90_000, "1d 1h 0m"), (-3, "0s")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_memory_appends_need_the_session_to_commit(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'uow.db'}", future=True)
    shared = InMemoryStatusHistoryStore()

    with Session(engine) as s:
        ledger = StatusHistoryLedger(SessionBoundMemoryStore(shared, s))
        ledger.record_status_change("order", "1", None, "requested")
        assert shared.count() == 1
        s.rollback()
    assert shared.count() == 0

    with Session(engine) as s:
        ledger = StatusHistoryLedger(SessionBoundMemoryStore(shared, s))
        ledger.record_status_change("order", "1", None, "requested")
        s.commit()
        ledger.record_status_change("order", "1", "requested", "quoted")
    # closed without committing the second change
    history = shared.entity_history(EntityType.ORDER, "1")
    assert [c.to_status for c in history] == ["requested"]

    with Session(engine) as s:
        StatusHistoryLedger(SessionBoundMemoryStore(shared, s)).record_status_change(
            "order", "1", "requested", "quoted"
        )
        s.commit()
    assert [c.to_status for c in shared.entity_history(EntityType.ORDER, "1")] == ["requested", "quoted"]
    engine.dispose()
