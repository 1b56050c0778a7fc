import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hbm.models import Base  # noqa: E402
from app.hbm.modules.inquiries.models import Inquiry  # noqa: E402
from app.hbm.modules.orders.models import Order  # noqa: E402
from app.hbm.modules.roles.service import seed_builtin_roles  # noqa: E402
from app.hbm.status.history import SqlStatusHistoryStore, StatusHistoryLedger  # noqa: E402
from app.hbm.status.inquiry_status import compute_inquiry_status  # noqa: E402
from app.hbm.status.order_status import derive_order_status  # noqa: E402
from app.hbm.status.types import EntityType, InquirySnapshot, OrderSnapshot  # noqa: E402


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    Base.metadata.create_all(engine)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Create tables and install catalog permissions plus the built-in roles.
    Idempotent: built-in roles are reset to their default permission sets.
    """
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///hbm.db").strip()

    with _session_scope(db_url) as s:
        roles = seed_builtin_roles(s)
        summary = ", ".join(f"{r.key}={len(r.permissions)}" for r in roles)

    print("Initialized database (seed_only).")
    print(f"Built-in roles: {summary}")


def backfill_status_history(s: Session) -> dict[str, int]:
    """
    Give every order and inquiry with no ledger chain its initial entry
    (no status -> current, by "system"). Rows that already have history are
    left alone, so this is safe to repeat.
    """
    ledger = StatusHistoryLedger(SqlStatusHistoryStore(s))
    counts = {EntityType.ORDER.value: 0, EntityType.INQUIRY.value: 0}

    for order in s.execute(select(Order).order_by(Order.id)).scalars().all():
        if ledger.get_latest_status_change(EntityType.ORDER, order.id) is None:
            status = derive_order_status(OrderSnapshot.from_entity(order))
            ledger.record_status_change(
                EntityType.ORDER, order.id, None, status, changed_by="system", reason="Initial status"
            )
            counts[EntityType.ORDER.value] += 1

    for inquiry in s.execute(select(Inquiry).order_by(Inquiry.id)).scalars().all():
        if ledger.get_latest_status_change(EntityType.INQUIRY, inquiry.id) is None:
            # out-of-range ordinals start their chain as new
            status = compute_inquiry_status(InquirySnapshot.from_entity(inquiry)).status
            ledger.record_status_change(
                EntityType.INQUIRY, inquiry.id, None, status, changed_by="system", reason="Initial status"
            )
            counts[EntityType.INQUIRY.value] += 1
    return counts


def backfill_only(*, database_url: str | None = None) -> dict[str, int]:
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///hbm.db").strip()
    with _session_scope(db_url) as s:
        counts = backfill_status_history(s)
    print(f"Backfilled initial status history: {counts}")
    return counts


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
