from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.hbm.models import Base
from app.hbm.utils import utcnow


class Order(Base):
    """
    Order row. There is no status column: status is derived from the
    lifecycle timestamps (see app.hbm.status.order_status).
    """

    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_customer", "customer_id"),
        Index("idx_orders_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lifecycle timestamps
    quoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    quote_valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    production_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    production_stage_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    # Optimistic concurrency: UPDATE ... WHERE version_id = :seen
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        def iso(v: datetime | None) -> str | None:
            return v.isoformat() if v else None

        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "quoted_at": iso(self.quoted_at),
            "quote_valid_until": iso(self.quote_valid_until),
            "confirmed_at": iso(self.confirmed_at),
            "production_started_at": iso(self.production_started_at),
            "production_stage_id": self.production_stage_id,
            "completed_at": iso(self.completed_at),
            "shipped_at": iso(self.shipped_at),
            "delivered_at": iso(self.delivered_at),
            "canceled_at": iso(self.canceled_at),
            "created_at": iso(self.created_at),
        }
