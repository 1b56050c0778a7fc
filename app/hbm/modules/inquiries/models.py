from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.hbm.models import Base
from app.hbm.status.types import InquiryStatus
from app.hbm.utils import utcnow


class Inquiry(Base):
    __tablename__ = "inquiries"
    __table_args__ = (
        Index("idx_inquiries_status", "status"),
        Index("idx_inquiries_customer", "customer_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # set for logged-in customers
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # 0=rejected 1=new 2=accepted 3=in_progress 4=closed
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=int(InquiryStatus.NEW))

    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "company_name": self.company_name,
            "message": self.message,
            "status": self.status,
            "status_label": InquiryStatus(self.status).label if self.status in set(InquiryStatus) else "unknown",
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
