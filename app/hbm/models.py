from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.hbm.utils import utcnow


class Base(DeclarativeBase):
    pass


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "staff"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_built_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )

    @property
    def permission_keys(self) -> list[str]:
        return sorted(p.key for p in self.permissions)


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "orders:read"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class StatusChangeRecord(Base):
    """
    Append-only status ledger row.
    ``sequence`` is the global ordering column; ``position`` is the index within
    one entity's chain and is unique per entity so concurrent appends collide.
    """

    __tablename__ = "status_change_history"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "position", name="uq_status_change_entity_position"),
        Index("ix_status_change_entity", "entity_type", "entity_id"),
        Index("ix_status_change_changed_at", "changed_at"),
    )

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)  # "order" | "inquiry"
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.hbm.modules.inquiries.models import Inquiry  # noqa: E402,F401
from app.hbm.modules.orders.models import Order  # noqa: E402,F401
