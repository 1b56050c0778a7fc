"""create roles, orders, inquiries and status history tables

Revision ID: 4a1e7c9b2d30
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "4a1e7c9b2d30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("description", sa.String(512), nullable=True),
            sa.Column("is_built_in", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )

    if "inquiries" not in existing_tables:
        op.create_table(
            "inquiries",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("customer_id", sa.String(64), nullable=True),
            sa.Column("customer_name", sa.String(255), nullable=False),
            sa.Column("customer_email", sa.String(320), nullable=False),
            sa.Column("company_name", sa.String(255), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            # 0=rejected 1=new 2=accepted 3=in_progress 4=closed
            sa.Column("status", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("accepted_at", sa.DateTime(), nullable=True),
            sa.Column("rejected_at", sa.DateTime(), nullable=True),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("idx_inquiries_status", "inquiries", ["status"])
        op.create_index("idx_inquiries_customer", "inquiries", ["customer_id"])

    if "orders" not in existing_tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_number", sa.String(64), nullable=False, unique=True),
            sa.Column("customer_id", sa.String(64), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("quoted_at", sa.DateTime(), nullable=True),
            sa.Column("quote_valid_until", sa.DateTime(), nullable=True),
            sa.Column("confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("production_started_at", sa.DateTime(), nullable=True),
            sa.Column("production_stage_id", sa.String(64), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("shipped_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("canceled_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        )
        op.create_index("idx_orders_customer", "orders", ["customer_id"])
        op.create_index("idx_orders_created_at", "orders", ["created_at"])

    if "status_change_history" not in existing_tables:
        op.create_table(
            "status_change_history",
            sa.Column("sequence", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("id", sa.String(64), nullable=False, unique=True),
            sa.Column("entity_type", sa.String(32), nullable=False),
            sa.Column("entity_id", sa.String(64), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(32), nullable=True),
            sa.Column("to_status", sa.String(32), nullable=False),
            sa.Column("changed_by", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("changed_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("entity_type", "entity_id", "position", name="uq_status_change_entity_position"),
        )
        op.create_index("ix_status_change_entity", "status_change_history", ["entity_type", "entity_id"])
        op.create_index("ix_status_change_changed_at", "status_change_history", ["changed_at"])


def downgrade() -> None:
    op.drop_index("ix_status_change_changed_at", table_name="status_change_history")
    op.drop_index("ix_status_change_entity", table_name="status_change_history")
    op.drop_table("status_change_history")
    op.drop_index("idx_orders_created_at", table_name="orders")
    op.drop_index("idx_orders_customer", table_name="orders")
    op.drop_table("orders")
    op.drop_index("idx_inquiries_customer", table_name="inquiries")
    op.drop_index("idx_inquiries_status", table_name="inquiries")
    op.drop_table("inquiries")
    op.drop_table("role_permissions")
    op.drop_table("permissions")
    op.drop_table("roles")
