"""
Inquiry service layer.
Handles submission, lookup and the staff-driven status workflow.
"""
from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.hbm.errors import NotFoundError, ValidationError
from app.hbm.permissions import Action, Resource
from app.hbm.rbac import BaseService, PermissionResult, ServiceContext, UserType
from app.hbm.status.analytics import INQUIRY_IN_PROGRESS_SLA_DAYS, INQUIRY_NEW_SLA_DAYS
from app.hbm.status.history import StatusHistoryLedger
from app.hbm.status.inquiry_status import (
    check_inquiry_transition,
    coerce_inquiry_status,
    inquiry_transition_timestamps,
)
from app.hbm.status.types import EntityType, InquirySnapshot, InquiryStatus
from app.hbm.status.validation import StatusValidationResult, validate_status_consistency
from app.hbm.utils import utcnow

from .models import Inquiry


class InquiryService(BaseService):
    resource = Resource.INQUIRIES

    def __init__(self, s: Session, ledger: StatusHistoryLedger) -> None:
        self.s = s
        self.ledger = ledger

    def check_customer_permission(self, context: ServiceContext, action: Action) -> PermissionResult:
        # Public submission: customers may file inquiries and read their own.
        if action in (Action.CREATE, Action.READ):
            return PermissionResult(True)
        return PermissionResult(False, f"Customers cannot {action.value} inquiries")

    def create_inquiry(
        self,
        context: ServiceContext,
        *,
        customer_name: str,
        customer_email: str,
        message: str,
        company_name: str | None = None,
    ) -> Inquiry:
        self.require_permission(context, Action.CREATE)

        errors = []
        if not (customer_name or "").strip():
            errors.append("Name is required")
        email = (customer_email or "").strip().lower()
        if not email or "@" not in email:
            errors.append("A valid email is required")
        if not (message or "").strip():
            errors.append("Message is required")
        if errors:
            raise ValidationError("; ".join(errors), errors=errors)

        now = utcnow()
        inquiry = Inquiry(
            customer_id=context.user_id if context.user_type is UserType.CUSTOMER else None,
            customer_name=customer_name.strip(),
            customer_email=email,
            company_name=company_name.strip() if company_name else None,
            message=message.strip(),
            status=int(InquiryStatus.NEW),
            created_at=now,
            updated_at=now,
        )
        self.s.add(inquiry)
        self.s.flush()  # Get ID

        self.ledger.record_status_change(
            EntityType.INQUIRY,
            inquiry.id,
            None,
            InquiryStatus.NEW,
            changed_by=context.user_id,
            reason="Inquiry submitted",
        )
        self.log_operation("create_inquiry", context, inquiry_id=inquiry.id)
        return inquiry

    def get_inquiry(self, context: ServiceContext, inquiry_id: int) -> Inquiry:
        self.require_permission(context, Action.READ)
        return self._load(context, inquiry_id)

    def _load(self, context: ServiceContext, inquiry_id: int) -> Inquiry:
        inquiry = self.s.get(Inquiry, inquiry_id)
        if inquiry is None:
            raise NotFoundError("Inquiry", inquiry_id)
        # Customers only see their own; answer as if it does not exist.
        if context.user_type is UserType.CUSTOMER and inquiry.customer_id != context.user_id:
            raise NotFoundError("Inquiry", inquiry_id)
        return inquiry

    def list_inquiries(
        self,
        context: ServiceContext,
        *,
        statuses: list[InquiryStatus | int | str] | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[Inquiry]:
        self.require_permission(context, Action.READ)
        q = select(Inquiry)
        if context.user_type is UserType.CUSTOMER:
            q = q.where(Inquiry.customer_id == context.user_id)
        if statuses:
            q = q.where(Inquiry.status.in_([int(coerce_inquiry_status(x)) for x in statuses]))
        q = q.order_by(Inquiry.created_at.desc(), Inquiry.id.desc()).offset(max(page - 1, 0) * limit).limit(limit)
        return list(self.s.execute(q).scalars().all())

    def snapshots(self, context: ServiceContext) -> list[InquirySnapshot]:
        """All visible inquiries as snapshots for analytics."""
        self.require_permission(context, Action.READ)
        q = select(Inquiry).order_by(Inquiry.id.asc())
        if context.user_type is UserType.CUSTOMER:
            q = q.where(Inquiry.customer_id == context.user_id)
        return [InquirySnapshot.from_entity(i) for i in self.s.execute(q).scalars().all()]

    def check_status_consistency(
        self,
        context: ServiceContext,
        *,
        new_sla_days: int = INQUIRY_NEW_SLA_DAYS,
        in_progress_sla_days: int = INQUIRY_IN_PROGRESS_SLA_DAYS,
    ) -> StatusValidationResult:
        return validate_status_consistency(
            inquiries=self.snapshots(context),
            new_sla_days=new_sla_days,
            in_progress_sla_days=in_progress_sla_days,
        )

    def transition_inquiry_status(
        self,
        context: ServiceContext,
        inquiry_id: int,
        from_status: InquiryStatus | int | str,
        to_status: InquiryStatus | int | str,
        *,
        reason: str | None = None,
    ) -> Inquiry:
        """
        Move an inquiry ``from_status -> to_status``.

        The row update is conditional on the stored status still being
        ``from_status``, so the loser of a race fails with ValidationError
        instead of applying a transition against a stale status. Nothing is
        committed here.
        """
        self.require_permission(context, Action.UPDATE)
        inquiry = self._load(context, inquiry_id)

        from_s = coerce_inquiry_status(from_status)
        to_s = coerce_inquiry_status(to_status)
        check_inquiry_transition(inquiry.status, from_s, to_s)

        now = utcnow()
        values = {"status": int(to_s), "updated_at": now, **inquiry_transition_timestamps(to_s, now)}
        result = self.s.execute(
            update(Inquiry)
            .where(Inquiry.id == inquiry.id, Inquiry.status == int(from_s))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(
                f"Inquiry {inquiry.id} is no longer {from_s.label}; cannot move to {to_s.label}",
                current_status=from_s.label,
                to_status=to_s.label,
            )

        if self.ledger.get_latest_status_change(EntityType.INQUIRY, inquiry.id) is None:
            # Rows created before the ledger existed start their chain here.
            self.ledger.record_status_change(
                EntityType.INQUIRY, inquiry.id, None, from_s, changed_by="system", reason="Initial status"
            )
        self.ledger.record_status_change(
            EntityType.INQUIRY,
            inquiry.id,
            from_s,
            to_s,
            changed_by=context.user_id,
            reason=reason,
        )
        self.s.refresh(inquiry)
        self.log_operation(
            "transition_inquiry_status", context, inquiry_id=inquiry.id, change=f"{from_s.label}->{to_s.label}"
        )
        return inquiry
