"""Confirmation notices.

The reconciliation code only builds notices; sending happens afterwards, off
the request path, through ``dispatch_notifications``. A failed send is logged
and dropped, it never reaches the caller that committed the state change.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Union

import structlog

from app.core import email
from app.services.pricing import format_money, get_explanation_label


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConfirmationNotice:
    to: str
    first_name: str
    last_name: str
    event_name: str
    amount: Decimal
    registration_id: str
    explanation_detail: Optional[str] = None


@dataclass(frozen=True)
class GroupMemberLine:
    first_name: str
    last_name: str
    category: str
    age_at_event: int
    amount: Decimal
    attendance: str
    explanation_code: str


@dataclass(frozen=True)
class GroupReceiptNotice:
    to: str
    event_name: str
    primary_registration_id: str
    members: List[GroupMemberLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    surcharge: Decimal = Decimal("0.00")
    surcharge_label: Optional[str] = None
    grand_total: Decimal = Decimal("0.00")


Notice = Union[ConfirmationNotice, GroupReceiptNotice]


def attendance_label(registration) -> str:
    if registration.is_full_duration:
        return "Full Conference"
    if registration.is_staying_in_motel:
        return "Partial - Motel"
    return f"{registration.num_days} Day(s)"


def amount_display(amount: Decimal) -> str:
    return "FREE" if amount == 0 else format_money(amount)


def confirmation_notice(registration, event_name: str) -> ConfirmationNotice:
    return ConfirmationNotice(
        to=registration.email,
        first_name=registration.first_name,
        last_name=registration.last_name,
        event_name=event_name,
        amount=Decimal(str(registration.computed_amount)),
        registration_id=registration.id,
        explanation_detail=registration.explanation_detail,
    )


def group_receipt_notice(registrations, event_name: str, group_pricing=None) -> GroupReceiptNotice:
    primary = registrations[0]
    members = [
        GroupMemberLine(
            first_name=r.first_name,
            last_name=r.last_name,
            category=r.category,
            age_at_event=r.age_at_event,
            amount=Decimal(str(r.computed_amount)),
            attendance=attendance_label(r),
            explanation_code=r.explanation_code,
        )
        for r in registrations
    ]
    subtotal = sum((m.amount for m in members), Decimal("0.00"))
    if group_pricing is None:
        return GroupReceiptNotice(
            to=primary.email,
            event_name=event_name,
            primary_registration_id=primary.id,
            members=members,
            subtotal=subtotal,
            grand_total=subtotal,
        )
    return GroupReceiptNotice(
        to=primary.email,
        event_name=event_name,
        primary_registration_id=primary.id,
        members=members,
        subtotal=group_pricing.subtotal,
        surcharge=group_pricing.surcharge,
        surcharge_label=group_pricing.surcharge_label,
        grand_total=group_pricing.grand_total,
    )


class EmailNotifier:
    """Sends notices over SMTP."""

    def send(self, notice: Notice) -> bool:
        if isinstance(notice, GroupReceiptNotice):
            lines = [
                f"{m.first_name} {m.last_name} ({m.category}, age {m.age_at_event}) - "
                f"{m.attendance}, {get_explanation_label(m.explanation_code)}: {amount_display(m.amount)}"
                for m in notice.members
            ]
            surcharge_line = None
            if notice.surcharge > 0:
                surcharge_line = f"{notice.surcharge_label or 'Surcharge'}: {format_money(notice.surcharge)}"
            return email.send_group_receipt_email(
                to_email=notice.to,
                event_name=notice.event_name,
                member_lines=lines,
                subtotal_display=format_money(notice.subtotal),
                surcharge_line=surcharge_line,
                total_display=amount_display(notice.grand_total),
                primary_registration_id=notice.primary_registration_id,
            )
        return email.send_confirmation_email(
            to_email=notice.to,
            first_name=notice.first_name,
            last_name=notice.last_name,
            event_name=notice.event_name,
            amount_display=amount_display(notice.amount),
            registration_id=notice.registration_id,
            explanation_detail=notice.explanation_detail,
        )


def dispatch_notifications(notifier, notices: Iterable[Notice]) -> int:
    """Send each notice once; returns how many were handed to the notifier."""
    attempted = 0
    for notice in notices:
        attempted += 1
        try:
            notifier.send(notice)
        except Exception:
            logger.exception("notification_failed", notice=type(notice).__name__, to=notice.to)
    return attempted
