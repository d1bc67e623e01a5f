from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from app.models.base import utcnow
from app.models.enums import PaymentStatus, RegistrationStatus
from app.models.event import Event, PricingConfig
from app.models.payment import Payment
from app.models.registration import Registration


class RegistrationStore:
    """Row access for registrations and payments.

    Every status change goes through a conditional ``UPDATE ... WHERE status = X``
    and reports whether a row matched, so two writers racing on the same row
    cannot both apply a transition. Nothing is committed here implicitly;
    callers decide the transaction boundary with ``commit``/``rollback``.
    """

    def __init__(self, db: Session):
        self.db = db

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    # reads

    def get_event(self, event_id: str) -> Optional[Event]:
        return self.db.get(Event, event_id)

    def get_active_event(self, event_id: str) -> Optional[Event]:
        return self.db.execute(
            select(Event).where(Event.id == event_id, Event.is_active == True)
        ).scalar_one_or_none()

    def get_pricing_config(self, event_id: str) -> Optional[PricingConfig]:
        return self.db.execute(
            select(PricingConfig).where(PricingConfig.event_id == event_id)
        ).scalar_one_or_none()

    def list_active_events(self) -> List[Event]:
        return list(self.db.execute(
            select(Event).where(Event.is_active == True).order_by(Event.start_date.asc())
        ).scalars())

    def list_registrations(self, event_id: Optional[str] = None, status: Optional[str] = None, offset: int = 0, limit: int = 20) -> Tuple[int, List[Registration]]:
        query = select(Registration)
        if event_id:
            query = query.where(Registration.event_id == event_id)
        if status:
            query = query.where(Registration.status == status)
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar() or 0
        rows = list(self.db.execute(
            query.order_by(Registration.created_at.desc()).offset(offset).limit(limit)
        ).scalars())
        return total, rows

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        return self.db.get(Registration, registration_id)

    def get_group_registrations(self, group_id: str) -> List[Registration]:
        return list(self.db.execute(
            select(Registration)
            .where(Registration.group_id == group_id)
            .order_by(Registration.created_at.asc(), Registration.id.asc())
        ).scalars())

    def get_pending_payment(self, registration_id: str) -> Optional[Payment]:
        return self.db.execute(
            select(Payment)
            .where(Payment.registration_id == registration_id, Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_pending_group_payment(self, group_id: str) -> Optional[Payment]:
        """The group's open payment, whichever member it was recorded against."""
        return self.db.execute(
            select(Payment)
            .join(Registration, Payment.registration_id == Registration.id)
            .where(Registration.group_id == group_id, Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_payment_by_session(self, session_id: str) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.stripe_session_id == session_id)
        ).scalar_one_or_none()

    def get_payment_by_event(self, stripe_event_id: str) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.stripe_event_id == stripe_event_id)
        ).scalar_one_or_none()

    def count_payments(self, registration_id: str) -> int:
        return self.db.execute(
            select(func.count(Payment.id)).where(Payment.registration_id == registration_id)
        ).scalar() or 0

    def count_group_payments(self, group_id: str) -> int:
        return self.db.execute(
            select(func.count(Payment.id))
            .select_from(Payment)
            .join(Registration, Payment.registration_id == Registration.id)
            .where(Registration.group_id == group_id)
        ).scalar() or 0

    def list_registrations_for_export(self, event_id: Optional[str] = None, status: Optional[str] = None) -> List[Registration]:
        query = select(Registration).options(selectinload(Registration.event), selectinload(Registration.payments))
        if event_id:
            query = query.where(Registration.event_id == event_id)
        if status:
            query = query.where(Registration.status == status)
        return list(self.db.execute(query.order_by(Registration.created_at.desc())).scalars())

    def find_active_registrations(self, event_id: str, email: str) -> List[Registration]:
        return list(self.db.execute(
            select(Registration)
            .where(
                Registration.event_id == event_id,
                func.lower(Registration.email) == email.strip().lower(),
                Registration.status.notin_([RegistrationStatus.CANCELLED.value, RegistrationStatus.REFUNDED.value]),
            )
            .order_by(Registration.created_at.desc())
        ).scalars())

    # inserts

    def add_event(self, event: Event) -> Event:
        self.db.add(event)
        self.db.flush()
        return event

    def upsert_pricing_config(self, event_id: str, values: dict) -> PricingConfig:
        pricing = self.get_pricing_config(event_id)
        if pricing is None:
            pricing = PricingConfig(event_id=event_id)
            self.db.add(pricing)
        for key, value in values.items():
            setattr(pricing, key, value)
        self.db.flush()
        return pricing

    def add_registrations(self, registrations: List[Registration]) -> List[Registration]:
        self.db.add_all(registrations)
        self.db.flush()
        return registrations

    def add_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.flush()
        return payment

    # unguarded cosmetic write

    def apply_pricing_drift(self, registration: Registration, amount: Decimal, code: str, detail: str):
        # last writer wins; the charge itself is fixed by the checkout line items
        registration.computed_amount = amount
        registration.explanation_code = code
        registration.explanation_detail = detail
        self.db.flush()

    # conditional writes

    def update_pending_payment_session(self, payment_id: str, session_id: str, amount: Decimal) -> bool:
        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            .values(stripe_session_id=session_id, amount=amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def complete_payment(self, session_id: str, payment_intent_id: Optional[str], stripe_event_id: str) -> bool:
        now = utcnow()
        result = self.db.execute(
            update(Payment)
            .where(Payment.stripe_session_id == session_id, Payment.status == PaymentStatus.PENDING.value)
            .values(
                status=PaymentStatus.COMPLETED.value,
                stripe_payment_intent_id=payment_intent_id,
                stripe_event_id=stripe_event_id,
                webhook_received_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def expire_payment(self, session_id: str, stripe_event_id: str) -> bool:
        now = utcnow()
        result = self.db.execute(
            update(Payment)
            .where(Payment.stripe_session_id == session_id, Payment.status == PaymentStatus.PENDING.value)
            .values(
                status=PaymentStatus.EXPIRED.value,
                stripe_event_id=stripe_event_id,
                webhook_received_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def confirm_registration(self, registration_id: str) -> bool:
        now = utcnow()
        result = self.db.execute(
            update(Registration)
            .where(Registration.id == registration_id, Registration.status == RegistrationStatus.PENDING.value)
            .values(status=RegistrationStatus.CONFIRMED.value, confirmed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def confirm_group(self, group_id: str) -> int:
        """Confirm every pending member of a group in a single statement."""
        now = utcnow()
        result = self.db.execute(
            update(Registration)
            .where(Registration.group_id == group_id, Registration.status == RegistrationStatus.PENDING.value)
            .values(status=RegistrationStatus.CONFIRMED.value, confirmed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def cancel_registration(self, registration_id: str) -> bool:
        result = self.db.execute(
            update(Registration)
            .where(Registration.id == registration_id, Registration.status == RegistrationStatus.PENDING.value)
            .values(status=RegistrationStatus.CANCELLED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def refresh(self, instance):
        self.db.refresh(instance)
        return instance
