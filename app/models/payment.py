from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, ForeignKey
from sqlalchemy.orm import relationship
from app.models.base import Base, TimestampMixin, new_uuid



class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_uuid)
    registration_id = Column(String(36), ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False, index=True)

    stripe_session_id = Column(String, unique=True, nullable=True, index=True)
    stripe_payment_intent_id = Column(String, unique=True, nullable=True)
    # set once by the webhook that moved the row out of pending
    stripe_event_id = Column(String, unique=True, nullable=True, index=True)

    amount = Column(Numeric(precision=10, scale=2), nullable=False)
    currency = Column(String, default="usd", nullable=False)
    status = Column(String, default="pending", nullable=False, index=True)
    idempotency_key = Column(String, unique=True, nullable=True)
    webhook_received_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status in ('pending', 'completed', 'failed', 'refunded', 'expired')", name='check_payment_status'),
        CheckConstraint('amount > 0', name='check_payment_amount_positive'),
    )

    registration = relationship("Registration", back_populates="payments")

    def __repr__(self):
        return f"<Payment(id={self.id}, registration_id={self.registration_id}, stripe_session_id={self.stripe_session_id}, status={self.status})>"
