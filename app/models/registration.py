from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, Integer, Numeric, String, ForeignKey, Text
from sqlalchemy.orm import relationship
from app.models.base import Base, TimestampMixin, new_uuid



class Registration(Base, TimestampMixin):
    __tablename__ = "registrations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True)
    group_id = Column(String(36), nullable=True, index=True)

    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=False)

    age_at_event = Column(Integer, nullable=False)
    category = Column(String, nullable=False)
    is_full_duration = Column(Boolean, nullable=False)
    is_staying_in_motel = Column(Boolean, nullable=True)
    num_days = Column(Integer, nullable=True)

    computed_amount = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    explanation_code = Column(String, nullable=False)
    explanation_detail = Column(Text, nullable=True)

    status = Column(String, default="pending", nullable=False, index=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("category in ('adult', 'youth', 'child')", name='check_registration_category'),
        CheckConstraint("status in ('pending', 'confirmed', 'cancelled', 'refunded')", name='check_registration_status'),
        CheckConstraint('computed_amount >= 0', name='check_registration_amount_non_negative'),
    )

    event = relationship("Event", back_populates="registrations")
    payments = relationship("Payment", back_populates="registration")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Registration(id={self.id}, email='{self.email}', status={self.status}, computed_amount={self.computed_amount})>"
