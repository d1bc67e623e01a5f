from sqlalchemy import Boolean, CheckConstraint, Column, Date, Integer, JSON, Numeric, String, ForeignKey, Text
from sqlalchemy.orm import relationship
from app.models.base import Base, TimestampMixin, new_uuid


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    adult_age_threshold = Column(Integer, default=18, nullable=False)
    youth_age_threshold = Column(Integer, default=13, nullable=False)
    infant_age_threshold = Column(Integer, default=3, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint('end_date >= start_date', name='check_event_dates_valid'),
    )

    pricing = relationship("PricingConfig", back_populates="event", uselist=False, cascade="all, delete-orphan")
    registrations = relationship("Registration", back_populates="event")

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def __repr__(self):
        return f"<Event(id={self.id}, name='{self.name}', start_date={self.start_date})>"



class PricingConfig(Base, TimestampMixin):
    __tablename__ = "pricing_config"

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    adult_full_price = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    adult_daily_price = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    youth_full_price = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    youth_daily_price = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    child_full_price = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    child_daily_price = Column(Numeric(precision=10, scale=2), default=0, nullable=False)
    motel_stay_free = Column(Boolean, default=True, nullable=False)
    # [{"start_date": "2026-06-01", "end_date": "2026-06-30", "amount": 20, "label": "Late Fee"}]
    late_surcharge_tiers = Column(JSON, default=list, nullable=False)

    event = relationship("Event", back_populates="pricing")

    def __repr__(self):
        return f"<PricingConfig(id={self.id}, event_id={self.event_id})>"
