from enum import Enum


class AgeCategory(str, Enum):
    ADULT = "adult"
    YOUTH = "youth"
    CHILD = "child"


class ExplanationCode(str, Enum):
    FREE_INFANT = "FREE_INFANT"
    FULL_ADULT = "FULL_ADULT"
    FULL_YOUTH = "FULL_YOUTH"
    FULL_CHILD = "FULL_CHILD"
    PARTIAL_MOTEL_FREE = "PARTIAL_MOTEL_FREE"
    PARTIAL_ADULT = "PARTIAL_ADULT"
    PARTIAL_YOUTH = "PARTIAL_YOUTH"
    PARTIAL_CHILD = "PARTIAL_CHILD"
    # legacy, readable on old rows but never produced by pricing
    FULL_MOTEL_FREE = "FULL_MOTEL_FREE"


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"
