# server/models/payment.py
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from server.db.base_class import Base

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"


class Payment(Base):
    """One course-purchase leg. Legs of one gateway order share ``transaction_id``."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    # Payments outlive their users (accounting), so no cascade
    student_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    instructor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), nullable=False)

    # pending -> completed | failed, nothing else
    status = Column(String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_method = Column(String(32), nullable=False)
    payment_provider = Column(String(32), nullable=False)

    # Gateway order id (Razorpay order_...) or a synthetic free_... id
    transaction_id = Column(String(64), nullable=False, index=True)
    provider_payment_id = Column(String(64), nullable=True)
    provider_signature = Column(String(128), nullable=True)
    card_brand = Column(String(32), nullable=True)
    card_last4 = Column(String(4), nullable=True)
    receipt = Column(String(40), nullable=True)

    # Pricing breakdown
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    platform_fee = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # Revenue split
    instructor_share = Column(Numeric(10, 2), nullable=False, default=0)
    platform_share = Column(Numeric(10, 2), nullable=False, default=0)
    instructor_share_percentage = Column(Integer, nullable=False, default=0)

    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    course = relationship("Course")

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", "transaction_id", name="uq_payments_student_course_txn"),
        Index("ix_payments_txn_status", "transaction_id", "status"),
    )
