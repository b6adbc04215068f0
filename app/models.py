from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint, func
from app.database import Base


class CourseFee(Base):
    __tablename__ = "course_fees"
    __table_args__ = (UniqueConstraint("registration_number", "enrollment_id", name="uq_course_fee_enrollment"),)
    id = Column(Integer, primary_key=True, index=True)
    registration_number = Column(String(64), nullable=False, index=True)
    enrollment_id = Column(String(64), nullable=True, index=True)
    course_name = Column(String(128), nullable=False)
    total_fees = Column(Integer, nullable=False, default=0)
    discount_percentage = Column(Float, nullable=False, default=0.0)
    duration = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PaymentLock(Base):
    __tablename__ = "payment_locks"
    id = Column(Integer, primary_key=True, index=True)
    registration_number = Column(String(64), nullable=False, index=True)
    enrollment_id = Column(String(64), nullable=False, unique=True, index=True)
    payment_type = Column(String(16), nullable=False)
    locked_at = Column(DateTime(timezone=True), server_default=func.now())


class PaymentOrder(Base):
    __tablename__ = "payment_orders"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(64), nullable=False, unique=True, index=True)
    registration_number = Column(String(64), nullable=False, index=True)
    enrollment_id = Column(String(64), nullable=False, index=True)
    course_name = Column(String(128), nullable=True)
    payment_type = Column(String(16), nullable=False)
    period_index = Column(Integer, nullable=True)
    period_count = Column(Integer, nullable=True)
    amount = Column(Integer, nullable=False)
    original_fees = Column(Integer, nullable=False, default=0)
    discount_percentage = Column(Float, nullable=False, default=0.0)
    currency = Column(String(8), nullable=False, default="INR")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(64), nullable=False, unique=True, index=True)
    registration_number = Column(String(64), nullable=False, index=True)
    enrollment_id = Column(String(64), nullable=False, index=True)
    course_name = Column(String(128), nullable=True)
    payment_type = Column(String(16), nullable=False)
    period_index = Column(Integer, nullable=True)
    period_count = Column(Integer, nullable=True)
    amount = Column(Integer, nullable=False)
    original_fees = Column(Integer, nullable=False, default=0)
    discount_percentage = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default="verified")
    next_due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
