import uuid
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone_number = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="parent")  # parent, tutor, staff, admin
    status = Column(String(20), nullable=False, default="active")
    wallet_balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    wallet_transactions = relationship("WalletTransaction", back_populates="parent")
    notifications = relationship("Notification", back_populates="user")


class PaymentPackage(Base):
    __tablename__ = "payment_packages"

    id = Column(Integer, primary_key=True, index=True)
    package_name = Column(String(255), nullable=False)
    grade = Column(String(50), nullable=True)
    price = Column(Numeric(18, 2), nullable=False)
    session_count = Column(Integer, nullable=False)
    sessions_per_week = Column(Integer, nullable=False, default=2)
    max_reschedule = Column(Integer, nullable=False, default=0)
    duration_days = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    contracts = relationship("Contract", back_populates="package")


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    child_name = Column(String(255), nullable=True)
    package_id = Column(Integer, ForeignKey("payment_packages.id"), nullable=False)
    main_tutor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    substitute_tutor1_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    substitute_tutor2_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # Bit 0 = Sunday ... bit 6 = Saturday
    days_of_week = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_online = Column(Boolean, default=True, nullable=False)
    offline_address = Column(String(500), nullable=True)
    video_call_platform = Column(String(50), nullable=True)  # meet, zoom
    reschedule_count = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default="unpaid", nullable=False)  # unpaid, pending, active, completed, cancelled
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    parent = relationship("User", foreign_keys=[parent_id])
    main_tutor = relationship("User", foreign_keys=[main_tutor_id])
    package = relationship("PaymentPackage", back_populates="contracts")
    sessions = relationship(
        "TutoringSession", back_populates="contract", order_by="TutoringSession.start_time"
    )


class TutoringSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    tutor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    session_date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_online = Column(Boolean, default=True, nullable=False)
    offline_address = Column(String(500), nullable=True)
    video_call_platform = Column(String(50), nullable=True)
    status = Column(String(20), default="scheduled", nullable=False)  # scheduled, rescheduled, cancelled, completed
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contract = relationship("Contract", back_populates="sessions")
    tutor = relationship("User")


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    requested_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    requested_tutor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, approved, rejected
    staff_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    session = relationship("TutoringSession")
    contract = relationship("Contract")


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    transaction_type = Column(String(20), nullable=False)  # Deposit, Withdrawal, Payment, Refund
    status = Column(String(20), default="Pending", nullable=False)  # Pending, Completed, Cancelled, Failed
    description = Column(String(500), nullable=True)
    payment_method = Column(String(50), nullable=True)
    payment_gateway = Column(String(50), nullable=True)
    payment_gateway_reference = Column(String(100), nullable=True, index=True)
    transaction_date = Column(DateTime, server_default=func.now())

    parent = relationship("User", back_populates="wallet_transactions")


class SePayTransaction(Base):
    __tablename__ = "sepay_transactions"

    id = Column(Integer, primary_key=True, index=True)
    # Business key shared with the transfer content; idempotency key for webhooks
    order_reference = Column(String(50), unique=True, index=True, nullable=False)
    # Exactly one of wallet_transaction_id / contract_id is set
    wallet_transaction_id = Column(Integer, ForeignKey("wallet_transactions.id"), nullable=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)
    status = Column(String(20), default="Pending", nullable=False)  # Pending, Completed, Cancelled
    transfer_amount = Column(Numeric(18, 2), nullable=False)
    gateway = Column(String(100), nullable=True)
    transaction_date = Column(DateTime, nullable=True)
    account_number = Column(String(50), nullable=True)
    sub_account = Column(String(50), nullable=True)
    transfer_type = Column(String(10), default="in")
    accumulated = Column(Numeric(18, 2), nullable=True)
    code = Column(String(100), nullable=True)
    content = Column(String(500), nullable=True)
    reference_number = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    completed_at = Column(DateTime, nullable=True)

    wallet_transaction = relationship("WalletTransaction")
    contract = relationship("Contract")


class PayOSTransaction(Base):
    __tablename__ = "payos_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(BigInteger, unique=True, index=True, nullable=False)
    wallet_transaction_id = Column(Integer, ForeignKey("wallet_transactions.id"), nullable=False)
    payment_link_id = Column(String(100), nullable=True)
    checkout_url = Column(String(500), nullable=True)
    payment_status = Column(String(20), default="PENDING", nullable=False)  # PENDING, PAID, CANCELLED
    amount = Column(Numeric(18, 2), nullable=False)
    description = Column(String(255), nullable=True)
    return_url = Column(String(500), nullable=True)
    cancel_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    paid_at = Column(DateTime, nullable=True)

    wallet_transaction = relationship("WalletTransaction")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50), nullable=False)
    status = Column(String(20), default="Pending", nullable=False)  # Pending, Sent, Read
    created_at = Column(DateTime, server_default=func.now())
    sent_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="notifications")
