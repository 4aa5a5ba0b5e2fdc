"""
SQLAlchemy ORM Models for the Financial Data Reconciliation Service

This module defines the normalized schema the CSV import reconciles into:
- Integer surrogate keys plus a unique natural key per table
- Foreign key constraints with cascading deletes
- Timestamps for all records (created_at, updated_at)
- Soft deactivation for clients and platforms (is_active)

Tables:
1. platforms - Payment platforms (digital wallets, banks)
2. clients - Billed customers, keyed by client_code
3. invoices - Invoices owned by a client, keyed by invoice_number
4. transactions - Payments against an invoice through a platform,
   keyed by transaction_reference
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


# ============================================
# ENUMS
# ============================================

class PlatformType(str, PyEnum):
    """Category of payment platform"""
    DIGITAL_WALLET = "DIGITAL_WALLET"
    BANK = "BANK"


class InvoiceStatus(str, PyEnum):
    """Billing status of an invoice"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class TransactionType(str, PyEnum):
    """Kind of money movement"""
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus(str, PyEnum):
    """Settlement status of a transaction"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Invoices reported back as outstanding
OUTSTANDING_INVOICE_STATUSES = (
    InvoiceStatus.PENDING,
    InvoiceStatus.PARTIAL,
    InvoiceStatus.OVERDUE,
)

AMOUNT = Numeric(15, 2)


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================
# MODELS
# ============================================

class Platform(Base, TimestampMixin):
    """
    Payment platform a transaction was made through.

    A fixed seed set exists (see load_initial_data.py); the import creates
    unknown platforms on demand as DIGITAL_WALLET.
    """
    __tablename__ = "platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    platform_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True
    )

    platform_type: Mapped[PlatformType] = mapped_column(
        Enum(PlatformType, name="platform_type"),
        nullable=False,
        default=PlatformType.DIGITAL_WALLET
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[List["Transaction"]] = relationship(
        "Transaction",
        back_populates="platform",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Platform(id={self.id}, name='{self.platform_name}')>"


class Client(Base, TimestampMixin):
    """
    Billed customer.

    Identified externally by client_code. The import creates a client on
    first sighting and refreshes its contact fields afterwards; clients are
    only ever deactivated, never deleted, by the application.
    """
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    client_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[Optional[str]] = mapped_column(String(150), unique=True, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True
    )

    invoices: Mapped[List["Invoice"]] = relationship(
        "Invoice",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict:
        return {
            "client_id": self.id,
            "client_code": self.client_code,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "department": self.department,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, code='{self.client_code}')>"


class Invoice(Base, TimestampMixin):
    """
    Invoice issued to a client.

    status is supplied by the source data and never recomputed here.
    """
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True
    )

    client_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    billing_period: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True
    )

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    client: Mapped["Client"] = relationship("Client", back_populates="invoices")
    transactions: Mapped[List["Transaction"]] = relationship(
        "Transaction",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def pending_amount(self) -> Decimal:
        return (self.total_amount or Decimal("0")) - (self.paid_amount or Decimal("0"))

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status={self.status})>"


class Transaction(Base, TimestampMixin):
    """Money movement against an invoice through a platform."""
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    transaction_reference: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        index=True
    )

    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    platform_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("platforms.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type"),
        nullable=False,
        default=TransactionType.PAYMENT
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="transactions")
    platform: Mapped["Platform"] = relationship("Platform", back_populates="transactions")

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, reference='{self.transaction_reference}')>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def normalize_client_code(code: Optional[str]) -> str:
    """
    Normalize a client code for lookup.

    Client codes are uppercase alphanumeric; spreadsheet exports sometimes
    carry lowercase or padded values.
    """
    if not code:
        return ""
    return code.strip().upper()
