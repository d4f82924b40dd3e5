from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, Column
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _money_column(name: str) -> Column:
    return Column(name, BigInteger, nullable=False, default=0, server_default="0")


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    PACKED = "packed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"


PURCHASE_FLOW = [
    PurchaseStatus.PENDING,
    PurchaseStatus.PACKED,
    PurchaseStatus.OUT_FOR_DELIVERY,
    PurchaseStatus.DELIVERED,
]


class Account(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
        CheckConstraint(
            "withdrawal_amount >= 0", name="ck_users_withdrawal_amount_non_negative"
        ),
        CheckConstraint(
            "direct_business >= 0", name="ck_users_direct_business_non_negative"
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    account_number: str = Field(unique=True, index=True, max_length=16)
    username: str = Field(unique=True, index=True, max_length=64)
    mobile: Optional[str] = Field(default=None, unique=True, max_length=32)
    password_hash: str
    referrer_account_number: Optional[str] = Field(
        default=None, foreign_key="users.account_number", index=True
    )
    # Balances are stored in minor units.
    balance: int = Field(default=0, sa_column=_money_column("balance"))
    withdrawal_amount: int = Field(
        default=0, sa_column=_money_column("withdrawal_amount")
    )
    direct_business: int = Field(default=0, sa_column=_money_column("direct_business"))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utcnow)


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("sender_acc <> receiver_acc", name="ck_transactions_distinct"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    sender_acc: str = Field(foreign_key="users.account_number", index=True)
    receiver_acc: str = Field(foreign_key="users.account_number", index=True)
    amount: int = Field(sa_column=Column("amount", BigInteger, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, index=True)


class DepositRequest(SQLModel, table=True):
    __tablename__ = "deposits"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    account_id: UUID = Field(foreign_key="users.id", index=True)
    account_number: str = Field(index=True)
    tx_hash: str = Field(unique=True, index=True, max_length=256)
    claimed_amount: Optional[int] = Field(
        default=None, sa_column=Column("claimed_amount", BigInteger, nullable=True)
    )
    approved_amount: Optional[int] = Field(
        default=None, sa_column=Column("approved_amount", BigInteger, nullable=True)
    )
    referrer_override: Optional[str] = None
    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    processed_at: Optional[datetime] = None


class WithdrawalRequest(SQLModel, table=True):
    __tablename__ = "withdrawals"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    account_id: UUID = Field(foreign_key="users.id", index=True)
    account_number: str = Field(index=True)
    receiving_wallet: str = Field(max_length=256)
    amount: int = Field(sa_column=Column("amount", BigInteger, nullable=False))
    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    processed_at: Optional[datetime] = None


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    name: str
    price: int = Field(sa_column=Column("price", BigInteger, nullable=False))
    image_url: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utcnow)


class Purchase(SQLModel, table=True):
    __tablename__ = "purchases"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    account_id: UUID = Field(foreign_key="users.id", index=True)
    account_number: str = Field(index=True)
    product_id: UUID = Field(foreign_key="products.id")
    # Price is copied at purchase time so later catalogue edits do not rewrite history.
    price: int = Field(sa_column=Column("price", BigInteger, nullable=False))
    mobile: str
    location: str
    status: str = Field(default=PurchaseStatus.PENDING.value, index=True)
    created_at: datetime = Field(default_factory=_utcnow, index=True)


class AuditEvent(SQLModel, table=True):
    __tablename__ = "audit_log"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    ts: datetime = Field(default_factory=_utcnow, index=True)
    entity_type: str = Field(index=True)
    entity_id: UUID = Field(index=True)
    action: str
    account_number: Optional[str] = Field(default=None, index=True)
    amount: Optional[int] = Field(
        default=None, sa_column=Column("amount", BigInteger, nullable=True)
    )
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    detail: Optional[str] = None


class IdempotencyRecord(SQLModel, table=True):
    route: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    request_signature: str
    response_payload: str
    created_at: datetime = Field(default_factory=_utcnow, index=True)
