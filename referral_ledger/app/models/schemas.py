from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, StringConstraints

from .db import PurchaseStatus, RequestStatus


class AccountCreate(BaseModel):
    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
    password: str = Field(..., min_length=6)
    mobile: Optional[str] = Field(default=None, min_length=4, max_length=32)
    referrer_account_number: Optional[str] = Field(
        default=None, description="Account number of the referring account"
    )


class LoginRequest(BaseModel):
    username: str
    password: str


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class AccountResponse(BaseModel):
    id: UUID
    account_number: str
    username: str
    mobile: Optional[str] = None
    referrer_account_number: Optional[str] = None
    balance: Decimal = Field(..., ge=0, description="Spendable (tradable) funds")
    withdrawal_amount: Decimal = Field(..., ge=0, description="Funds eligible for cash-out")
    direct_business: Decimal = Field(..., ge=0, description="Deposit volume from referrals")
    created_at: datetime


class TransferRequest(BaseModel):
    sender_acc: str
    receiver_acc: str
    amount: Decimal = Field(..., gt=0)


class TransactionResponse(BaseModel):
    id: UUID
    sender_acc: str
    receiver_acc: str
    amount: Decimal
    created_at: datetime


class TransactionPage(BaseModel):
    items: list[TransactionResponse]
    next_cursor: Optional[str] = None


class RpcTransferRequest(BaseModel):
    sender_acc: str
    receiver_acc: str
    transfer_amount: Decimal


class RpcError(BaseModel):
    code: str
    message: str


class RpcTransferResponse(BaseModel):
    data: Optional[TransactionResponse] = None
    error: Optional[RpcError] = None


class DepositCreate(BaseModel):
    tx_hash: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]
    amount: Optional[Decimal] = Field(default=None, gt=0, description="Claimed amount")
    referrer_account_number: Optional[str] = None


class DepositApproval(BaseModel):
    amount: Optional[Decimal] = Field(
        default=None, gt=0, description="Final amount; defaults to the claimed amount"
    )


class DepositResponse(BaseModel):
    id: UUID
    account_number: str
    tx_hash: str
    claimed_amount: Optional[Decimal] = None
    approved_amount: Optional[Decimal] = None
    referrer_override: Optional[str] = None
    status: RequestStatus
    created_at: datetime
    processed_at: Optional[datetime] = None


class WithdrawalCreate(BaseModel):
    receiving_wallet: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)
    ]
    amount: Decimal = Field(..., gt=0)


class WithdrawalResolution(BaseModel):
    outcome: Literal["approved", "rejected"]


class WithdrawalResponse(BaseModel):
    id: UUID
    account_number: str
    receiving_wallet: str
    amount: Decimal
    status: RequestStatus
    created_at: datetime
    processed_at: Optional[datetime] = None


class ProductCreate(BaseModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    price: Decimal = Field(..., gt=0)
    image_url: Optional[str] = None


class ProductResponse(BaseModel):
    id: UUID
    name: str
    price: Decimal
    image_url: Optional[str] = None


class PurchaseCreate(BaseModel):
    product_id: UUID
    mobile: str = Field(..., min_length=4, max_length=32)
    location: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PurchaseStatusUpdate(BaseModel):
    status: PurchaseStatus


class PurchaseResponse(BaseModel):
    id: UUID
    account_number: str
    product_id: UUID
    price: Decimal
    mobile: str
    location: str
    status: PurchaseStatus
    created_at: datetime


class ReferralNode(BaseModel):
    account_number: str
    username: str
    direct_business: Decimal
    level: int
    referrals: list["ReferralNode"] = Field(default_factory=list)


class AuditEventResponse(BaseModel):
    id: UUID
    ts: datetime
    entity_type: str
    entity_id: UUID
    action: str
    account_number: Optional[str] = None
    amount: Optional[Decimal] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    detail: Optional[str] = None
