from .db import Account as AccountModel
from .db import AuditEvent as AuditEventModel
from .db import DepositRequest as DepositRequestModel
from .db import IdempotencyRecord as IdempotencyRecordModel
from .db import Product as ProductModel
from .db import Purchase as PurchaseModel
from .db import PURCHASE_FLOW, PurchaseStatus, RequestStatus
from .db import Transaction as TransactionModel
from .db import WithdrawalRequest as WithdrawalRequestModel
from .schemas import (
    AccountCreate,
    AccountResponse,
    AuditEventResponse,
    DepositApproval,
    DepositCreate,
    DepositResponse,
    LoginRequest,
    PasswordChangeRequest,
    ProductCreate,
    ProductResponse,
    PurchaseCreate,
    PurchaseResponse,
    PurchaseStatusUpdate,
    ReferralNode,
    RpcError,
    RpcTransferRequest,
    RpcTransferResponse,
    TransactionPage,
    TransactionResponse,
    TransferRequest,
    WithdrawalCreate,
    WithdrawalResolution,
    WithdrawalResponse,
)

__all__ = [
    "AccountCreate",
    "AccountResponse",
    "AuditEventResponse",
    "DepositApproval",
    "DepositCreate",
    "DepositResponse",
    "LoginRequest",
    "PasswordChangeRequest",
    "ProductCreate",
    "ProductResponse",
    "PurchaseCreate",
    "PurchaseResponse",
    "PurchaseStatusUpdate",
    "ReferralNode",
    "RpcError",
    "RpcTransferRequest",
    "RpcTransferResponse",
    "TransactionPage",
    "TransactionResponse",
    "TransferRequest",
    "WithdrawalCreate",
    "WithdrawalResolution",
    "WithdrawalResponse",
    "AccountModel",
    "AuditEventModel",
    "DepositRequestModel",
    "IdempotencyRecordModel",
    "ProductModel",
    "PurchaseModel",
    "TransactionModel",
    "WithdrawalRequestModel",
    "PURCHASE_FLOW",
    "PurchaseStatus",
    "RequestStatus",
]
