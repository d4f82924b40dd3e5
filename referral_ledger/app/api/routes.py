from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status

from ..core.dependencies import get_account_service, get_ledger_service
from ..core.errors import LedgerError
from ..models import (
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
from ..services import AccountService, LedgerService
from ..services.ledger import MAX_PAGE_SIZE


router = APIRouter(prefix="/accounts", tags=["accounts"])

@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: AccountCreate,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return service.register(payload)

@router.post("/login", response_model=AccountResponse)
def login(
    payload: LoginRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return service.authenticate(payload.username, payload.password)

@router.get("/{account_number}", response_model=AccountResponse)
def get_account(
    account_number: str,
    service: LedgerService = Depends(get_ledger_service),
) -> AccountResponse:
    return service.get_account(account_number)

@router.post("/{account_number}/password", response_model=AccountResponse)
def change_password(
    account_number: str,
    payload: PasswordChangeRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return service.change_password(
        account_number, payload.current_password, payload.new_password
    )

@router.get("/{account_number}/transactions", response_model=TransactionPage)
def list_transactions(
    account_number: str,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    cursor: str | None = None,
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionPage:
    return service.list_transactions(account_number, limit=limit, cursor=cursor)

@router.get("/{account_number}/referrals", response_model=list[ReferralNode])
def list_referrals(
    account_number: str,
    service: LedgerService = Depends(get_ledger_service),
) -> list[ReferralNode]:
    return service.referral_tree(account_number, depth=1)

@router.get("/{account_number}/referrals/tree", response_model=list[ReferralNode])
def referral_tree(
    account_number: str,
    depth: int = 3,
    service: LedgerService = Depends(get_ledger_service),
) -> list[ReferralNode]:
    return service.referral_tree(account_number, depth=depth)

@router.post(
    "/{account_number}/deposits",
    response_model=DepositResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_deposit(
    account_number: str,
    payload: DepositCreate,
    service: LedgerService = Depends(get_ledger_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> DepositResponse:
    return service.record_deposit(
        account_number,
        payload.tx_hash,
        idempotency_key,
        claimed_amount=payload.amount,
        referrer_account_number=payload.referrer_account_number,
    )

@router.get("/{account_number}/deposits", response_model=list[DepositResponse])
def list_deposits(
    account_number: str,
    limit: int = 20,
    service: LedgerService = Depends(get_ledger_service),
) -> list[DepositResponse]:
    return service.list_deposits(account_number, limit=limit)

@router.post(
    "/{account_number}/withdrawals",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
)
def request_withdrawal(
    account_number: str,
    payload: WithdrawalCreate,
    service: LedgerService = Depends(get_ledger_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> WithdrawalResponse:
    return service.request_withdrawal(
        account_number, payload.receiving_wallet, payload.amount, idempotency_key
    )

@router.get("/{account_number}/withdrawals", response_model=list[WithdrawalResponse])
def list_withdrawals(
    account_number: str,
    limit: int = 20,
    service: LedgerService = Depends(get_ledger_service),
) -> list[WithdrawalResponse]:
    return service.list_withdrawals(account_number, limit=limit)

@router.post(
    "/{account_number}/purchases",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_purchase(
    account_number: str,
    payload: PurchaseCreate,
    service: LedgerService = Depends(get_ledger_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> PurchaseResponse:
    return service.create_purchase(
        account_number,
        payload.product_id,
        payload.mobile,
        payload.location,
        idempotency_key,
    )

@router.get("/{account_number}/purchases", response_model=list[PurchaseResponse])
def list_purchases(
    account_number: str,
    service: LedgerService = Depends(get_ledger_service),
) -> list[PurchaseResponse]:
    return service.list_purchases(account_number)

deposit_router = APIRouter(prefix="/deposits", tags=["deposits"])

@deposit_router.post("/{request_id}/approve", response_model=DepositResponse)
def approve_deposit(
    request_id: UUID,
    payload: DepositApproval,
    service: LedgerService = Depends(get_ledger_service),
) -> DepositResponse:
    return service.approve_deposit(request_id, payload.amount)

@deposit_router.post("/{request_id}/reject", response_model=DepositResponse)
def reject_deposit(
    request_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> DepositResponse:
    return service.reject_deposit(request_id)

withdrawal_router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

@withdrawal_router.post("/{request_id}/resolve", response_model=WithdrawalResponse)
def resolve_withdrawal(
    request_id: UUID,
    payload: WithdrawalResolution,
    service: LedgerService = Depends(get_ledger_service),
) -> WithdrawalResponse:
    return service.resolve_withdrawal(request_id, payload.outcome)

transfer_router = APIRouter(prefix="/transfers", tags=["transfers"])

@transfer_router.post(
    "", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED
)
def create_transfer(
    payload: TransferRequest,
    service: LedgerService = Depends(get_ledger_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> TransactionResponse:
    return service.transfer(
        payload.sender_acc, payload.receiver_acc, payload.amount, idempotency_key
    )

rpc_router = APIRouter(prefix="/rpc", tags=["rpc"])

@rpc_router.post("/transfer_amount", response_model=RpcTransferResponse)
def transfer_amount(
    payload: RpcTransferRequest,
    service: LedgerService = Depends(get_ledger_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> RpcTransferResponse:
    """Procedure-style transfer: failures come back in ``error`` instead of an HTTP status."""
    try:
        data = service.transfer(
            payload.sender_acc,
            payload.receiver_acc,
            payload.transfer_amount,
            idempotency_key,
        )
    except LedgerError as exc:
        return RpcTransferResponse(error=RpcError(code=exc.code, message=str(exc)))
    return RpcTransferResponse(data=data)

store_router = APIRouter(tags=["store"])

@store_router.post(
    "/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED
)
def create_product(
    payload: ProductCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> ProductResponse:
    return service.create_product(payload.name, payload.price, payload.image_url)

@store_router.get("/products", response_model=list[ProductResponse])
def list_products(
    service: LedgerService = Depends(get_ledger_service),
) -> list[ProductResponse]:
    return service.list_products()

@store_router.post("/purchases/{purchase_id}/status", response_model=PurchaseResponse)
def advance_purchase(
    purchase_id: UUID,
    payload: PurchaseStatusUpdate,
    service: LedgerService = Depends(get_ledger_service),
) -> PurchaseResponse:
    return service.advance_purchase(purchase_id, payload.status)

audit_router = APIRouter(prefix="/audit", tags=["audit"])

@audit_router.get("", response_model=list[AuditEventResponse])
def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    account_number: Optional[str] = None,
    service: LedgerService = Depends(get_ledger_service),
) -> list[AuditEventResponse]:
    return service.list_audit_events(
        entity_type=entity_type, entity_id=entity_id, account_number=account_number
    )

__all__ = [
    "router",
    "deposit_router",
    "withdrawal_router",
    "transfer_router",
    "rpc_router",
    "store_router",
    "audit_router",
]
