from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlmodel import Session

from ..core.config import Settings
from ..core.errors import (
    AccountNotFoundError,
    AlreadyProcessedError,
    DuplicateIdempotencyKeyError,
    DuplicateTxHashError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateTransitionError,
    PendingDepositExistsError,
    ProductNotFoundError,
    ReferralCycleError,
    ReferrerNotFoundError,
    RequestNotFoundError,
    SelfTransferError,
)
from ..core.money import share_of, to_minor_units, to_positive_minor_units
from ..models import (
    PURCHASE_FLOW,
    AccountModel,
    AuditEventResponse,
    DepositRequestModel,
    DepositResponse,
    ProductModel,
    ProductResponse,
    PurchaseModel,
    PurchaseResponse,
    PurchaseStatus,
    ReferralNode,
    RequestStatus,
    TransactionModel,
    TransactionPage,
    TransactionResponse,
    WithdrawalRequestModel,
    WithdrawalResponse,
)
from .base import ServiceBase
from .referrals import ReferralAccumulator
from .repository import LedgerRepository


logger = logging.getLogger(__name__)

IN_FLIGHT = "A request with this idempotency key is already being processed"

MAX_PAGE_SIZE = 200


def _encode_cursor(tx: TransactionModel) -> str:
    return f"{tx.created_at.isoformat()}_{tx.id.hex}"


def _decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Parse ``<created_at>_<id>``, the keyset position of the last row already seen."""
    timestamp, _, tx_id = cursor.rpartition("_")
    try:
        return datetime.fromisoformat(timestamp), UUID(hex=tx_id)
    except ValueError as exc:
        raise ValueError("Invalid cursor") from exc


class LedgerService(ServiceBase):
    """The only writer of balance fields.

    Each public mutator is one unit of work: validation happens before the
    first write, debits are compare-and-set, and any failure rolls back every
    write made so far, audit rows included.
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        super().__init__(session, repository, settings)
        self.referrals = ReferralAccumulator(self.repository, self.settings)

    # ------------------------------------------------------------------
    # Response mapping
    # ------------------------------------------------------------------
    def _transaction_to_response(self, tx: TransactionModel) -> TransactionResponse:
        return TransactionResponse(
            id=tx.id,
            sender_acc=tx.sender_acc,
            receiver_acc=tx.receiver_acc,
            amount=self._money(tx.amount),
            created_at=tx.created_at,
        )

    def _deposit_to_response(self, deposit: DepositRequestModel) -> DepositResponse:
        return DepositResponse(
            id=deposit.id,
            account_number=deposit.account_number,
            tx_hash=deposit.tx_hash,
            claimed_amount=self._money(deposit.claimed_amount),
            approved_amount=self._money(deposit.approved_amount),
            referrer_override=deposit.referrer_override,
            status=deposit.status,
            created_at=deposit.created_at,
            processed_at=deposit.processed_at,
        )

    def _withdrawal_to_response(self, request: WithdrawalRequestModel) -> WithdrawalResponse:
        return WithdrawalResponse(
            id=request.id,
            account_number=request.account_number,
            receiving_wallet=request.receiving_wallet,
            amount=self._money(request.amount),
            status=request.status,
            created_at=request.created_at,
            processed_at=request.processed_at,
        )

    def _product_to_response(self, product: ProductModel) -> ProductResponse:
        return ProductResponse(
            id=product.id,
            name=product.name,
            price=self._money(product.price),
            image_url=product.image_url,
        )

    def _purchase_to_response(self, purchase: PurchaseModel) -> PurchaseResponse:
        return PurchaseResponse(
            id=purchase.id,
            account_number=purchase.account_number,
            product_id=purchase.product_id,
            price=self._money(purchase.price),
            mobile=purchase.mobile,
            location=purchase.location,
            status=purchase.status,
            created_at=purchase.created_at,
        )

    def _get_request(self, model, request_id: UUID):
        request = self.repository.get(model, request_id, fresh=True)
        if request is None:
            raise RequestNotFoundError(f"Request {request_id} not found")
        return request

    # ------------------------------------------------------------------
    # Transfer protocol
    # ------------------------------------------------------------------
    def transfer(
        self,
        sender_acc: str,
        receiver_acc: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> TransactionResponse:
        places = self.settings.money_places
        minor = to_minor_units(amount, places)
        request_signature = ("transfer", sender_acc, receiver_acc, minor)

        with self._unit_of_work("transfer", conflict=DuplicateIdempotencyKeyError(IN_FLIGHT)):
            cached = self._check_idempotency("transfer", idempotency_key, request_signature)
            if cached is not None:
                return TransactionResponse.model_validate_json(cached)

            sender = self._get_account(sender_acc)
            receiver = self._get_account(receiver_acc)
            if sender.id == receiver.id:
                raise SelfTransferError("Cannot transfer to the same account")
            if minor <= 0:
                raise InvalidAmountError("Amount must be greater than zero")

            self.repository.lock_accounts([sender.id, receiver.id])
            if not self.repository.apply_deltas(sender.id, balance=-minor):
                raise InsufficientFundsError("Insufficient funds for transfer")
            if not self.repository.apply_deltas(receiver.id, balance=minor):
                raise AccountNotFoundError(f"Account {receiver_acc} not found")

            tx = self.repository.add_transaction(
                sender_acc=sender.account_number,
                receiver_acc=receiver.account_number,
                amount=minor,
            )
            self.repository.append_audit(
                entity_type="transfer",
                entity_id=tx.id,
                action="committed",
                account_number=sender.account_number,
                amount=minor,
                detail=f"to {receiver.account_number}",
            )

            response = self._transaction_to_response(tx)
            self._record_idempotent("transfer", idempotency_key, request_signature, response)

        logger.info(
            "ledger.transfer",
            extra={
                "transaction_id": str(response.id),
                "sender_acc": sender_acc,
                "receiver_acc": receiver_acc,
                "amount": minor,
            },
        )
        return response

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------
    def record_deposit(
        self,
        account_number: str,
        tx_hash: str,
        idempotency_key: str,
        claimed_amount: Optional[Decimal] = None,
        referrer_account_number: Optional[str] = None,
    ) -> DepositResponse:
        places = self.settings.money_places
        claimed = (
            to_positive_minor_units(claimed_amount, places)
            if claimed_amount is not None
            else None
        )
        tx_hash = self._required_text(tx_hash, "tx_hash")
        request_signature = (
            "deposit",
            account_number,
            tx_hash,
            claimed,
            referrer_account_number,
        )

        with self._unit_of_work(
            "record_deposit",
            conflict=DuplicateTxHashError(f"Transaction hash {tx_hash} was already claimed"),
        ):
            cached = self._check_idempotency("deposit", idempotency_key, request_signature)
            if cached is not None:
                return DepositResponse.model_validate_json(cached)

            account = self._get_account(account_number)
            if self.repository.tx_hash_exists(tx_hash):
                raise DuplicateTxHashError(f"Transaction hash {tx_hash} was already claimed")
            if self.settings.single_pending_deposit and self.repository.has_pending_deposit(
                account.id
            ):
                raise PendingDepositExistsError(
                    "A deposit for this account is already awaiting review"
                )
            if referrer_account_number and not self.repository.account_number_exists(
                referrer_account_number
            ):
                raise ReferrerNotFoundError(f"Referrer {referrer_account_number} not found")

            deposit = self.repository.add(
                DepositRequestModel(
                    account_id=account.id,
                    account_number=account.account_number,
                    tx_hash=tx_hash,
                    claimed_amount=claimed,
                    referrer_override=referrer_account_number,
                )
            )
            self.repository.append_audit(
                entity_type="deposit",
                entity_id=deposit.id,
                action="created",
                account_number=account.account_number,
                amount=claimed,
                to_status=RequestStatus.PENDING.value,
            )

            response = self._deposit_to_response(deposit)
            self._record_idempotent("deposit", idempotency_key, request_signature, response)

        logger.info(
            "deposit.recorded",
            extra={"deposit_id": str(response.id), "account_number": account_number},
        )
        return response

    def approve_deposit(
        self, request_id: UUID, final_amount: Optional[Decimal] = None
    ) -> DepositResponse:
        """Credit an approved deposit and propagate referral volume, exactly once."""
        places = self.settings.money_places
        with self._unit_of_work("approve_deposit"):
            deposit = self._get_request(DepositRequestModel, request_id)
            if deposit.status != RequestStatus.PENDING:
                raise AlreadyProcessedError(f"Deposit {request_id} is already {deposit.status}")

            if final_amount is not None:
                amount = to_positive_minor_units(final_amount, places)
            elif deposit.claimed_amount:
                amount = deposit.claimed_amount
            else:
                raise InvalidAmountError("An approval amount is required")

            if not self.repository.transition_status(
                DepositRequestModel,
                deposit.id,
                RequestStatus.PENDING.value,
                RequestStatus.APPROVED.value,
                approved_amount=amount,
                processed_at=datetime.now(UTC),
            ):
                raise AlreadyProcessedError(f"Deposit {request_id} is already processed")

            withdrawable = share_of(amount, self.settings.deposit_withdrawable_share)
            if not self.repository.apply_deltas(
                deposit.account_id,
                balance=amount - withdrawable,
                withdrawal_amount=withdrawable,
            ):
                raise AccountNotFoundError(f"Account {deposit.account_number} not found")

            account = self.repository.get(AccountModel, deposit.account_id, fresh=True)
            if deposit.referrer_override and account.referrer_account_number is None:
                try:
                    self.referrals.attach_referrer(account, deposit.referrer_override)
                except (ReferralCycleError, ReferrerNotFoundError) as exc:
                    # The deposit itself is valid; only the proposed link is not.
                    logger.warning(
                        "deposit.referrer_override.ignored",
                        extra={"deposit_id": str(request_id), "reason": str(exc)},
                    )
            credited = self.referrals.propagate(account, amount)

            self.repository.append_audit(
                entity_type="deposit",
                entity_id=deposit.id,
                action="approved",
                account_number=deposit.account_number,
                amount=amount,
                from_status=RequestStatus.PENDING.value,
                to_status=RequestStatus.APPROVED.value,
            )
            response = self._deposit_to_response(
                self._get_request(DepositRequestModel, request_id)
            )

        logger.info(
            "deposit.approved",
            extra={
                "deposit_id": str(request_id),
                "account_number": response.account_number,
                "amount": amount,
                "referrals_credited": len(credited),
            },
        )
        return response

    def reject_deposit(self, request_id: UUID) -> DepositResponse:
        with self._unit_of_work("reject_deposit"):
            deposit = self._get_request(DepositRequestModel, request_id)
            if not self.repository.transition_status(
                DepositRequestModel,
                deposit.id,
                RequestStatus.PENDING.value,
                RequestStatus.REJECTED.value,
                processed_at=datetime.now(UTC),
            ):
                raise AlreadyProcessedError(f"Deposit {request_id} is already {deposit.status}")
            self.repository.append_audit(
                entity_type="deposit",
                entity_id=deposit.id,
                action="rejected",
                account_number=deposit.account_number,
                from_status=RequestStatus.PENDING.value,
                to_status=RequestStatus.REJECTED.value,
            )
            response = self._deposit_to_response(
                self._get_request(DepositRequestModel, request_id)
            )

        logger.info("deposit.rejected", extra={"deposit_id": str(request_id)})
        return response

    def list_deposits(self, account_number: str, limit: int = 20) -> list[DepositResponse]:
        with self._unit_of_work("list_deposits"):
            account = self._get_account(account_number)
            return [
                self._deposit_to_response(d)
                for d in self.repository.list_for_account(DepositRequestModel, account.id, limit)
            ]

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------
    def request_withdrawal(
        self,
        account_number: str,
        receiving_wallet: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> WithdrawalResponse:
        """Reserve funds for a cash-out: the debit happens now, not at approval."""
        minor = to_positive_minor_units(amount, self.settings.money_places)
        receiving_wallet = self._required_text(receiving_wallet, "receiving_wallet")
        request_signature = ("withdraw", account_number, receiving_wallet, minor)

        with self._unit_of_work(
            "request_withdrawal", conflict=DuplicateIdempotencyKeyError(IN_FLIGHT)
        ):
            cached = self._check_idempotency("withdraw", idempotency_key, request_signature)
            if cached is not None:
                return WithdrawalResponse.model_validate_json(cached)

            account = self._get_account(account_number, for_update=True)
            if not self.repository.apply_deltas(account.id, withdrawal_amount=-minor):
                raise InsufficientFundsError("Insufficient withdrawal balance")

            request = self.repository.add(
                WithdrawalRequestModel(
                    account_id=account.id,
                    account_number=account.account_number,
                    receiving_wallet=receiving_wallet,
                    amount=minor,
                )
            )
            self.repository.append_audit(
                entity_type="withdrawal",
                entity_id=request.id,
                action="created",
                account_number=account.account_number,
                amount=minor,
                to_status=RequestStatus.PENDING.value,
            )

            response = self._withdrawal_to_response(request)
            self._record_idempotent("withdraw", idempotency_key, request_signature, response)

        logger.info(
            "withdrawal.requested",
            extra={
                "withdrawal_id": str(response.id),
                "account_number": account_number,
                "amount": minor,
            },
        )
        return response

    def resolve_withdrawal(self, request_id: UUID, outcome: str) -> WithdrawalResponse:
        """Approve (funds already left) or reject (reservation is credited back)."""
        try:
            target = RequestStatus(outcome)
        except ValueError as exc:
            raise InvalidStateTransitionError(f"Unknown outcome {outcome!r}") from exc
        if target == RequestStatus.PENDING:
            raise InvalidStateTransitionError("A withdrawal cannot be resolved to pending")

        with self._unit_of_work("resolve_withdrawal"):
            request = self._get_request(WithdrawalRequestModel, request_id)
            if not self.repository.transition_status(
                WithdrawalRequestModel,
                request.id,
                RequestStatus.PENDING.value,
                target.value,
                processed_at=datetime.now(UTC),
            ):
                raise AlreadyProcessedError(
                    f"Withdrawal {request_id} is already {request.status}"
                )
            if target == RequestStatus.REJECTED and not self.repository.apply_deltas(
                request.account_id, withdrawal_amount=request.amount
            ):
                raise AccountNotFoundError(f"Account {request.account_number} not found")

            self.repository.append_audit(
                entity_type="withdrawal",
                entity_id=request.id,
                action=target.value,
                account_number=request.account_number,
                amount=request.amount,
                from_status=RequestStatus.PENDING.value,
                to_status=target.value,
            )
            response = self._withdrawal_to_response(
                self._get_request(WithdrawalRequestModel, request_id)
            )

        logger.info(
            f"withdrawal.{target.value}",
            extra={"withdrawal_id": str(request_id), "amount": str(response.amount)},
        )
        return response

    def list_withdrawals(self, account_number: str, limit: int = 20) -> list[WithdrawalResponse]:
        with self._unit_of_work("list_withdrawals"):
            account = self._get_account(account_number)
            return [
                self._withdrawal_to_response(w)
                for w in self.repository.list_for_account(
                    WithdrawalRequestModel, account.id, limit
                )
            ]

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------
    def create_product(
        self, name: str, price: Decimal, image_url: Optional[str] = None
    ) -> ProductResponse:
        name = self._required_text(name, "name")
        minor = to_positive_minor_units(price, self.settings.money_places)
        with self._unit_of_work("create_product"):
            product = self.repository.add(
                ProductModel(name=name, price=minor, image_url=image_url)
            )
            response = self._product_to_response(product)
        logger.info("store.product.created", extra={"product_id": str(response.id)})
        return response

    def list_products(self) -> list[ProductResponse]:
        with self._unit_of_work("list_products"):
            return [self._product_to_response(p) for p in self.repository.list_products()]

    def create_purchase(
        self,
        account_number: str,
        product_id: UUID,
        mobile: str,
        location: str,
        idempotency_key: str,
    ) -> PurchaseResponse:
        """Redeem a product against withdrawal_amount, reserving the price up front."""
        request_signature = ("purchase", account_number, str(product_id), mobile, location)

        with self._unit_of_work(
            "create_purchase", conflict=DuplicateIdempotencyKeyError(IN_FLIGHT)
        ):
            cached = self._check_idempotency("purchase", idempotency_key, request_signature)
            if cached is not None:
                return PurchaseResponse.model_validate_json(cached)

            account = self._get_account(account_number, for_update=True)
            product = self.repository.get(ProductModel, product_id)
            if product is None or not product.is_active:
                raise ProductNotFoundError(f"Product {product_id} not found")
            if not self.repository.apply_deltas(account.id, withdrawal_amount=-product.price):
                raise InsufficientFundsError("Insufficient withdrawal balance")

            purchase = self.repository.add(
                PurchaseModel(
                    account_id=account.id,
                    account_number=account.account_number,
                    product_id=product.id,
                    price=product.price,
                    mobile=mobile,
                    location=location,
                )
            )
            self.repository.append_audit(
                entity_type="purchase",
                entity_id=purchase.id,
                action="created",
                account_number=account.account_number,
                amount=product.price,
                to_status=PurchaseStatus.PENDING.value,
            )

            response = self._purchase_to_response(purchase)
            self._record_idempotent("purchase", idempotency_key, request_signature, response)

        logger.info(
            "store.purchase.created",
            extra={"purchase_id": str(response.id), "account_number": account_number},
        )
        return response

    def advance_purchase(self, purchase_id: UUID, status: PurchaseStatus) -> PurchaseResponse:
        target = PurchaseStatus(status)
        with self._unit_of_work("advance_purchase"):
            purchase = self._get_request(PurchaseModel, purchase_id)
            current = PurchaseStatus(purchase.status)
            if PURCHASE_FLOW.index(target) != PURCHASE_FLOW.index(current) + 1:
                raise InvalidStateTransitionError(
                    f"Purchase cannot move from {current.value} to {target.value}"
                )
            if not self.repository.transition_status(
                PurchaseModel, purchase.id, current.value, target.value
            ):
                raise InvalidStateTransitionError(
                    f"Purchase {purchase_id} changed status concurrently"
                )
            self.repository.append_audit(
                entity_type="purchase",
                entity_id=purchase.id,
                action="status_changed",
                account_number=purchase.account_number,
                from_status=current.value,
                to_status=target.value,
            )
            response = self._purchase_to_response(self._get_request(PurchaseModel, purchase_id))

        logger.info(
            "store.purchase.advanced",
            extra={"purchase_id": str(purchase_id), "status": target.value},
        )
        return response

    def list_purchases(self, account_number: str) -> list[PurchaseResponse]:
        with self._unit_of_work("list_purchases"):
            account = self._get_account(account_number)
            return [
                self._purchase_to_response(p)
                for p in self.repository.list_for_account(PurchaseModel, account.id)
            ]

    # ------------------------------------------------------------------
    # History and referral network
    # ------------------------------------------------------------------
    def list_transactions(
        self,
        account_number: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> TransactionPage:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        before = _decode_cursor(cursor) if cursor else None

        with self._unit_of_work("list_transactions"):
            self._get_account(account_number)
            # One extra row tells us whether another page exists.
            entries = self.repository.list_transactions(account_number, limit + 1, before)

            slice_entries = entries[:limit]
            next_cursor = None
            if len(entries) > limit and slice_entries:
                next_cursor = _encode_cursor(slice_entries[-1])

            items = [self._transaction_to_response(entry) for entry in slice_entries]
            return TransactionPage(items=items, next_cursor=next_cursor)

    def referral_tree(self, account_number: str, depth: int = 1) -> list[ReferralNode]:
        with self._unit_of_work("referral_tree"):
            return self.referrals.referral_tree(account_number, depth)

    def list_audit_events(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        account_number: Optional[str] = None,
    ) -> list[AuditEventResponse]:
        with self._unit_of_work("list_audit_events"):
            return [
                AuditEventResponse(
                    id=event.id,
                    ts=event.ts,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    action=event.action,
                    account_number=event.account_number,
                    amount=self._money(event.amount),
                    from_status=event.from_status,
                    to_status=event.to_status,
                    detail=event.detail,
                )
                for event in self.repository.list_audit(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    account_number=account_number,
                )
            ]
