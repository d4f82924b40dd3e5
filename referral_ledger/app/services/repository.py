from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import and_, delete, or_, update
from sqlmodel import Session, SQLModel, select

from ..models import (
    AccountModel,
    AuditEventModel,
    DepositRequestModel,
    IdempotencyRecordModel,
    ProductModel,
    PurchaseModel,
    TransactionModel,
    WithdrawalRequestModel,
)

RowT = TypeVar("RowT", bound=SQLModel)

BALANCE_FIELDS = ("balance", "withdrawal_amount", "direct_business")


class LedgerRepository:
    """Thin data access layer around the SQLModel session.

    Balance fields are only ever changed through :meth:`apply_deltas`, which
    folds the non-negativity check into the UPDATE itself. Nothing here
    commits; the service owns transaction boundaries.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # Generic helpers ----------------------------------------------------
    def add(self, row: RowT) -> RowT:
        self.session.add(row)
        self.session.flush()
        return row

    def get(self, model: type[RowT], row_id: UUID, *, fresh: bool = False) -> Optional[RowT]:
        return self.session.get(model, row_id, populate_existing=fresh)

    # Account operations -------------------------------------------------
    def get_account_by_number(
        self, account_number: str, *, for_update: bool = False
    ) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.account_number == account_number)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.exec(stmt.execution_options(populate_existing=True)).first()

    def get_account_by_username(self, username: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.username == username)
        return self.session.exec(stmt).first()

    def account_number_exists(self, account_number: str) -> bool:
        return self.get_account_by_number(account_number) is not None

    def contact_taken(self, username: str, mobile: Optional[str]) -> bool:
        conditions = [AccountModel.username == username]
        if mobile:
            conditions.append(AccountModel.mobile == mobile)
        stmt = select(AccountModel.id).where(or_(*conditions))
        return self.session.exec(stmt).first() is not None

    def lock_accounts(self, account_ids: Iterable[UUID]) -> list[AccountModel]:
        """Row-lock accounts in ascending id order so concurrent transfers cannot deadlock."""
        stmt = (
            select(AccountModel)
            .where(AccountModel.id.in_(sorted(set(account_ids))))
            .order_by(AccountModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(self.session.exec(stmt))

    def apply_deltas(self, account_id: UUID, **deltas: int) -> bool:
        """Atomically add signed minor-unit deltas to balance fields.

        Negative deltas only apply if the field covers them. Returns False,
        leaving the row untouched, when any debited field would go negative.
        """
        unknown = set(deltas) - set(BALANCE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown balance fields: {sorted(unknown)}")

        stmt = update(AccountModel).where(AccountModel.id == account_id)
        values = {}
        for field, delta in deltas.items():
            if not delta:
                continue
            column = getattr(AccountModel, field)
            values[field] = column + delta
            if delta < 0:
                stmt = stmt.where(column >= -delta)
        if not values:
            return True

        result = self.session.connection().execute(stmt.values(**values))
        return result.rowcount == 1

    def list_referrals(self, account_number: str) -> list[AccountModel]:
        stmt = (
            select(AccountModel)
            .where(AccountModel.referrer_account_number == account_number)
            .order_by(AccountModel.created_at)
        )
        return list(self.session.exec(stmt))

    # Status transitions -------------------------------------------------
    def transition_status(
        self,
        model: type[SQLModel],
        row_id: UUID,
        from_status: str,
        to_status: str,
        **values,
    ) -> bool:
        """Compare-and-set a request's status. False means someone got there first."""
        stmt = (
            update(model)
            .where(model.id == row_id)
            .where(model.status == from_status)
            .values(status=to_status, **values)
        )
        result = self.session.connection().execute(stmt)
        return result.rowcount == 1

    # Transactions -------------------------------------------------------
    def list_transactions(
        self,
        account_number: str,
        limit: int,
        before: Optional[tuple[datetime, UUID]] = None,
    ) -> list[TransactionModel]:
        """Newest first, ordered by ``(created_at, id)``; ``before`` is an exclusive keyset bound."""
        stmt = select(TransactionModel).where(
            or_(
                TransactionModel.sender_acc == account_number,
                TransactionModel.receiver_acc == account_number,
            )
        )
        if before is not None:
            created_at, tx_id = before
            stmt = stmt.where(
                or_(
                    TransactionModel.created_at < created_at,
                    and_(TransactionModel.created_at == created_at, TransactionModel.id < tx_id),
                )
            )
        stmt = stmt.order_by(TransactionModel.created_at.desc(), TransactionModel.id.desc())
        return list(self.session.exec(stmt.limit(limit)))

    def add_transaction(
        self, *, sender_acc: str, receiver_acc: str, amount: int
    ) -> TransactionModel:
        return self.add(
            TransactionModel(sender_acc=sender_acc, receiver_acc=receiver_acc, amount=amount)
        )

    # Requests -----------------------------------------------------------
    def has_pending_deposit(self, account_id: UUID) -> bool:
        stmt = (
            select(DepositRequestModel.id)
            .where(DepositRequestModel.account_id == account_id)
            .where(DepositRequestModel.status == "pending")
        )
        return self.session.exec(stmt).first() is not None

    def tx_hash_exists(self, tx_hash: str) -> bool:
        stmt = select(DepositRequestModel.id).where(DepositRequestModel.tx_hash == tx_hash)
        return self.session.exec(stmt).first() is not None

    def list_for_account(
        self, model: type[RowT], account_id: UUID, limit: Optional[int] = None
    ) -> list[RowT]:
        stmt = (
            select(model)
            .where(model.account_id == account_id)
            .order_by(model.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt))

    def list_products(self) -> list[ProductModel]:
        stmt = (
            select(ProductModel)
            .where(ProductModel.is_active == True)  # noqa: E712
            .order_by(ProductModel.created_at)
        )
        return list(self.session.exec(stmt))

    # Audit trail --------------------------------------------------------
    def append_audit(
        self,
        *,
        entity_type: str,
        entity_id: UUID,
        action: str,
        account_number: Optional[str] = None,
        amount: Optional[int] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> AuditEventModel:
        return self.add(
            AuditEventModel(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                account_number=account_number,
                amount=amount,
                from_status=from_status,
                to_status=to_status,
                detail=detail,
            )
        )

    def list_audit(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        account_number: Optional[str] = None,
    ) -> list[AuditEventModel]:
        stmt = select(AuditEventModel)
        if entity_type is not None:
            stmt = stmt.where(AuditEventModel.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditEventModel.entity_id == entity_id)
        if account_number is not None:
            stmt = stmt.where(AuditEventModel.account_number == account_number)
        return list(self.session.exec(stmt.order_by(AuditEventModel.ts)))

    # Idempotency store --------------------------------------------------
    def fetch_idempotency(
        self, route: str, key: str, not_before: datetime
    ) -> Optional[IdempotencyRecordModel]:
        self.session.connection().execute(
            delete(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.route == route)
            .where(IdempotencyRecordModel.key == key)
            .where(IdempotencyRecordModel.created_at < not_before)
        )
        stmt = (
            select(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.route == route)
            .where(IdempotencyRecordModel.key == key)
        )
        return self.session.exec(stmt).first()

    def save_idempotency(
        self,
        *,
        route: str,
        key: str,
        signature: str,
        payload: str,
    ) -> None:
        record = IdempotencyRecordModel(
            route=route,
            key=key,
            request_signature=signature,
            response_payload=payload,
        )
        self.session.add(record)
