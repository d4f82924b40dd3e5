from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import (
    AccountNotFoundError,
    DuplicateIdempotencyKeyError,
    InvalidFieldError,
    LedgerError,
    StorageUnavailableError,
)
from ..core.money import from_minor_units
from ..models import AccountModel, AccountResponse
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


class ServiceBase:
    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------
    @contextmanager
    def _unit_of_work(
        self, operation: str, conflict: Optional[LedgerError] = None
    ) -> Iterator[None]:
        """Commit the enclosed block as one transaction or roll all of it back.

        ``conflict`` is raised in place of a uniqueness violation surfacing
        from the store (two writers racing past the same pre-check).
        """
        try:
            yield
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if conflict is not None:
                raise conflict from exc
            logger.exception("storage.integrity_error", extra={"operation": operation})
            raise StorageUnavailableError(f"{operation} failed: storage rejected the write") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("storage.unavailable", extra={"operation": operation})
            raise StorageUnavailableError(f"{operation} failed: storage unavailable") from exc
        except Exception:
            self.session.rollback()
            raise

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _json_default(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (UUID, Decimal)):
            return str(value)
        return value

    def _serialize(self, payload: Any) -> str:
        if hasattr(payload, "model_dump"):
            data = payload.model_dump(mode="json")
        else:
            data = payload
        return json.dumps(data, default=self._json_default, sort_keys=True)

    def _encode_signature(self, signature: Tuple[Any, ...]) -> str:
        return json.dumps(signature, default=self._json_default, sort_keys=True)

    def _check_idempotency(
        self,
        route: str,
        idempotency_key: str,
        request_signature: Tuple[Any, ...],
    ) -> Optional[str]:
        not_before = datetime.now(UTC) - timedelta(
            hours=self.settings.idempotency_retention_hours
        )
        record = self.repository.fetch_idempotency(route, idempotency_key, not_before)
        if record is None:
            return None

        signature = self._encode_signature(request_signature)
        if record.request_signature != signature:
            raise DuplicateIdempotencyKeyError(
                "Idempotency key was previously used with different parameters"
            )

        logger.info(
            f"idempotent.{route}.hit",
            extra={"route": route, "idempotency_key": idempotency_key},
        )
        return record.response_payload

    def _record_idempotent(
        self,
        route: str,
        idempotency_key: str,
        request_signature: Tuple[Any, ...],
        response_payload: Any,
    ) -> None:
        signature = self._encode_signature(request_signature)
        serialized_payload = self._serialize(response_payload)
        self.repository.save_idempotency(
            route=route,
            key=idempotency_key,
            signature=signature,
            payload=serialized_payload,
        )

    def _required_text(self, value: str, field: str) -> str:
        value = value.strip()
        if not value:
            raise InvalidFieldError(f"{field} must not be blank")
        return value

    def _money(self, minor: Optional[int]) -> Optional[Decimal]:
        if minor is None:
            return None
        return from_minor_units(minor, self.settings.money_places)

    def _get_account(self, account_number: str, *, for_update: bool = False) -> AccountModel:
        account = self.repository.get_account_by_number(account_number, for_update=for_update)
        if account is None or not account.is_active:
            raise AccountNotFoundError(f"Account {account_number} not found")
        return account

    def _account_to_response(self, account: AccountModel) -> AccountResponse:
        return AccountResponse(
            id=account.id,
            account_number=account.account_number,
            username=account.username,
            mobile=account.mobile,
            referrer_account_number=account.referrer_account_number,
            balance=self._money(account.balance),
            withdrawal_amount=self._money(account.withdrawal_amount),
            direct_business=self._money(account.direct_business),
            created_at=account.created_at,
        )

    def get_account(self, account_number: str) -> AccountResponse:
        with self._unit_of_work("get_account"):
            return self._account_to_response(self._get_account(account_number))
