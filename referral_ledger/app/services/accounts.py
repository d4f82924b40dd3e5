from __future__ import annotations

import logging
import secrets
from typing import Optional

from ..core.errors import (
    DuplicateContactError,
    InvalidCredentialsError,
    ReferrerNotFoundError,
    StorageUnavailableError,
)
from ..core.security import DUMMY_HASH, hash_password, verify_password
from ..models import AccountCreate, AccountModel, AccountResponse
from .base import ServiceBase


logger = logging.getLogger(__name__)

ACCOUNT_NUMBER_DIGITS = 10
ACCOUNT_NUMBER_ATTEMPTS = 8


class AccountService(ServiceBase):
    """Registration and credential checks. Balances start at zero and are never touched here."""

    def _new_account_number(self) -> str:
        low = 10 ** (ACCOUNT_NUMBER_DIGITS - 1)
        for _ in range(ACCOUNT_NUMBER_ATTEMPTS):
            candidate = str(low + secrets.randbelow(9 * low))
            if not self.repository.account_number_exists(candidate):
                return candidate
        raise StorageUnavailableError("Could not allocate an account number")

    def register(self, payload: AccountCreate) -> AccountResponse:
        username = self._required_text(payload.username, "username")
        mobile = payload.mobile.strip() if payload.mobile else None
        referrer_number = (payload.referrer_account_number or "").strip() or None

        with self._unit_of_work(
            "register",
            conflict=DuplicateContactError("Username or mobile number is already registered"),
        ):
            if referrer_number is None and self.settings.require_referrer:
                raise ReferrerNotFoundError("A referrer account number is required")
            if self.repository.contact_taken(username, mobile):
                raise DuplicateContactError("Username or mobile number is already registered")
            if referrer_number and not self.repository.account_number_exists(referrer_number):
                raise ReferrerNotFoundError("Invalid referrer account number")

            account = self.repository.add(
                AccountModel(
                    account_number=self._new_account_number(),
                    username=username,
                    mobile=mobile,
                    password_hash=hash_password(payload.password),
                    referrer_account_number=referrer_number,
                )
            )
            self.repository.append_audit(
                entity_type="account",
                entity_id=account.id,
                action="created",
                account_number=account.account_number,
                detail=f"referrer {referrer_number}" if referrer_number else None,
            )
            response = self._account_to_response(account)

        logger.info(
            "account.created",
            extra={
                "account_id": str(response.id),
                "account_number": response.account_number,
                "referrer_account_number": referrer_number,
            },
        )
        return response

    def authenticate(self, username: str, password: str) -> AccountResponse:
        with self._unit_of_work("authenticate"):
            account: Optional[AccountModel] = self.repository.get_account_by_username(
                username.strip()
            )
            if account is None:
                verify_password(password, DUMMY_HASH)
                raise InvalidCredentialsError("Invalid username or password")
            if not verify_password(password, account.password_hash) or not account.is_active:
                raise InvalidCredentialsError("Invalid username or password")
            return self._account_to_response(account)

    def change_password(
        self, account_number: str, current_password: str, new_password: str
    ) -> AccountResponse:
        with self._unit_of_work("change_password"):
            account = self._get_account(account_number)
            if not verify_password(current_password, account.password_hash):
                raise InvalidCredentialsError("Current password is incorrect")
            account.password_hash = hash_password(new_password)
            self.repository.add(account)
            self.repository.append_audit(
                entity_type="account",
                entity_id=account.id,
                action="password_changed",
                account_number=account.account_number,
            )
            response = self._account_to_response(account)

        logger.info("account.password_changed", extra={"account_number": account_number})
        return response
