from decimal import Decimal

import pytest
from pydantic import ValidationError

from ..core.config import Settings
from ..core.errors import (
    AccountNotFoundError,
    DuplicateContactError,
    InvalidCredentialsError,
    ReferrerNotFoundError,
)
from ..models import AccountCreate
from ..services import AccountService


def _payload(username: str, **extra) -> AccountCreate:
    return AccountCreate(username=username, password="s3cret-pass", **extra)


def test_register_assigns_unique_numbers_and_zero_balances(accounts):
    first = accounts.register(_payload("first"))
    second = accounts.register(_payload("second", referrer_account_number=first.account_number))

    assert first.account_number != second.account_number
    assert first.account_number.isdigit() and len(first.account_number) == 10
    assert second.referrer_account_number == first.account_number
    for balance in (second.balance, second.withdrawal_amount, second.direct_business):
        assert balance == Decimal("0.00")


def test_register_rejects_taken_username_or_mobile(accounts):
    accounts.register(_payload("taken", mobile="5550123"))

    with pytest.raises(DuplicateContactError):
        accounts.register(_payload("taken"))
    with pytest.raises(DuplicateContactError):
        accounts.register(_payload("other", mobile="5550123"))


def test_register_requires_referrer_when_configured(session):
    service = AccountService(session, settings=Settings(require_referrer=True))

    with pytest.raises(ReferrerNotFoundError):
        service.register(_payload("lonely"))


def test_audit_records_registration(accounts, ledger):
    created = accounts.register(_payload("audited"))

    events = ledger.list_audit_events(account_number=created.account_number)

    assert [(e.entity_type, e.action) for e in events] == [("account", "created")]


def test_authenticate_and_change_password(accounts):
    created = accounts.register(_payload("walt"))

    assert accounts.authenticate("walt", "s3cret-pass").id == created.id
    with pytest.raises(InvalidCredentialsError):
        accounts.authenticate("walt", "wrong-pass")
    with pytest.raises(InvalidCredentialsError):
        accounts.authenticate("nobody", "s3cret-pass")

    with pytest.raises(InvalidCredentialsError):
        accounts.change_password(created.account_number, "wrong-pass", "n3w-secret")
    accounts.change_password(created.account_number, "s3cret-pass", "n3w-secret")

    assert accounts.authenticate("walt", "n3w-secret").id == created.id
    with pytest.raises(InvalidCredentialsError):
        accounts.authenticate("walt", "s3cret-pass")


def test_change_password_for_unknown_account(accounts):
    with pytest.raises(AccountNotFoundError):
        accounts.change_password("0000000000", "s3cret-pass", "n3w-secret")


def test_username_is_trimmed_before_validation(accounts):
    with pytest.raises(ValidationError):
        _payload("    ")

    created = accounts.register(_payload("  trimmed  "))

    assert created.username == "trimmed"
    assert accounts.authenticate("trimmed", "s3cret-pass").id == created.id
