import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from ..core.config import Settings, get_settings
from ..core.db import create_engine_for_url, get_session, init_db, set_engine
from ..main import app
from ..models import AccountCreate
from ..services import AccountService, LedgerService


@pytest.fixture
def engine(tmp_path):
    test_db = tmp_path / "test.db"
    engine = create_engine_for_url(f"sqlite:///{test_db}")
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        deposit_withdrawable_share=Decimal("0.5"),
        referral_rates=[Decimal("1")],
        single_pending_deposit=True,
    )


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def ledger(session, settings) -> LedgerService:
    return LedgerService(session, settings=settings)


@pytest.fixture
def accounts(session, settings) -> AccountService:
    return AccountService(session, settings=settings)


@pytest.fixture
def make_account(accounts):
    def _make(username: str, referrer: str | None = None) -> str:
        created = accounts.register(
            AccountCreate(
                username=username,
                password="s3cret-pass",
                referrer_account_number=referrer,
            )
        )
        return created.account_number

    return _make


@pytest.fixture
def fund(ledger):
    """Approve a deposit of ``amount``; half lands in balance, half in withdrawal_amount."""

    def _fund(account_number: str, amount: str) -> None:
        deposit = ledger.record_deposit(
            account_number,
            f"0x{uuid.uuid4().hex}",
            str(uuid.uuid4()),
            claimed_amount=Decimal(amount),
        )
        ledger.approve_deposit(deposit.id)

    return _fund


@pytest.fixture
def client(engine) -> TestClient:
    original_engine = create_engine_for_url(get_settings().database_url)
    set_engine(engine)

    def _get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override
    init_db()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    set_engine(original_engine)
