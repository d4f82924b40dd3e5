from fastapi import Depends
from sqlmodel import Session

from ..services import AccountService, LedgerRepository, LedgerService
from .config import get_settings
from .db import get_session

def get_ledger_service(session: Session = Depends(get_session)) -> LedgerService:
    repository = LedgerRepository(session)
    return LedgerService(session, repository, get_settings())

def get_account_service(session: Session = Depends(get_session)) -> AccountService:
    repository = LedgerRepository(session)
    return AccountService(session, repository, get_settings())
