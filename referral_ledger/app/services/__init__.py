from .accounts import AccountService
from .ledger import LedgerService
from .referrals import ReferralAccumulator
from .repository import LedgerRepository

__all__ = ["AccountService", "LedgerRepository", "LedgerService", "ReferralAccumulator"]
