from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ..core.config import Settings
from ..core.errors import (
    AccountNotFoundError,
    ReferralCycleError,
    ReferrerNotFoundError,
    StorageUnavailableError,
)
from ..core.money import from_minor_units, share_of
from ..models import AccountModel, ReferralNode
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


class ReferralAccumulator:
    """Walks referrer chains and credits ``direct_business`` on ancestors.

    Runs inside the caller's unit of work; it neither commits nor rolls back.
    """

    def __init__(self, repository: LedgerRepository, settings: Settings) -> None:
        self.repository = repository
        self.settings = settings

    def ancestors(self, account: AccountModel, limit: Optional[int] = None) -> list[AccountModel]:
        """Return the referrer chain above ``account``, nearest first.

        The walk stops at the first account without a referrer, at ``limit``
        hops, at ``referral_max_depth`` hops, or when a link points back into
        the chain already walked.
        """
        max_hops = self.settings.referral_max_depth
        if limit is not None:
            max_hops = min(max_hops, limit)

        chain: list[AccountModel] = []
        seen: set[UUID] = {account.id}
        current = account
        while current.referrer_account_number and len(chain) < max_hops:
            parent = self.repository.get_account_by_number(current.referrer_account_number)
            if parent is None:
                logger.warning(
                    "referral.chain.dangling",
                    extra={
                        "account_number": current.account_number,
                        "referrer_account_number": current.referrer_account_number,
                    },
                )
                break
            if parent.id in seen:
                logger.warning(
                    "referral.chain.cycle",
                    extra={"account_number": parent.account_number},
                )
                break
            seen.add(parent.id)
            chain.append(parent)
            current = parent
        if current.referrer_account_number and len(chain) >= self.settings.referral_max_depth:
            logger.warning(
                "referral.chain.depth_exceeded",
                extra={
                    "account_number": account.account_number,
                    "max_depth": self.settings.referral_max_depth,
                },
            )
        return chain

    def propagate(self, account: AccountModel, amount: int) -> list[tuple[str, int]]:
        """Credit each configured referral level with its share of ``amount``.

        Returns ``(account_number, credited_minor_units)`` per ancestor credited.
        """
        rates: list[Decimal] = list(self.settings.referral_rates)
        credited: list[tuple[str, int]] = []
        for ancestor, rate in zip(self.ancestors(account, limit=len(rates)), rates):
            commission = share_of(amount, rate)
            if commission <= 0:
                continue
            if not self.repository.apply_deltas(ancestor.id, direct_business=commission):
                raise StorageUnavailableError(
                    f"Referrer {ancestor.account_number} vanished during propagation"
                )
            self.repository.append_audit(
                entity_type="account",
                entity_id=ancestor.id,
                action="referral_credit",
                account_number=ancestor.account_number,
                amount=commission,
                detail=f"from {account.account_number}",
            )
            credited.append((ancestor.account_number, commission))
            logger.info(
                "referral.credited",
                extra={
                    "account_number": ancestor.account_number,
                    "source_account_number": account.account_number,
                    "amount": commission,
                },
            )
        return credited

    def attach_referrer(self, account: AccountModel, referrer_account_number: str) -> AccountModel:
        """Link ``account`` under a referrer, refusing links that would close a cycle."""
        referrer = self.repository.get_account_by_number(referrer_account_number)
        if referrer is None:
            raise ReferrerNotFoundError(f"Referrer {referrer_account_number} not found")
        if referrer.id == account.id:
            raise ReferralCycleError("An account cannot refer itself")
        if any(a.id == account.id for a in self.ancestors(referrer)):
            raise ReferralCycleError(
                f"Account {referrer_account_number} is referred by {account.account_number}"
            )
        account.referrer_account_number = referrer.account_number
        self.repository.add(account)
        return referrer

    # Network view -------------------------------------------------------
    def referral_tree(self, account_number: str, depth: int = 1) -> list[ReferralNode]:
        depth = max(1, min(depth, self.settings.referral_tree_max_depth))
        if self.repository.get_account_by_number(account_number) is None:
            raise AccountNotFoundError(f"Account {account_number} not found")
        return self._children(account_number, level=1, depth=depth, seen={account_number})

    def _children(
        self, account_number: str, *, level: int, depth: int, seen: set[str]
    ) -> list[ReferralNode]:
        nodes = []
        for child in self.repository.list_referrals(account_number):
            if child.account_number in seen:
                continue
            seen.add(child.account_number)
            nodes.append(
                ReferralNode(
                    account_number=child.account_number,
                    username=child.username,
                    direct_business=from_minor_units(
                        child.direct_business, self.settings.money_places
                    ),
                    level=level,
                    referrals=(
                        self._children(
                            child.account_number, level=level + 1, depth=depth, seen=seen
                        )
                        if level < depth
                        else []
                    ),
                )
            )
        return nodes
