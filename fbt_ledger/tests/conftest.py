from typing import Optional

import pytest

from fbt_ledger.models import Account, BalanceField
from fbt_ledger.service import LedgerService


@pytest.fixture
def service() -> LedgerService:
    return LedgerService()


@pytest.fixture
def make_account(service):
    """Register an account, optionally approve it, and set its balances."""

    def _make(
        username: str,
        referral_code_friend: Optional[str] = None,
        points: int = 0,
        cash: int = 0,
        approved: bool = True,
    ) -> Account:
        account = service.accounts.register(username, referral_code_friend)
        if approved and not account.approved:
            service.accounts.approve(account.id)
        if points:
            service.accounts.set_balance(account.id, BalanceField.POINTS, points)
        if cash:
            service.accounts.set_balance(account.id, BalanceField.CASH, cash)
        return service.accounts.get_account(account.id)

    return _make


@pytest.fixture
def chain(service, make_account):
    """Six unapproved accounts, each referred by the one before it."""
    accounts = [make_account("user0", approved=False)]
    for i in range(1, 6):
        accounts.append(make_account(
            f"user{i}", referral_code_friend=accounts[-1].referral_code, approved=False,
        ))
    return accounts
