import logging
import random
from typing import Optional
from uuid import UUID, uuid4

from .config import Settings, SettingsRegistry, get_settings
from .errors import (
    AccountNotFoundError,
    InvalidStateTransitionError,
    ValidationError,
)
from .ledger import LedgerStore
from .models import (
    Account,
    AccountApproval,
    BalanceField,
    LedgerHistoryResponse,
    Transaction,
    TransactionType,
    USERS,
)
from .referrals import ReferralWalker

logger = logging.getLogger(__name__)


class AccountRegistry:
    """Registration, approval and administrative changes to accounts."""

    def __init__(
        self,
        ledger: LedgerStore,
        walker: ReferralWalker,
        registry: SettingsRegistry,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.store = ledger.store
        self.walker = walker
        self.registry = registry
        self.settings = settings or get_settings()

    def generate_referral_code(self) -> str:
        upper = 10 ** self.settings.REFERRAL_CODE_DIGITS
        while True:
            code = f"{self.settings.REFERRAL_CODE_PREFIX}{random.randrange(upper):0{self.settings.REFERRAL_CODE_DIGITS}d}"
            if self.store.find_one(USERS, {"referral_code": code}) is None:
                return code

    def register(self, username: str, referral_code_friend: Optional[str] = None) -> Account:
        username = (username or "").strip().lower()
        if not username:
            raise ValidationError("Username is required")
        if self.store.find_one(USERS, {"username": username}) is not None:
            raise ValidationError(f"Username {username} is already taken")
        referral_code_friend = (referral_code_friend or "").strip() or self.settings.UNSET_REFERRAL_CODE

        work = self.ledger.begin()
        account = Account(
            id=uuid4(),
            username=username,
            referral_code=self.generate_referral_code(),
            referral_code_friend=referral_code_friend,
            created_at=work.now,
        )
        work.create(USERS, account.model_dump(), account.id)
        work.commit()
        logger.info("Registered %s with referral code %s", username, account.referral_code)

        if self.registry.auto_approve_users:
            return self.approve(account.id).account
        return self.get_account(account.id)

    def approve(self, user_id: UUID) -> AccountApproval:
        work = self.ledger.begin()
        account = work.account(user_id)
        if account.approved:
            raise InvalidStateTransitionError(f"Account {account.username} is already approved")
        work.set_account_fields(user_id, approved=True)
        referral = self.walker.walk(work, user_id, account.referral_code_friend)
        work.commit()
        logger.info(
            "Approved %s, referral bonuses paid to %s accounts",
            account.username, len(referral.credited),
        )
        return AccountApproval(account=self.get_account(user_id), referral=referral)

    def set_disabled(self, user_id: UUID, disabled: bool) -> Account:
        work = self.ledger.begin()
        work.set_account_fields(user_id, disabled=disabled)
        work.commit()
        logger.info("Account %s %s", user_id, "disabled" if disabled else "enabled")
        return self.get_account(user_id)

    def reset_vip(self, user_id: UUID) -> Account:
        work = self.ledger.begin()
        work.set_account_fields(user_id, vip_level=0)
        work.commit()
        logger.info("VIP level of %s reset", user_id)
        return self.get_account(user_id)

    def set_balance(self, user_id: UUID, field: BalanceField, value: int) -> Optional[Transaction]:
        if value < 0:
            raise ValidationError(f"{field.value.capitalize()} cannot be negative")
        work = self.ledger.begin()
        current = work.account(user_id).balance(field)
        difference = value - current
        if difference == 0:
            return None
        entry = work.adjust(
            user_id, field, difference, TransactionType.admin_update(field),
            f"Admin updated {field.value} from {current} to {value}",
            metadata={"previous": current, "new": value},
        )
        work.commit()
        logger.info("Admin set %s of %s to %s (%+d)", field.value, user_id, value, difference)
        return entry

    def delete(self, user_id: UUID) -> Transaction:
        account = self.get_account(user_id)
        work = self.ledger.begin()
        entry = work.log(
            user_id, TransactionType.USER_DELETED,
            f"Account {account.username} deleted",
            balance_after=account.snapshot(),
            username=account.username,
        )
        work.delete(USERS, user_id, expected_version=account.version)
        work.commit()
        logger.info("Deleted account %s", account.username)
        return entry

    def get_account(self, user_id: UUID) -> Account:
        return self.ledger.get_account(user_id)

    def find_by_referral_code(self, referral_code: str) -> Account:
        account = self.walker.find_by_code(referral_code)
        if account is None:
            raise AccountNotFoundError(f"No account with referral code {referral_code}")
        return account

    def find_by_username(self, username: str) -> Account:
        doc = self.store.find_one(USERS, {"username": (username or "").strip().lower()})
        if doc is None:
            raise AccountNotFoundError(f"Account {username} not found")
        return Account(**doc)

    def list_accounts(self, approved: Optional[bool] = None) -> list[Account]:
        filters = {} if approved is None else {"approved": approved}
        docs = self.store.query(USERS, filters, order_by="created_at", descending=True)
        return [Account(**doc) for doc in docs]

    def get_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.ledger.get_ledger_history(user_id, limit, offset)
