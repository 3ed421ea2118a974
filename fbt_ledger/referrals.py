import logging
from typing import Optional
from uuid import UUID

from .config import Settings, get_settings
from .ledger import LedgerBatch
from .models import Account, ReferralWalkResult, TransactionType, USERS
from .store import DocumentStore

logger = logging.getLogger(__name__)


class ReferralWalker:
    """Credits the ancestors of a newly approved account.

    Level ``n`` of the configured schedule goes to the account ``n`` hops up
    the chain of referral codes. The walk ends at the first missing code,
    unknown code, or account already visited in this walk.
    """

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def find_by_code(self, referral_code: str) -> Optional[Account]:
        doc = self.store.find_one(USERS, {"referral_code": referral_code})
        return Account(**doc) if doc else None

    def is_unset(self, referral_code: Optional[str]) -> bool:
        return not referral_code or referral_code == self.settings.UNSET_REFERRAL_CODE

    def walk(
        self,
        work: LedgerBatch,
        user_id: UUID,
        referral_code_friend: Optional[str],
        visited: Optional[set[UUID]] = None,
    ) -> ReferralWalkResult:
        result = ReferralWalkResult()
        if self.is_unset(referral_code_friend):
            logger.info("No referral code for %s, skipping referral bonuses", user_id)
            return result

        # The approved account never earns a bonus from its own approval.
        if visited is None:
            visited = set()
        visited.add(user_id)
        schedule = zip(self.settings.REFERRAL_BONUS_LEVELS, self.settings.REFERRAL_BONUS_FIELDS)
        current_code = referral_code_friend

        for level, (bonus, field) in enumerate(schedule, start=1):
            if self.is_unset(current_code):
                break
            ancestor = self.find_by_code(current_code)
            if ancestor is None:
                break
            if ancestor.id in visited:
                logger.warning(
                    "Referral cycle at level %s for %s: %s already credited",
                    level, user_id, ancestor.id,
                )
                result.stopped_by_cycle = True
                break
            visited.add(ancestor.id)

            entry = work.adjust(
                ancestor.id, field, bonus,
                TransactionType.referral_bonus(level),
                f"Referral bonus for level {level} awarded: {bonus} {field.value}",
                metadata={"level": level, "referred_user_id": str(user_id)},
            )
            work.add_referral(ancestor.id, user_id)
            result.credited.append(ancestor.id)
            result.entries.append(entry)

            current_code = work.account(ancestor.id).referral_code_friend

        return result
