import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    InvalidAmountError,
    InvalidStateTransitionError,
    InvestmentNotFoundError,
    ValidationError,
)
from .ledger import LedgerStore
from .models import (
    BalanceField,
    Investment,
    InvestmentResponse,
    InvestmentStatus,
    TransactionType,
    INVESTMENTS,
)

logger = logging.getLogger(__name__)


def payout_for(amount: int, interest_rate: Decimal) -> int:
    total = Decimal(amount) * (1 + Decimal(interest_rate) / 100)
    return int(total.to_integral_value(rounding=ROUND_FLOOR))


class InvestmentEngine:
    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger
        self.store = ledger.store

    def get_investment(self, investment_id: UUID) -> Investment:
        doc = self.store.get(INVESTMENTS, investment_id)
        if doc is None:
            raise InvestmentNotFoundError(f"Investment {investment_id} not found")
        return Investment(**doc)

    def list_investments(
        self,
        status: Optional[InvestmentStatus] = None,
        user_id: Optional[UUID] = None,
    ) -> list[Investment]:
        filters = {}
        if status is not None:
            filters["status"] = status
        if user_id is not None:
            filters["user_id"] = user_id
        docs = self.store.query(INVESTMENTS, filters, order_by="created_at", descending=True)
        return [Investment(**doc) for doc in docs]

    def create_investment(self, user_id: UUID, amount: int) -> InvestmentResponse:
        if amount <= 0:
            raise InvalidAmountError("Investment amount must be greater than 0")

        work = self.ledger.begin()
        account = work.active_account(user_id)
        investment = Investment(
            id=uuid4(),
            user_id=user_id,
            username=account.username,
            amount=amount,
            created_at=work.now,
        )
        entry = work.adjust(
            user_id, BalanceField.POINTS, -amount, TransactionType.INVESTMENT_CREATED,
            f"Investment of {amount} points created",
            metadata={"investment_id": str(investment.id)},
        )
        work.create(INVESTMENTS, investment.model_dump(), investment.id)
        work.commit()
        logger.info("%s invested %s points (%s)", account.username, amount, investment.id)
        return InvestmentResponse(
            investment=investment,
            ledger_entry=entry,
            message="Investment submitted for approval",
        )

    def approve_investment(
        self,
        investment_id: UUID,
        interest_rate: Decimal,
        release_date: datetime,
        admin_notes: Optional[str] = None,
    ) -> InvestmentResponse:
        interest_rate = Decimal(interest_rate)
        if interest_rate <= 0:
            raise ValidationError("Interest rate must be greater than 0")
        if release_date.tzinfo is None:
            release_date = release_date.replace(tzinfo=timezone.utc)

        investment = self.get_investment(investment_id)
        if not investment.can_approve():
            raise InvalidStateTransitionError(
                f"Cannot approve investment in {investment.status.value} status"
            )
        work = self.ledger.begin()
        if release_date <= work.now:
            raise ValidationError("Release date must be in the future")

        changes = {
            "status": InvestmentStatus.APPROVED,
            "interest_rate": interest_rate,
            "release_date": release_date,
            "admin_notes": admin_notes,
            "approved_at": work.now,
        }
        work.update(INVESTMENTS, investment.id, changes, expected_version=investment.version)
        entry = work.log(
            investment.user_id, TransactionType.INVESTMENT_APPROVED,
            f"Investment of {investment.amount} points approved at {interest_rate}% "
            f"until {release_date.date().isoformat()}",
            metadata={"investment_id": str(investment.id), "interest_rate": str(interest_rate)},
            username=investment.username,
        )
        work.commit()
        logger.info("Investment %s approved at %s%%", investment.id, interest_rate)
        return InvestmentResponse(
            investment=investment.model_copy(update=changes),
            ledger_entry=entry,
            message="Investment approved",
        )

    def decline_investment(self, investment_id: UUID, reason: Optional[str] = None) -> InvestmentResponse:
        investment = self.get_investment(investment_id)
        if not investment.can_decline():
            raise InvalidStateTransitionError(
                f"Cannot decline investment in {investment.status.value} status"
            )
        work = self.ledger.begin()
        changes = {"status": InvestmentStatus.DECLINED, "declined_at": work.now}
        if reason:
            changes["admin_notes"] = reason
        work.update(INVESTMENTS, investment.id, changes, expected_version=investment.version)
        entry = work.adjust_if_present(
            investment.user_id, BalanceField.POINTS, investment.amount, TransactionType.INVESTMENT_DECLINED,
            f"Investment declined: {investment.amount} points returned",
            metadata={"investment_id": str(investment.id)},
        )
        work.commit()
        logger.info("Investment %s declined, %s points refunded", investment.id, investment.amount)
        return InvestmentResponse(
            investment=investment.model_copy(update=changes),
            ledger_entry=entry,
            message="Investment declined",
        )

    def complete_investment(self, investment_id: UUID) -> InvestmentResponse:
        investment = self.get_investment(investment_id)
        if not investment.can_complete():
            raise InvalidStateTransitionError(
                f"Cannot complete investment in {investment.status.value} status"
            )
        payout = payout_for(investment.amount, investment.interest_rate)
        profit = payout - investment.amount

        work = self.ledger.begin()
        changes = {"status": InvestmentStatus.COMPLETED, "completed_at": work.now}
        work.update(INVESTMENTS, investment.id, changes, expected_version=investment.version)
        entry = work.adjust_if_present(
            investment.user_id, BalanceField.POINTS, payout, TransactionType.INVESTMENT_COMPLETED,
            f"Investment completed: {payout} points paid ({profit} profit)",
            metadata={"investment_id": str(investment.id), "profit": profit},
        )
        work.commit()
        logger.info("Investment %s completed, paid %s points", investment.id, payout)
        return InvestmentResponse(
            investment=investment.model_copy(update=changes),
            ledger_entry=entry,
            message="Investment completed",
        )
