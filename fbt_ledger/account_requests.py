import logging
from typing import Optional
from uuid import UUID

from .config import Settings, get_settings
from .errors import InvalidAmountError, ValidationError
from .ledger import LedgerBatch, LedgerStore
from .models import (
    ApprovalRequest,
    BalanceField,
    RequestDecision,
    RequestType,
    TransactionType,
)
from .workflow import ACCOUNT_DELETED, RequestWorkflow

logger = logging.getLogger(__name__)


class AccountRequestEngine:
    """Withdrawals, loans and VIP upgrades."""

    def __init__(self, ledger: LedgerStore, workflow: RequestWorkflow, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.workflow = workflow
        self.settings = settings or get_settings()

    def request_withdrawal(self, user_id: UUID, amount: int) -> RequestDecision:
        if amount <= 0:
            raise InvalidAmountError("Withdrawal amount must be greater than 0")
        work = self.ledger.begin()
        account = work.active_account(user_id)
        request = self.workflow.open(work, RequestType.WITHDRAWAL, account, amount=amount)
        entry = work.adjust(
            user_id, BalanceField.CASH, -amount, TransactionType.WITHDRAWAL_REQUESTED,
            f"Withdrawal of {amount} cash requested",
            metadata={"request_id": str(request.id)},
        )
        work.commit()
        logger.info("%s requested withdrawal of %s cash (%s)", account.username, amount, request.id)
        return RequestDecision(request=request, entries=[entry], message="Withdrawal request submitted")

    def approve_withdrawal(self, request_id: UUID, fee: int = 0) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.WITHDRAWAL)
        if not 0 <= fee <= request.amount:
            raise ValidationError(f"Fee must be between 0 and {request.amount}")
        work = self.ledger.begin()
        approved = self.workflow.approve(work, request, fee=fee)
        net = request.amount - fee
        entry = work.log(
            request.user_id, TransactionType.WITHDRAWAL_APPROVED,
            f"Withdrawal of {request.amount} cash approved: {net} paid out, {fee} fee",
            metadata={"request_id": str(request.id), "fee": fee, "net": net},
            username=request.username,
        )
        work.commit()
        logger.info("Withdrawal %s approved with fee %s", request.id, fee)
        return RequestDecision(request=approved, entries=[entry], message="Withdrawal approved")

    def decline_withdrawal(self, request_id: UUID, reason: Optional[str] = None) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.WITHDRAWAL)
        work = self.ledger.begin()
        declined = self.workflow.decline(work, request, reason)
        entry = work.adjust_if_present(
            request.user_id, BalanceField.CASH, request.amount, TransactionType.WITHDRAWAL_DECLINED,
            f"Withdrawal declined: {request.amount} cash returned",
            metadata={"request_id": str(request.id)},
        )
        work.commit()
        logger.info("Withdrawal %s declined, %s cash refunded", request.id, request.amount)
        return RequestDecision(
            request=declined, entries=[entry] if entry else [], message="Withdrawal declined",
        )

    def request_loan(self, user_id: UUID, amount: int) -> RequestDecision:
        if amount <= 0:
            raise InvalidAmountError("Loan amount must be greater than 0")
        work = self.ledger.begin()
        account = work.active_account(user_id)
        request = self.workflow.open(work, RequestType.LOAN, account, amount=amount)
        work.commit()
        logger.info("%s requested a loan of %s points (%s)", account.username, amount, request.id)
        return RequestDecision(request=request, message="Loan request submitted")

    def approve_loan(self, request_id: UUID) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.LOAN)
        work = self.ledger.begin()
        if not work.has_account(request.user_id):
            return self._decline_deleted(work, request, "Loan")
        approved = self.workflow.approve(work, request)
        entry = work.adjust(
            request.user_id, BalanceField.POINTS, request.amount, TransactionType.LOAN_APPROVED,
            f"Loan of {request.amount} points approved",
            metadata={"request_id": str(request.id)},
        )
        work.commit()
        logger.info("Loan %s approved, %s points credited", request.id, request.amount)
        return RequestDecision(request=approved, entries=[entry], message="Loan approved")

    def decline_loan(self, request_id: UUID, reason: Optional[str] = None) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.LOAN)
        work = self.ledger.begin()
        declined = self.workflow.decline(work, request, reason)
        work.commit()
        logger.info("Loan %s declined", request.id)
        return RequestDecision(request=declined, message="Loan declined")

    def request_upgrade(self, user_id: UUID, target_level: int) -> RequestDecision:
        work = self.ledger.begin()
        account = work.active_account(user_id)
        if not account.vip_level < target_level <= self.settings.MAX_VIP_LEVEL:
            raise ValidationError(
                f"Target level must be above {account.vip_level} and at most {self.settings.MAX_VIP_LEVEL}"
            )
        request = self.workflow.open(
            work, RequestType.VIP_UPGRADE, account,
            current_level=account.vip_level,
            target_level=target_level,
        )
        work.commit()
        logger.info("%s requested upgrade to level %s (%s)", account.username, target_level, request.id)
        return RequestDecision(request=request, message="Upgrade request submitted")

    def approve_upgrade(self, request_id: UUID) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.VIP_UPGRADE)
        work = self.ledger.begin()
        if not work.has_account(request.user_id):
            return self._decline_deleted(work, request, "Upgrade")
        account = work.account(request.user_id)
        if account.vip_level >= request.target_level:
            reason = f"Already at level {account.vip_level}"
            declined = self.workflow.decline(work, request, reason)
            work.commit()
            logger.warning(
                "Upgrade %s auto-declined: %s is at level %s, requested %s",
                request.id, account.username, account.vip_level, request.target_level,
            )
            return RequestDecision(request=declined, message=f"Upgrade declined: {reason}")
        approved = self.workflow.approve(work, request)
        work.set_account_fields(request.user_id, vip_level=request.target_level)
        work.commit()
        logger.info("Upgrade %s approved, %s is now level %s", request.id, request.username, request.target_level)
        return RequestDecision(request=approved, message="Upgrade approved")

    def decline_upgrade(self, request_id: UUID, reason: Optional[str] = None) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.VIP_UPGRADE)
        work = self.ledger.begin()
        declined = self.workflow.decline(work, request, reason)
        work.commit()
        logger.info("Upgrade %s declined", request.id)
        return RequestDecision(request=declined, message="Upgrade declined")

    def _decline_deleted(self, work: LedgerBatch, request: ApprovalRequest, kind: str) -> RequestDecision:
        declined = self.workflow.decline(work, request, ACCOUNT_DELETED)
        work.commit()
        logger.warning("%s %s auto-declined: account %s no longer exists", kind, request.id, request.user_id)
        return RequestDecision(request=declined, message=f"{kind} declined: {ACCOUNT_DELETED}")
