import logging
from typing import Optional
from uuid import UUID

from .config import Settings, SettingsRegistry, get_settings
from .errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    SelfTransferError,
    ValidationError,
)
from .ledger import LedgerStore
from .models import (
    Account,
    BalanceField,
    RequestDecision,
    RequestType,
    TransferResponse,
    USERS,
)
from .workflow import ACCOUNT_DELETED, RequestWorkflow

logger = logging.getLogger(__name__)

INSUFFICIENT_POINTS = "Insufficient points"


class TransferEngine:
    def __init__(
        self,
        ledger: LedgerStore,
        workflow: RequestWorkflow,
        registry: SettingsRegistry,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.workflow = workflow
        self.registry = registry
        self.settings = settings or get_settings()

    def resolve_recipient(self, identifier: str) -> Account:
        """Find an account by referral code (``FBT...``) or by username, ignoring case."""
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValidationError("Recipient username or referral code is required")
        if identifier.startswith(self.settings.REFERRAL_CODE_PREFIX):
            filters = {"referral_code": identifier}
        else:
            filters = {"username": identifier.lower()}
        doc = self.ledger.store.find_one(USERS, filters)
        if doc is None:
            raise AccountNotFoundError(f"Recipient {identifier} not found")
        return Account(**doc)

    def request_transfer(
        self,
        sender_id: UUID,
        recipient_identifier: str,
        amount: int,
        direct: bool = False,
    ) -> TransferResponse:
        if amount <= 0:
            raise InvalidAmountError("Transfer amount must be greater than 0")

        work = self.ledger.begin()
        sender = work.active_account(sender_id)
        if sender.points < amount:
            raise InsufficientFundsError("Insufficient points for transfer")
        recipient = self.resolve_recipient(recipient_identifier)
        if recipient.id == sender.id:
            raise SelfTransferError("Cannot transfer points to yourself")

        if direct and self.registry.allow_direct_transfers:
            entries = self.ledger.stage_transfer(work, sender.id, recipient.id, BalanceField.POINTS, amount)
            work.commit()
            logger.info("Direct transfer of %s points from %s to %s", amount, sender.username, recipient.username)
            return TransferResponse(entries=list(entries), message="Transfer completed")

        request = self.workflow.open(
            work, RequestType.POINT_TRANSFER, sender,
            amount=amount,
            recipient_id=recipient.id,
            recipient_username=recipient.username,
            direct_transfer=direct,
        )
        work.commit()
        logger.info("Transfer request %s: %s points from %s to %s", request.id, amount, sender.username, recipient.username)
        return TransferResponse(request=request, message="Transfer request submitted for approval")

    def approve_transfer(self, request_id: UUID) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.POINT_TRANSFER)
        work = self.ledger.begin()
        if not (work.has_account(request.user_id) and work.has_account(request.recipient_id)):
            declined = self.workflow.decline(work, request, ACCOUNT_DELETED)
            work.commit()
            logger.warning("Transfer request %s auto-declined: sender or recipient no longer exists", request.id)
            return RequestDecision(request=declined, message=f"Transfer request declined: {ACCOUNT_DELETED}")
        sender = work.account(request.user_id)

        # Nothing was reserved when the request was opened; the balance may
        # have been spent elsewhere since.
        if sender.points < request.amount:
            declined = self.workflow.decline(work, request, INSUFFICIENT_POINTS)
            work.commit()
            logger.warning(
                "Transfer request %s auto-declined: %s has %s points, needs %s",
                request.id, sender.username, sender.points, request.amount,
            )
            return RequestDecision(request=declined, message=f"Transfer request declined: {INSUFFICIENT_POINTS}")

        entries = self.ledger.stage_transfer(
            work, request.user_id, request.recipient_id, BalanceField.POINTS, request.amount,
            metadata={"request_id": str(request.id)},
        )
        approved = self.workflow.approve(work, request)
        work.commit()
        logger.info("Transfer request %s approved", request.id)
        return RequestDecision(request=approved, entries=list(entries), message="Transfer request approved")

    def decline_transfer(self, request_id: UUID, reason: Optional[str] = None) -> RequestDecision:
        request = self.workflow.get(request_id, RequestType.POINT_TRANSFER)
        work = self.ledger.begin()
        declined = self.workflow.decline(work, request, reason)
        work.commit()
        logger.info("Transfer request %s declined", request.id)
        return RequestDecision(request=declined, message="Transfer request declined")
