import logging
from typing import Optional
from uuid import UUID, uuid4

from .config import Settings, get_settings
from .errors import (
    BetNotFoundError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ValidationError,
)
from .ledger import LedgerBatch, LedgerStore
from .models import (
    BalanceField,
    BetStatus,
    TransactionType,
    UltraManualBet,
    Winner,
    ULTRA_MANUAL_BETS,
    WINNERS,
)

logger = logging.getLogger(__name__)

ULTRA_MANUAL_GAME = "Ultra Manual"


class UltraManualEngine:
    """Free-form bets judged by hand."""

    def __init__(self, ledger: LedgerStore, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.store = ledger.store
        self.settings = settings or get_settings()

    def place_bet(self, user_id: UUID, amount: int, note: str) -> UltraManualBet:
        if amount <= 0:
            raise InvalidAmountError("Enter a valid amount")
        note = (note or "").strip()
        if not note:
            raise ValidationError("Enter a note for your bet")
        if len(note) > self.settings.ULTRA_MANUAL_NOTE_MAX_LENGTH:
            raise ValidationError(
                f"Note must be at most {self.settings.ULTRA_MANUAL_NOTE_MAX_LENGTH} characters"
            )

        work = self.ledger.begin()
        account = work.active_account(user_id)
        bet = UltraManualBet(
            id=uuid4(),
            user_id=user_id,
            username=account.username,
            amount=amount,
            note=note,
            created_at=work.now,
        )
        work.adjust(
            user_id, BalanceField.POINTS, -amount, TransactionType.ULTRA_MANUAL_BET,
            f"Ultra manual bet: {amount} points",
            metadata={"bet_id": str(bet.id), "note": note},
        )
        work.create(ULTRA_MANUAL_BETS, bet.model_dump(), bet.id)
        work.commit()
        logger.info("%s placed ultra manual bet %s for %s points", account.username, bet.id, amount)
        return bet

    def get_bet(self, bet_id: UUID) -> UltraManualBet:
        doc = self.store.get(ULTRA_MANUAL_BETS, bet_id)
        if doc is None:
            raise BetNotFoundError(f"Bet {bet_id} not found")
        return UltraManualBet(**doc)

    def list_bets(
        self,
        status: Optional[BetStatus] = None,
        user_id: Optional[UUID] = None,
    ) -> list[UltraManualBet]:
        filters = {}
        if status is not None:
            filters["status"] = status
        if user_id is not None:
            filters["user_id"] = user_id
        docs = self.store.query(ULTRA_MANUAL_BETS, filters, order_by="created_at", descending=True)
        return [UltraManualBet(**doc) for doc in docs]

    def mark_won(self, bet_id: UUID, win_amount: int) -> UltraManualBet:
        if win_amount <= 0:
            raise InvalidAmountError("Win amount must be greater than 0")
        bet = self.get_bet(bet_id)
        work = self.ledger.begin()
        processed = self._finish(work, bet, BetStatus.WON, win_amount=win_amount)
        work.adjust_if_present(
            bet.user_id, BalanceField.POINTS, win_amount, TransactionType.ULTRA_MANUAL_WIN,
            f"Ultra manual win: {win_amount} points",
            metadata={"bet_id": str(bet.id)},
        )
        winner = Winner(
            username=bet.username,
            amount=win_amount,
            game=ULTRA_MANUAL_GAME,
            timestamp=work.now,
        )
        work.create(WINNERS, winner.model_dump())
        work.commit()
        logger.info("Ultra manual bet %s won: %s points to %s", bet.id, win_amount, bet.username)
        return processed

    def mark_lost(self, bet_id: UUID) -> UltraManualBet:
        bet = self.get_bet(bet_id)
        work = self.ledger.begin()
        processed = self._finish(work, bet, BetStatus.LOST)
        work.commit()
        logger.info("Ultra manual bet %s lost", bet.id)
        return processed

    def cancel_bet(self, bet_id: UUID) -> UltraManualBet:
        bet = self.get_bet(bet_id)
        work = self.ledger.begin()
        processed = self._finish(work, bet, BetStatus.CANCELLED)
        work.adjust_if_present(
            bet.user_id, BalanceField.POINTS, bet.amount, TransactionType.ULTRA_MANUAL_CANCELLED,
            f"Ultra manual bet cancelled: {bet.amount} points returned",
            metadata={"bet_id": str(bet.id)},
        )
        work.commit()
        logger.info("Ultra manual bet %s cancelled, %s points refunded", bet.id, bet.amount)
        return processed

    def _finish(self, work: LedgerBatch, bet: UltraManualBet, status: BetStatus, **changes) -> UltraManualBet:
        if bet.status != BetStatus.PENDING:
            raise InvalidStateTransitionError(f"Bet {bet.id} was already processed ({bet.status.value})")
        changes = dict(changes, status=status, processed_at=work.now)
        work.update(ULTRA_MANUAL_BETS, bet.id, changes, expected_version=bet.version)
        return bet.model_copy(update=changes)
