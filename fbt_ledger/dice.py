import logging
from typing import Optional
from uuid import UUID, uuid4

from .config import Settings, get_settings
from .errors import (
    InvalidAmountError,
    InvalidStateTransitionError,
    RoundNotFoundError,
    ValidationError,
)
from .ledger import LedgerStore
from .models import (
    BalanceField,
    BetStatus,
    DiceBet,
    DiceColor,
    DiceRound,
    DICE_BETS,
    DICE_NUMBERS,
    DICE_ROUND_LOCKS,
    DICE_ROUNDS,
    OPEN_ROUND_LOCK_ID,
    RoundSettlement,
    RoundStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


class DiceSettlementEngine:
    def __init__(self, ledger: LedgerStore, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.store = ledger.store
        self.settings = settings or get_settings()

    def create_round(self) -> DiceRound:
        if self.current_round() is not None:
            raise InvalidStateTransitionError("A dice round is already open")
        work = self.ledger.begin()
        dice_round = DiceRound(id=uuid4(), created_at=work.now)
        work.create(DICE_ROUNDS, dice_round.model_dump(), dice_round.id)
        # A second open round collides on this id and the batch is refused.
        work.create(DICE_ROUND_LOCKS, {"round_id": dice_round.id}, OPEN_ROUND_LOCK_ID)
        work.commit()
        logger.info("Opened dice round %s", dice_round.id)
        return self.get_round(dice_round.id)

    def current_round(self) -> Optional[DiceRound]:
        docs = self.store.query(
            DICE_ROUNDS, {"status": RoundStatus.OPEN},
            order_by="created_at", descending=True, limit=1,
        )
        return DiceRound(**docs[0]) if docs else None

    def get_round(self, round_id: UUID) -> DiceRound:
        doc = self.store.get(DICE_ROUNDS, round_id)
        if doc is None:
            raise RoundNotFoundError(f"Dice round {round_id} not found")
        return DiceRound(**doc)

    def list_rounds(self, limit: int = 10) -> list[DiceRound]:
        docs = self.store.query(DICE_ROUNDS, order_by="created_at", descending=True, limit=limit)
        return [DiceRound(**doc) for doc in docs]

    def list_bets(
        self,
        round_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        status: Optional[BetStatus] = None,
    ) -> list[DiceBet]:
        filters = {}
        if round_id is not None:
            filters["round_id"] = round_id
        if user_id is not None:
            filters["user_id"] = user_id
        if status is not None:
            filters["status"] = status
        docs = self.store.query(DICE_BETS, filters, order_by="created_at", descending=True)
        return [DiceBet(**doc) for doc in docs]

    def place_bet(self, user_id: UUID, round_id: UUID, chosen_number: int, amount: int) -> DiceBet:
        if amount <= 0:
            raise InvalidAmountError("Enter a valid amount")
        if chosen_number not in DICE_NUMBERS:
            raise ValidationError(f"Chosen number must be one of {list(DICE_NUMBERS)}")
        dice_round = self.get_round(round_id)
        if dice_round.status != RoundStatus.OPEN:
            raise InvalidStateTransitionError(f"Dice round {round_id} is closed")
        taken = self.store.find_one(DICE_BETS, {
            "round_id": round_id, "user_id": user_id, "chosen_number": chosen_number,
        })
        if taken is not None:
            raise ValidationError(f"Already bet on {chosen_number} in this round")

        work = self.ledger.begin()
        account = work.active_account(user_id)
        bet = DiceBet(
            id=uuid4(),
            round_id=round_id,
            user_id=user_id,
            username=account.username,
            chosen_number=chosen_number,
            amount=amount,
            created_at=work.now,
        )
        work.adjust(
            user_id, BalanceField.POINTS, -amount, TransactionType.DICE_BET,
            f"Dice bet on {chosen_number}: {amount} points",
            metadata={"round_id": str(round_id), "bet_id": str(bet.id)},
        )
        work.create(DICE_BETS, bet.model_dump(), bet.id)
        # Bumps the round version so a settlement read before this bet conflicts.
        work.update(DICE_ROUNDS, round_id, {"status": RoundStatus.OPEN}, expected_version=dice_round.version)
        work.commit()
        logger.info("%s bet %s points on %s in round %s", account.username, amount, chosen_number, round_id)
        return bet

    def payout_for(self, amount: int, color: DiceColor) -> tuple[int, Optional[BalanceField]]:
        tens = amount // 10
        if color == DiceColor.WHITE:
            return tens * self.settings.DICE_WHITE_CASH_PER_TEN, BalanceField.CASH
        if color in (DiceColor.RED, DiceColor.GREEN):
            return tens * self.settings.DICE_COLOR_POINTS_PER_TEN, BalanceField.POINTS
        return 0, None

    def normalize_colors(self, number_colors: dict) -> dict[int, DiceColor]:
        unknown = set(number_colors) - set(DICE_NUMBERS)
        if unknown:
            raise ValidationError(f"Unknown dice numbers: {sorted(unknown)}")
        colors = {n: DiceColor(number_colors.get(n, DiceColor.NONE)) for n in DICE_NUMBERS}
        if all(color == DiceColor.NONE for color in colors.values()):
            raise ValidationError("Set at least one color for a number")
        return colors

    def resolve_round(self, round_id: UUID, number_colors: dict) -> RoundSettlement:
        colors = self.normalize_colors(number_colors)
        dice_round = self.get_round(round_id)
        if dice_round.status != RoundStatus.OPEN:
            raise InvalidStateTransitionError(f"Dice round {round_id} is already closed")

        work = self.ledger.begin()
        settled = []
        credited = {BalanceField.POINTS: 0, BalanceField.CASH: 0}
        for bet in self.list_bets(round_id=round_id, status=BetStatus.PENDING):
            color = colors[bet.chosen_number]
            payout, payout_type = self.payout_for(bet.amount, color)
            changes = {
                "status": BetStatus.LOST if color == DiceColor.NONE else BetStatus.WON,
                "result_color": color,
                "payout": payout,
                "payout_type": payout_type,
                "resolved_at": work.now,
            }
            work.update(DICE_BETS, bet.id, changes, expected_version=bet.version)
            if payout > 0:
                entry = work.adjust_if_present(
                    bet.user_id, payout_type, payout, TransactionType.DICE_WIN,
                    f"Dice win on {bet.chosen_number} ({color.value}): {payout} {payout_type.value}",
                    metadata={"round_id": str(round_id), "bet_id": str(bet.id)},
                )
                if entry is not None:
                    credited[payout_type] += payout
            settled.append(bet.model_copy(update=changes))

        work.update(DICE_ROUNDS, round_id, {
            "status": RoundStatus.CLOSED,
            "number_colors": colors,
            "closed_at": work.now,
        }, expected_version=dice_round.version)
        work.delete(DICE_ROUND_LOCKS, OPEN_ROUND_LOCK_ID)
        work.commit()

        logger.info(
            "Closed dice round %s: %s bets, %s points and %s cash paid",
            round_id, len(settled), credited[BalanceField.POINTS], credited[BalanceField.CASH],
        )
        return RoundSettlement(
            round=self.get_round(round_id),
            bets=settled,
            points_credited=credited[BalanceField.POINTS],
            cash_credited=credited[BalanceField.CASH],
        )

    def cancel_round(self, round_id: UUID) -> RoundSettlement:
        dice_round = self.get_round(round_id)
        if dice_round.status != RoundStatus.OPEN:
            raise InvalidStateTransitionError(f"Dice round {round_id} is already closed")

        work = self.ledger.begin()
        refunded = []
        total = 0
        for bet in self.list_bets(round_id=round_id, status=BetStatus.PENDING):
            changes = {"status": BetStatus.CANCELLED, "resolved_at": work.now}
            work.update(DICE_BETS, bet.id, changes, expected_version=bet.version)
            entry = work.adjust_if_present(
                bet.user_id, BalanceField.POINTS, bet.amount, TransactionType.DICE_BET_REFUND,
                f"Dice round cancelled: {bet.amount} points returned",
                metadata={"round_id": str(round_id), "bet_id": str(bet.id)},
            )
            if entry is not None:
                total += bet.amount
            refunded.append(bet.model_copy(update=changes))

        work.update(DICE_ROUNDS, round_id, {
            "status": RoundStatus.CLOSED,
            "cancelled": True,
            "closed_at": work.now,
        }, expected_version=dice_round.version)
        work.delete(DICE_ROUND_LOCKS, OPEN_ROUND_LOCK_ID)
        work.commit()
        logger.info("Cancelled dice round %s, refunded %s points over %s bets", round_id, total, len(refunded))
        return RoundSettlement(round=self.get_round(round_id), bets=refunded, points_credited=total)
