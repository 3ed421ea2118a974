"""
Unit Tests for Dice Rounds

Tests cover:
1. Opening rounds and placing bets
2. Payout formulas per color
3. Round settlement totals and single resolution
4. Cancelling a round
5. Bets and rounds racing a settlement
"""

import pytest

from fbt_ledger.errors import (
    AccountDisabledError,
    ConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ValidationError,
)
from fbt_ledger.models import (
    BalanceField,
    BetStatus,
    DiceColor,
    RoundStatus,
    TransactionType,
    TRANSACTIONS,
)


class TestPlacingBets:
    """Tests for opening a round and staking points."""

    def test_place_bet_debits_points(self, service, make_account):
        """Test that a bet takes its stake from the player's points."""
        alice = make_account("alice", points=100)
        dice_round = service.dice.create_round()

        bet = service.dice.place_bet(alice.id, dice_round.id, 3, 40)

        assert bet.status == BetStatus.PENDING
        assert service.accounts.get_account(alice.id).points == 60
        entries = service.store.query(TRANSACTIONS, {"user_id": alice.id, "type": TransactionType.DICE_BET})
        assert entries[0]["amount"] == -40

    def test_only_one_open_round(self, service):
        """Test that a second round cannot open while one is running."""
        service.dice.create_round()
        with pytest.raises(InvalidStateTransitionError):
            service.dice.create_round()

    def test_current_round(self, service):
        """Test that the open round is reported until it closes."""
        assert service.dice.current_round() is None
        dice_round = service.dice.create_round()
        assert service.dice.current_round().id == dice_round.id
        service.dice.cancel_round(dice_round.id)
        assert service.dice.current_round() is None

    def test_new_round_after_close(self, service):
        """Test that a round can open again once the previous one is closed."""
        first = service.dice.create_round()
        service.dice.resolve_round(first.id, {1: DiceColor.RED})
        second = service.dice.create_round()
        service.dice.cancel_round(second.id)

        third = service.dice.create_round()

        assert service.dice.current_round().id == third.id

    def test_one_bet_per_number(self, service, make_account):
        """Test that a player cannot bet twice on the same number in a round."""
        alice = make_account("alice", points=100)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 3, 10)
        service.dice.place_bet(alice.id, dice_round.id, 4, 10)

        with pytest.raises(ValidationError):
            service.dice.place_bet(alice.id, dice_round.id, 3, 10)
        assert service.accounts.get_account(alice.id).points == 80

    def test_invalid_number_and_amount(self, service, make_account):
        """Test that numbers outside 1-6 and non-positive stakes are rejected."""
        alice = make_account("alice", points=100)
        dice_round = service.dice.create_round()
        with pytest.raises(ValidationError):
            service.dice.place_bet(alice.id, dice_round.id, 7, 10)
        with pytest.raises(InvalidAmountError):
            service.dice.place_bet(alice.id, dice_round.id, 1, 0)

    def test_stake_must_be_covered(self, service, make_account):
        """Test that a player cannot bet more points than they hold."""
        alice = make_account("alice", points=5)
        dice_round = service.dice.create_round()
        with pytest.raises(InsufficientFundsError):
            service.dice.place_bet(alice.id, dice_round.id, 1, 10)
        assert service.dice.list_bets(round_id=dice_round.id) == []

    def test_disabled_player(self, service, make_account):
        """Test that a disabled account cannot bet."""
        alice = make_account("alice", points=100)
        service.accounts.set_disabled(alice.id, True)
        dice_round = service.dice.create_round()
        with pytest.raises(AccountDisabledError):
            service.dice.place_bet(alice.id, dice_round.id, 1, 10)


class TestPayouts:
    """Tests for the payout formula."""

    @pytest.mark.parametrize("amount, color, expected", [
        (100, DiceColor.WHITE, (50, BalanceField.CASH)),
        (99, DiceColor.WHITE, (45, BalanceField.CASH)),
        (100, DiceColor.RED, (200, BalanceField.POINTS)),
        (15, DiceColor.GREEN, (20, BalanceField.POINTS)),
        (9, DiceColor.RED, (0, BalanceField.POINTS)),
        (100, DiceColor.NONE, (0, None)),
    ])
    def test_payout_for(self, service, amount, color, expected):
        """Test payouts per full ten points for every color."""
        assert service.dice.payout_for(amount, color) == expected


class TestResolveRound:
    """Tests for settling a round."""

    def test_settlement_credits_sum_of_payouts(self, service, make_account):
        """Test that every bet ends once and totals match the formula."""
        alice = make_account("alice", points=500)
        bob = make_account("bob", points=500)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 1, 100)   # white: 50 cash
        service.dice.place_bet(alice.id, dice_round.id, 2, 35)    # red: 60 points
        service.dice.place_bet(bob.id, dice_round.id, 2, 50)      # red: 100 points
        service.dice.place_bet(bob.id, dice_round.id, 6, 200)     # none: lost

        settlement = service.dice.resolve_round(dice_round.id, {
            1: DiceColor.WHITE, 2: DiceColor.RED, 3: DiceColor.GREEN,
        })

        assert settlement.round.status == RoundStatus.CLOSED
        assert len(settlement.bets) == 4
        assert {b.status for b in settlement.bets} <= {BetStatus.WON, BetStatus.LOST}
        assert settlement.cash_credited == 50
        assert settlement.points_credited == 160

        alice_now = service.accounts.get_account(alice.id)
        bob_now = service.accounts.get_account(bob.id)
        assert (alice_now.points, alice_now.cash) == (500 - 135 + 60, 50)
        assert (bob_now.points, bob_now.cash) == (500 - 250 + 100, 0)

        stored = {b.chosen_number: b for b in service.dice.list_bets(round_id=dice_round.id, user_id=bob.id)}
        assert stored[6].status == BetStatus.LOST
        assert stored[6].payout == 0
        assert stored[2].payout_type == BalanceField.POINTS

    def test_won_bet_below_ten_logs_no_credit(self, service, make_account):
        """Test that a zero payout win writes no dice_win entry."""
        alice = make_account("alice", points=100)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 1, 5)

        settlement = service.dice.resolve_round(dice_round.id, {1: DiceColor.RED})

        assert settlement.bets[0].status == BetStatus.WON
        assert service.store.count(TRANSACTIONS, {"type": TransactionType.DICE_WIN}) == 0

    def test_resolve_twice_rejected(self, service, make_account):
        """Test that a closed round cannot be paid out again."""
        alice = make_account("alice", points=100)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 1, 100)
        service.dice.resolve_round(dice_round.id, {1: DiceColor.RED})

        with pytest.raises(InvalidStateTransitionError):
            service.dice.resolve_round(dice_round.id, {1: DiceColor.RED})
        assert service.accounts.get_account(alice.id).points == 200

    def test_all_none_outcome_rejected(self, service):
        """Test that at least one number must be colored."""
        dice_round = service.dice.create_round()
        with pytest.raises(ValidationError):
            service.dice.resolve_round(dice_round.id, {n: DiceColor.NONE for n in range(1, 7)})
        assert service.dice.get_round(dice_round.id).status == RoundStatus.OPEN

    def test_unknown_number_rejected(self, service):
        """Test that the outcome can only mention numbers 1-6."""
        dice_round = service.dice.create_round()
        with pytest.raises(ValidationError):
            service.dice.resolve_round(dice_round.id, {9: DiceColor.RED})

    def test_bet_after_close_rejected(self, service, make_account):
        """Test that a closed round takes no more bets."""
        alice = make_account("alice", points=100)
        dice_round = service.dice.create_round()
        service.dice.resolve_round(dice_round.id, {1: DiceColor.GREEN})
        with pytest.raises(InvalidStateTransitionError):
            service.dice.place_bet(alice.id, dice_round.id, 1, 10)

    def test_outcome_is_stored_on_round(self, service):
        """Test that the closed round keeps the full color mapping."""
        dice_round = service.dice.create_round()
        service.dice.resolve_round(dice_round.id, {4: DiceColor.WHITE})
        colors = service.dice.get_round(dice_round.id).number_colors
        assert colors[4] == DiceColor.WHITE
        assert colors[1] == DiceColor.NONE

    def test_settled_winner_deleted_before_close(self, service, make_account):
        """Test that a deleted bettor does not block settlement."""
        alice = make_account("alice", points=100)
        bob = make_account("bob", points=100)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 1, 50)
        service.dice.place_bet(bob.id, dice_round.id, 1, 50)
        service.accounts.delete(alice.id)

        settlement = service.dice.resolve_round(dice_round.id, {1: DiceColor.RED})

        assert settlement.points_credited == 100
        assert service.accounts.get_account(bob.id).points == 150


class TestCancelRound:
    """Tests for cancelling a round."""

    def test_cancel_refunds_every_bet(self, service, make_account):
        """Test that cancelling returns all stakes and closes the round."""
        alice = make_account("alice", points=100)
        bob = make_account("bob", points=100)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 1, 30)
        service.dice.place_bet(bob.id, dice_round.id, 2, 70)

        settlement = service.dice.cancel_round(dice_round.id)

        assert settlement.round.cancelled
        assert settlement.round.status == RoundStatus.CLOSED
        assert settlement.points_credited == 100
        assert all(b.status == BetStatus.CANCELLED for b in settlement.bets)
        assert service.accounts.get_account(alice.id).points == 100
        assert service.accounts.get_account(bob.id).points == 100

    def test_cancel_closed_round_rejected(self, service):
        """Test that a settled round cannot be cancelled."""
        dice_round = service.dice.create_round()
        service.dice.resolve_round(dice_round.id, {1: DiceColor.RED})
        with pytest.raises(InvalidStateTransitionError):
            service.dice.cancel_round(dice_round.id)


class TestSettlementRaces:
    """Tests for writes racing a settlement or a round opening."""

    def test_bet_placed_during_settlement_conflicts(self, service, make_account):
        """Test that a late bet makes the stale settlement fail as a whole."""
        alice = make_account("alice", points=100)
        bob = make_account("bob", points=100)
        dice_round = service.dice.create_round()
        service.dice.place_bet(alice.id, dice_round.id, 1, 50)
        stale = service.dice.get_round(dice_round.id)

        service.dice.place_bet(bob.id, dice_round.id, 1, 50)

        work = service.ledger.begin()
        work.update("dice_rounds", dice_round.id, {"status": RoundStatus.CLOSED}, expected_version=stale.version)
        with pytest.raises(ConflictError):
            work.commit()
        assert service.dice.get_round(dice_round.id).status == RoundStatus.OPEN

    def test_second_round_opened_concurrently_conflicts(self, service, monkeypatch):
        """Test that two rounds opened from the same stale view cannot both commit."""
        first = service.dice.create_round()
        monkeypatch.setattr(service.dice, "current_round", lambda: None)

        with pytest.raises(ConflictError):
            service.dice.create_round()
        monkeypatch.undo()
        assert service.dice.current_round().id == first.id
        assert len(service.dice.list_rounds()) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
