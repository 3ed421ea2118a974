"""
Unit Tests for Ultra Manual Bets

Tests cover:
1. Placing a bet with a note
2. Marking bets won, lost or cancelled
3. Winners board
"""

import pytest
from uuid import uuid4

from fbt_ledger.errors import (
    BetNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ValidationError,
)
from fbt_ledger.models import BetStatus, TransactionType, WINNERS


class TestPlaceBet:
    """Tests for placing an ultra manual bet."""

    def test_place_debits_points(self, service, make_account):
        """Test that the stake is debited and the note kept."""
        alice = make_account("alice", points=100)

        bet = service.ultra_manual.place_bet(alice.id, 30, "  red wins  ")

        assert bet.note == "red wins"
        assert bet.status == BetStatus.PENDING
        assert service.accounts.get_account(alice.id).points == 70

    @pytest.mark.parametrize("note", ["", "   ", "x" * 101])
    def test_note_length(self, service, make_account, note):
        """Test that the note must be 1 to 100 characters."""
        alice = make_account("alice", points=100)
        with pytest.raises(ValidationError):
            service.ultra_manual.place_bet(alice.id, 10, note)

    def test_note_at_limit(self, service, make_account):
        """Test that exactly 100 characters is accepted."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 10, "x" * 100)
        assert len(bet.note) == 100

    def test_amount_rules(self, service, make_account):
        """Test that the stake must be positive and covered."""
        alice = make_account("alice", points=10)
        with pytest.raises(InvalidAmountError):
            service.ultra_manual.place_bet(alice.id, 0, "note")
        with pytest.raises(InsufficientFundsError):
            service.ultra_manual.place_bet(alice.id, 11, "note")


class TestProcessBet:
    """Tests for judging a bet."""

    def test_mark_won_credits_and_records_winner(self, service, make_account):
        """Test that a win credits the chosen amount and adds a winner."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 50, "call")

        won = service.ultra_manual.mark_won(bet.id, 175)

        assert won.status == BetStatus.WON
        assert won.win_amount == 175
        assert service.accounts.get_account(alice.id).points == 225
        winners = service.store.query(WINNERS)
        assert len(winners) == 1
        assert winners[0]["username"] == "alice"
        assert winners[0]["amount"] == 175

    def test_mark_won_requires_positive_amount(self, service, make_account):
        """Test that a win must pay something."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 50, "call")
        with pytest.raises(InvalidAmountError):
            service.ultra_manual.mark_won(bet.id, 0)

    def test_mark_lost_keeps_stake(self, service, make_account):
        """Test that a loss changes no balance."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 50, "call")

        lost = service.ultra_manual.mark_lost(bet.id)

        assert lost.status == BetStatus.LOST
        assert service.accounts.get_account(alice.id).points == 50

    def test_cancel_refunds_stake(self, service, make_account):
        """Test that cancelling returns the full stake."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 50, "call")

        service.ultra_manual.cancel_bet(bet.id)

        assert service.accounts.get_account(alice.id).points == 100
        history = service.get_ledger_history(alice.id)
        assert TransactionType.ULTRA_MANUAL_CANCELLED in [e.type for e in history.entries]

    def test_cancel_after_account_deleted(self, service, make_account):
        """Test that a bet can be cancelled once its owner is gone."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 50, "call")
        service.accounts.delete(alice.id)

        cancelled = service.ultra_manual.cancel_bet(bet.id)

        assert cancelled.status == BetStatus.CANCELLED
        assert service.ultra_manual.get_bet(bet.id).status == BetStatus.CANCELLED

    def test_processed_bet_is_final(self, service, make_account):
        """Test that a judged bet cannot be judged again."""
        alice = make_account("alice", points=100)
        bet = service.ultra_manual.place_bet(alice.id, 50, "call")
        service.ultra_manual.mark_lost(bet.id)
        with pytest.raises(InvalidStateTransitionError):
            service.ultra_manual.cancel_bet(bet.id)
        assert service.accounts.get_account(alice.id).points == 50

    def test_unknown_bet(self, service):
        """Test that a missing bet raises not found."""
        with pytest.raises(BetNotFoundError):
            service.ultra_manual.mark_lost(uuid4())

    def test_list_pending(self, service, make_account):
        """Test filtering bets by status."""
        alice = make_account("alice", points=100)
        first = service.ultra_manual.place_bet(alice.id, 10, "one")
        service.ultra_manual.place_bet(alice.id, 10, "two")
        service.ultra_manual.mark_lost(first.id)
        pending = service.ultra_manual.list_bets(status=BetStatus.PENDING)
        assert [b.note for b in pending] == ["two"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
