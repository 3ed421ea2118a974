import logging
from typing import Optional
from uuid import UUID

from .account_requests import AccountRequestEngine
from .accounts import AccountRegistry
from .config import Settings, SettingsRegistry, get_settings
from .dice import DiceSettlementEngine
from .investments import InvestmentEngine
from .ledger import LedgerStore
from .models import BalanceField, LedgerHistoryResponse, Transaction, TransactionType
from .referrals import ReferralWalker
from .store import DocumentStore
from .transfers import TransferEngine
from .ultra_manual import UltraManualEngine
from .workflow import RequestWorkflow

logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(self, store: Optional[DocumentStore] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = store or DocumentStore()
        self.registry = SettingsRegistry(self.store, self.settings)
        self.registry.load()

        self.ledger = LedgerStore(self.store)
        self.workflow = RequestWorkflow(self.store)
        self.walker = ReferralWalker(self.store, self.settings)
        self.accounts = AccountRegistry(self.ledger, self.walker, self.registry, self.settings)
        self.transfers = TransferEngine(self.ledger, self.workflow, self.registry, self.settings)
        self.requests = AccountRequestEngine(self.ledger, self.workflow, self.settings)
        self.dice = DiceSettlementEngine(self.ledger, self.settings)
        self.ultra_manual = UltraManualEngine(self.ledger, self.settings)
        self.investments = InvestmentEngine(self.ledger)
        logger.debug("Ledger service ready")

    def adjust_balance(
        self,
        user_id: UUID,
        field: BalanceField,
        delta: int,
        type: TransactionType,
        description: str,
    ) -> Transaction:
        return self.ledger.adjust_balance(user_id, field, delta, type, description)

    def transfer_between(
        self,
        from_id: UUID,
        to_id: UUID,
        field: BalanceField,
        amount: int,
    ) -> tuple[Transaction, Transaction]:
        return self.ledger.transfer_between(from_id, to_id, field, amount)

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.ledger.get_ledger_history(user_id, limit, offset)
