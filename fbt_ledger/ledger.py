import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    AccountDisabledError,
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    SelfTransferError,
)
from .models import (
    Account,
    BalanceField,
    BalanceSnapshot,
    LedgerHistoryResponse,
    Transaction,
    TransactionType,
    TRANSACTIONS,
    USERS,
)
from .store import ArrayUnion, DocumentStore, Increment, WriteBatch

logger = logging.getLogger(__name__)

_TRANSFER_TYPES = {
    BalanceField.POINTS: (TransactionType.POINT_TRANSFER_OUT, TransactionType.POINT_TRANSFER_IN),
    BalanceField.CASH: (TransactionType.CASH_TRANSFER_OUT, TransactionType.CASH_TRANSFER_IN),
}


class LedgerBatch:
    def __init__(self, store: DocumentStore):
        self.store = store
        self.batch: WriteBatch = store.batch()
        self.now = datetime.now(timezone.utc)
        self.entries: list[Transaction] = []
        self._accounts: dict[UUID, Account] = {}
        self._read_versions: dict[UUID, int] = {}
        self._deltas: dict[UUID, dict[str, int]] = {}
        self._referrals: dict[UUID, list[UUID]] = {}
        self._account_changes: dict[UUID, dict] = {}

    def account(self, user_id: UUID) -> Account:
        if user_id not in self._accounts:
            doc = self.store.get(USERS, user_id)
            if doc is None:
                raise AccountNotFoundError(f"Account {user_id} not found")
            account = Account(**doc)
            self._accounts[user_id] = account
            self._read_versions[user_id] = account.version
        return self._accounts[user_id]

    def has_account(self, user_id: UUID) -> bool:
        return user_id in self._accounts or self.store.get(USERS, user_id) is not None

    def active_account(self, user_id: UUID) -> Account:
        account = self.account(user_id)
        if account.disabled:
            raise AccountDisabledError(f"Account {account.username} is disabled")
        return account

    def adjust(
        self,
        user_id: UUID,
        field: BalanceField,
        delta: int,
        type: TransactionType,
        description: str,
        metadata: Optional[dict] = None,
    ) -> Transaction:
        account = self.account(user_id)
        current = account.balance(field)
        if current + delta < 0:
            raise InsufficientFundsError(
                f"Insufficient {field.value}: {account.username} has {current}, needs {-delta}"
            )
        setattr(account, field.value, current + delta)
        deltas = self._deltas.setdefault(user_id, {})
        deltas[field.value] = deltas.get(field.value, 0) + delta
        return self.log(
            user_id, type, description,
            amount=delta, balance_after=account.snapshot(), metadata=metadata,
        )

    def adjust_if_present(
        self,
        user_id: UUID,
        field: BalanceField,
        delta: int,
        type: TransactionType,
        description: str,
        metadata: Optional[dict] = None,
    ) -> Optional[Transaction]:
        if not self.has_account(user_id):
            logger.warning("Account %s no longer exists, %s of %s %s not applied", user_id, type.value, delta, field.value)
            return None
        return self.adjust(user_id, field, delta, type, description, metadata)

    def log(
        self,
        user_id: UUID,
        type: TransactionType,
        description: str,
        amount: int = 0,
        balance_after: Optional[BalanceSnapshot] = None,
        metadata: Optional[dict] = None,
        username: Optional[str] = None,
    ) -> Transaction:
        if username is None:
            username = self.account(user_id).username
        entry = Transaction(
            id=uuid4(),
            user_id=user_id,
            username=username,
            amount=amount,
            type=type,
            description=description,
            timestamp=self.now,
            balance_after=balance_after,
            metadata=metadata or {},
        )
        self.batch.create(TRANSACTIONS, entry.model_dump(), entry.id)
        self.entries.append(entry)
        return entry

    def add_referral(self, ancestor_id: UUID, user_id: UUID) -> None:
        account = self.account(ancestor_id)
        if user_id not in account.referrals:
            account.referrals.append(user_id)
        self._referrals.setdefault(ancestor_id, []).append(user_id)

    def set_account_fields(self, user_id: UUID, **changes) -> Account:
        account = self.account(user_id)
        for key, value in changes.items():
            setattr(account, key, value)
        self._account_changes.setdefault(user_id, {}).update(changes)
        return account

    def update(self, collection: str, doc_id, changes: dict, expected_version: Optional[int] = None) -> None:
        self.batch.update(collection, doc_id, changes, expected_version)

    def create(self, collection: str, data: dict, doc_id=None):
        return self.batch.create(collection, data, doc_id)

    def delete(self, collection: str, doc_id, expected_version: Optional[int] = None) -> None:
        self.batch.delete(collection, doc_id, expected_version)

    def commit(self) -> list[Transaction]:
        for user_id in self._accounts:
            changes = {}
            for field, delta in self._deltas.get(user_id, {}).items():
                if delta:
                    changes[field] = Increment(delta)
            if self._referrals.get(user_id):
                changes["referrals"] = ArrayUnion(*self._referrals[user_id])
            changes.update(self._account_changes.get(user_id, {}))
            if changes:
                self.batch.update(USERS, user_id, changes, expected_version=self._read_versions[user_id])
        self.batch.commit()
        return self.entries


class LedgerStore:
    def __init__(self, store: DocumentStore):
        self.store = store

    def begin(self) -> LedgerBatch:
        return LedgerBatch(self.store)

    def get_account(self, user_id: UUID) -> Account:
        doc = self.store.get(USERS, user_id)
        if doc is None:
            raise AccountNotFoundError(f"Account {user_id} not found")
        return Account(**doc)

    def adjust_balance(
        self,
        user_id: UUID,
        field: BalanceField,
        delta: int,
        type: TransactionType,
        description: str,
    ) -> Transaction:
        work = self.begin()
        entry = work.adjust(user_id, field, delta, type, description)
        work.commit()
        logger.info("Adjusted %s of %s by %s", field.value, user_id, delta)
        return entry

    def stage_transfer(
        self,
        work: LedgerBatch,
        from_id: UUID,
        to_id: UUID,
        field: BalanceField,
        amount: int,
        metadata: Optional[dict] = None,
    ) -> tuple[Transaction, Transaction]:
        if amount <= 0:
            raise InvalidAmountError("Transfer amount must be greater than 0")
        if from_id == to_id:
            raise SelfTransferError("Cannot transfer to the same account")
        sender = work.account(from_id)
        recipient = work.account(to_id)
        out_type, in_type = _TRANSFER_TYPES[field]
        debit = work.adjust(
            from_id, field, -amount, out_type,
            f"Transferred {amount} {field.value} to {recipient.username}",
            metadata=dict(metadata or {}, counterparty_id=str(to_id)),
        )
        credit = work.adjust(
            to_id, field, amount, in_type,
            f"Received {amount} {field.value} from {sender.username}",
            metadata=dict(metadata or {}, counterparty_id=str(from_id)),
        )
        return debit, credit

    def transfer_between(
        self,
        from_id: UUID,
        to_id: UUID,
        field: BalanceField,
        amount: int,
    ) -> tuple[Transaction, Transaction]:
        work = self.begin()
        entries = self.stage_transfer(work, from_id, to_id, field, amount)
        work.commit()
        logger.info("Moved %s %s from %s to %s", amount, field.value, from_id, to_id)
        return entries

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        account = self.get_account(user_id)
        filters = {"user_id": user_id}
        entries = [
            Transaction(**doc) for doc in self.store.query(
                TRANSACTIONS, filters, order_by="timestamp", descending=True,
                limit=limit, offset=offset,
            )
        ]
        return LedgerHistoryResponse(
            user_id=user_id,
            entries=entries,
            total_count=self.store.count(TRANSACTIONS, filters),
            balance=account.snapshot(),
        )
