import copy
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Hashable, Optional
from uuid import uuid4

from .errors import ConflictError, NotFoundError, ValidationError
from .models import MUTABLE_FIELDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Increment:
    amount: int


@dataclass(frozen=True)
class ArrayUnion:
    values: tuple

    def __init__(self, *values):
        object.__setattr__(self, "values", tuple(values))


@dataclass
class _Write:
    kind: str
    collection: str
    doc_id: Hashable
    data: dict = field(default_factory=dict)
    expected_version: Optional[int] = None


def _apply_changes(doc: dict, changes: dict) -> None:
    for key, value in changes.items():
        if isinstance(value, Increment):
            doc[key] = (doc.get(key) or 0) + value.amount
        elif isinstance(value, ArrayUnion):
            current = list(doc.get(key) or [])
            for item in value.values:
                if item not in current:
                    current.append(item)
            doc[key] = current
        else:
            doc[key] = copy.deepcopy(value)


class DocumentStore:
    def __init__(self, mutable_fields: Optional[dict[str, frozenset]] = None):
        self.collections: dict[str, dict[Hashable, dict]] = defaultdict(dict)
        self.mutable_fields = MUTABLE_FIELDS if mutable_fields is None else mutable_fields
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: Hashable) -> Optional[dict]:
        with self._lock:
            doc = self.collections[collection].get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def query(
        self,
        collection: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        filters = filters or {}
        with self._lock:
            docs = [
                copy.deepcopy(d) for d in self.collections[collection].values()
                if all(d.get(k) == v for k, v in filters.items())
            ]
        if order_by:
            present = [d for d in docs if d.get(order_by) is not None]
            missing = [d for d in docs if d.get(order_by) is None]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            docs = present + missing
        docs = docs[offset:]
        if limit is not None:
            docs = docs[:limit]
        return docs

    def count(self, collection: str, filters: Optional[dict] = None) -> int:
        return len(self.query(collection, filters))

    def find_one(self, collection: str, filters: dict) -> Optional[dict]:
        docs = self.query(collection, filters, limit=1)
        return docs[0] if docs else None

    def create(self, collection: str, data: dict, doc_id: Optional[Hashable] = None) -> Hashable:
        batch = self.batch()
        doc_id = batch.create(collection, data, doc_id)
        batch.commit()
        return doc_id

    def set(self, collection: str, doc_id: Hashable, data: dict) -> None:
        batch = self.batch()
        batch.set(collection, doc_id, data)
        batch.commit()

    def update(
        self,
        collection: str,
        doc_id: Hashable,
        changes: dict,
        expected_version: Optional[int] = None,
    ) -> None:
        batch = self.batch()
        batch.update(collection, doc_id, changes, expected_version)
        batch.commit()

    def delete(self, collection: str, doc_id: Hashable) -> None:
        batch = self.batch()
        batch.delete(collection, doc_id)
        batch.commit()

    def batch(self) -> "WriteBatch":
        return WriteBatch(self)

    def check_fields(self, collection: str, changes: dict) -> None:
        allowed = self.mutable_fields.get(collection)
        if allowed is None:
            return
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(
                f"Fields {sorted(unknown)} cannot be updated on {collection}"
            )

    def _commit(self, writes: list[_Write]) -> None:
        with self._lock:
            # Stage on copies so a failed precondition leaves nothing applied.
            staged: dict[tuple[str, Hashable], Optional[dict]] = {}
            original_versions: dict[tuple[str, Hashable], int] = {}

            for write in writes:
                key = (write.collection, write.doc_id)
                if key not in staged:
                    current = self.collections[write.collection].get(write.doc_id)
                    staged[key] = copy.deepcopy(current)
                    original_versions[key] = current["version"] if current else 0

                if write.expected_version is not None and original_versions[key] != write.expected_version:
                    logger.warning(
                        "Version conflict on %s/%s: expected %s, found %s",
                        write.collection, write.doc_id,
                        write.expected_version, original_versions[key],
                    )
                    raise ConflictError(
                        f"{write.collection}/{write.doc_id} changed since it was read"
                    )

                if write.kind == "create":
                    if staged[key] is not None:
                        raise ConflictError(f"{write.collection}/{write.doc_id} already exists")
                    staged[key] = dict(copy.deepcopy(write.data), id=write.doc_id)
                elif write.kind == "set":
                    staged[key] = dict(copy.deepcopy(write.data), id=write.doc_id)
                elif write.kind == "update":
                    if staged[key] is None:
                        raise NotFoundError(f"{write.collection}/{write.doc_id} does not exist")
                    _apply_changes(staged[key], write.data)
                elif write.kind == "delete":
                    staged[key] = None

            for (collection, doc_id), doc in staged.items():
                if doc is None:
                    self.collections[collection].pop(doc_id, None)
                else:
                    doc["version"] = original_versions[(collection, doc_id)] + 1
                    self.collections[collection][doc_id] = doc


class WriteBatch:
    """Collects writes and applies them in one step on ``commit()``."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.writes: list[_Write] = []
        self.committed = False

    def __len__(self) -> int:
        return len(self.writes)

    def create(self, collection: str, data: dict, doc_id: Optional[Hashable] = None) -> Hashable:
        doc_id = doc_id if doc_id is not None else uuid4()
        self.writes.append(_Write("create", collection, doc_id, dict(data)))
        return doc_id

    def set(self, collection: str, doc_id: Hashable, data: dict) -> None:
        self.writes.append(_Write("set", collection, doc_id, dict(data)))

    def update(
        self,
        collection: str,
        doc_id: Hashable,
        changes: dict,
        expected_version: Optional[int] = None,
    ) -> None:
        self.store.check_fields(collection, changes)
        self.writes.append(_Write("update", collection, doc_id, dict(changes), expected_version))

    def delete(self, collection: str, doc_id: Hashable, expected_version: Optional[int] = None) -> None:
        self.writes.append(_Write("delete", collection, doc_id, expected_version=expected_version))

    def commit(self) -> None:
        if self.committed:
            raise ValidationError("Batch already committed")
        self.store._commit(self.writes)
        self.committed = True
