import logging
from typing import Optional
from uuid import UUID, uuid4

from .errors import InvalidStateTransitionError, RequestNotFoundError
from .ledger import LedgerBatch
from .models import (
    Account,
    ApprovalRequest,
    RequestStatus,
    RequestType,
    REQUESTS,
)
from .store import DocumentStore

logger = logging.getLogger(__name__)

ACCOUNT_DELETED = "Account deleted"


class RequestWorkflow:
    """Owns the status and timestamps of approval requests.

    ``pending`` moves to ``approved`` or ``declined`` exactly once. What an
    approval or decline does to balances is up to the engine that opened the
    request; every transition here is staged into that engine's batch.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def open(self, work: LedgerBatch, type: RequestType, account: Account, **payload) -> ApprovalRequest:
        request = ApprovalRequest(
            id=uuid4(),
            type=type,
            user_id=account.id,
            username=account.username,
            timestamp=work.now,
            **payload,
        )
        work.create(REQUESTS, request.model_dump(), request.id)
        return request

    def get(self, request_id: UUID, type: Optional[RequestType] = None) -> ApprovalRequest:
        doc = self.store.get(REQUESTS, request_id)
        if doc is None or (type is not None and doc["type"] != type):
            raise RequestNotFoundError(f"Request {request_id} not found")
        return ApprovalRequest(**doc)

    def list_requests(
        self,
        type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        user_id: Optional[UUID] = None,
    ) -> list[ApprovalRequest]:
        filters = {}
        if type is not None:
            filters["type"] = type
        if status is not None:
            filters["status"] = status
        if user_id is not None:
            filters["user_id"] = user_id
        docs = self.store.query(REQUESTS, filters, order_by="timestamp", descending=True)
        return [ApprovalRequest(**doc) for doc in docs]

    def approve(self, work: LedgerBatch, request: ApprovalRequest, **changes) -> ApprovalRequest:
        return self._transition(work, request, RequestStatus.APPROVED, changes)

    def decline(self, work: LedgerBatch, request: ApprovalRequest, reason: Optional[str] = None) -> ApprovalRequest:
        changes = {"decline_reason": reason} if reason else {}
        return self._transition(work, request, RequestStatus.DECLINED, changes)

    def _transition(
        self,
        work: LedgerBatch,
        request: ApprovalRequest,
        status: RequestStatus,
        changes: dict,
    ) -> ApprovalRequest:
        if not request.is_pending():
            raise InvalidStateTransitionError(
                f"Cannot move {request.type.value} request from {request.status.value} to {status.value}"
            )
        changes = dict(changes, status=status, processed_at=work.now)
        work.update(REQUESTS, request.id, changes, expected_version=request.version)
        logger.debug("Staged %s request %s -> %s", request.type.value, request.id, status.value)
        return request.model_copy(update=changes)
