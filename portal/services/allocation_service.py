"""Allocation request workflow service.

Requests move PENDING -> APPROVED/REJECTED/CANCELLED by review, then
APPROVED -> SUBMITTED -> ALLOCATED or DUPLICATE through guarded bulk
transitions. Every operation is gated by ``portal.core.permissions``.
"""

import uuid
from collections import defaultdict
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import settings
from portal.core.exceptions import AppError, ConflictError, NotFoundError, ValidationError
from portal.core.permissions import CROSS_FAMILY_SCAN_ROLES, ensure_any_role, ensure_permitted
from portal.repositories.allocation_request_repository import (
    ACTIVE_CONFLICT_MESSAGE,
    AllocationRequestRepository,
)
from portal.repositories.policy_repository import PolicyRepository
from portal.repositories.transaction_repository import TransactionRepository
from portal.schemas.allocation import (
    AllocationRequestCreated,
    AllocationRequestDetail,
    AllocationRequestPage,
    AllocationRequestRead,
    AllocationStatusSummary,
    BulkTransitionResult,
    Pagination,
)
from portal.schemas.auth import CurrentUser
from portal.schemas.enums import (
    REVIEW_DECISIONS,
    AllocationOperation,
    AllocationRequestStatus,
    TransactionFamily,
    TransactionModel,
)
from portal.schemas.scan import (
    RawAllocationRequest,
    ReceiptRow,
    ScannableAllocationRequest,
    ScannableTransaction,
    ScanResult,
)
from portal.schemas.transaction import to_transaction_read
from portal.services.base_service import BaseService
from portal.services.duplicate_scanner import parse_request, scan_for_duplicates
from portal.services.notification_service import NotificationService, NotificationType, notification_service
from portal.services.storage_service import StorageService, evidence_path
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

NotesInput = Union[None, str, Sequence[str]]


class BulkTransition(NamedTuple):
    """A guarded bulk move from one status to another."""

    source: AllocationRequestStatus
    target: AllocationRequestStatus
    by_field: str
    at_field: str
    verb: str
    notification_type: Optional[NotificationType] = None


BULK_TRANSITIONS: Dict[AllocationOperation, BulkTransition] = {
    AllocationOperation.SUBMIT: BulkTransition(
        AllocationRequestStatus.APPROVED,
        AllocationRequestStatus.SUBMITTED,
        "submitted_by",
        "submitted_at",
        "submitted for allocation",
        NotificationType.INFO,
    ),
    AllocationOperation.ALLOCATE: BulkTransition(
        AllocationRequestStatus.SUBMITTED,
        AllocationRequestStatus.ALLOCATED,
        "allocated_by",
        "allocated_at",
        "allocated",
    ),
    AllocationOperation.MARK_DUPLICATE: BulkTransition(
        AllocationRequestStatus.SUBMITTED,
        AllocationRequestStatus.DUPLICATE,
        "marked_as_duplicate_by",
        "marked_as_duplicate_at",
        "marked as duplicate",
        NotificationType.WARNING,
    ),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def scan_timezone(name: Optional[str] = None) -> tzinfo:
    """Timezone in which the duplicate scan compares calendar days."""
    name = name or settings.reconciliation.scan_timezone
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    return ZoneInfo(name)


def normalize_notes(notes: NotesInput) -> List[str]:
    if notes is None:
        return []
    if isinstance(notes, str):
        notes = [notes]
    return [note.strip() for note in notes if note and note.strip()]


def review_values(
    decision: AllocationRequestStatus,
    actor_id: str,
    now: datetime,
    rejection_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Column values for a review decision.

    The decision's own actor stamp is set and every other review stamp is
    cleared, so a request only ever shows its latest decision.

    Raises:
        ValidationError: If the decision is not a review outcome, or a
            rejection has no reason
    """
    if decision not in REVIEW_DECISIONS:
        raise ValidationError("Invalid status")

    values: Dict[str, Any] = {
        "status": decision.value,
        "approved_by": None,
        "approved_at": None,
        "rejected_by": None,
        "rejected_at": None,
        "rejection_reason": None,
        "cancelled_by": None,
        "cancelled_at": None,
    }

    if decision is AllocationRequestStatus.APPROVED:
        values.update(approved_by=actor_id, approved_at=now)
    elif decision is AllocationRequestStatus.REJECTED:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError("Rejection reason is required")
        values.update(rejected_by=actor_id, rejected_at=now, rejection_reason=reason)
    else:
        values.update(cancelled_by=actor_id, cancelled_at=now)

    return values


def _as_uuid(value: Any, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {label}") from None


class AllocationRequestService(BaseService):
    """Service for the allocation request workflow.

    Handles request creation with evidence, review decisions, guarded bulk
    transitions, listing and duplicate scans against ASSIT receipts.
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        *,
        request_repo: Optional[AllocationRequestRepository] = None,
        transaction_repo: Optional[TransactionRepository] = None,
        policy_repo: Optional[PolicyRepository] = None,
        storage_service: Optional[StorageService] = None,
        notifier: Optional[NotificationService] = None,
    ):
        """Initialize allocation request service.

        Args:
            session: Database session used to build the default repositories
            request_repo: Allocation request repository override
            transaction_repo: Transaction resolver override
            policy_repo: ASSIT policy repository override
            storage_service: Evidence storage override
            notifier: Notification service override
        """
        self.request_repo = request_repo or AllocationRequestRepository(session)
        super().__init__(self.request_repo)
        self.session = session
        self.transaction_repo = transaction_repo or TransactionRepository(session)
        self.policy_repo = policy_repo or PolicyRepository(session)
        self.storage_service = storage_service or StorageService()
        self.notifier = notifier or notification_service

    async def run(self, *args, **kwargs) -> Any:
        """Route to the appropriate handler based on action."""
        action = kwargs.pop("action", None)

        if action == "create":
            return await self._create_logic(**kwargs)
        elif action == "review":
            return await self._review_logic(**kwargs)
        elif action == "bulk_transition":
            return await self._bulk_transition_logic(**kwargs)
        elif action == "list":
            return await self._list_logic(**kwargs)
        elif action == "get":
            return await self._get_logic(**kwargs)
        elif action == "summary":
            return await self._summary_logic(**kwargs)
        elif action == "scan_persisted":
            return await self._scan_persisted_logic(**kwargs)
        elif action == "scan_supplied":
            return await self._scan_supplied_logic(**kwargs)
        else:
            raise AppError(f"Unknown action: {action}")

    # Creation

    async def create_allocation_request(
        self,
        family: TransactionFamily,
        transaction_id: Any,
        policy_number: Optional[str],
        actor: CurrentUser,
        notes: NotesInput = None,
        evidence_files: Optional[Sequence[Any]] = None,
    ) -> AllocationRequestCreated:
        """Open a PENDING request linking a transaction to a policy.

        Evidence files are uploaded before the request row is written; if any
        upload fails, the files already stored are removed and nothing is
        created.

        Raises:
            ValidationError: Missing transaction id or policy number
            NotFoundError: Unknown transaction, or unknown ASSIT policy (EFT)
            ConflictError: The transaction already has an active request
            StorageError: Evidence upload failed
        """
        return await self.execute(
            action="create",
            family=family,
            transaction_id=transaction_id,
            policy_number=policy_number,
            actor=actor,
            notes=notes,
            evidence_files=evidence_files or [],
        )

    async def _create_logic(
        self,
        family: TransactionFamily,
        transaction_id: Any,
        policy_number: Optional[str],
        actor: CurrentUser,
        notes: NotesInput,
        evidence_files: Sequence[Any],
    ) -> AllocationRequestCreated:
        ensure_permitted(actor, family, AllocationOperation.CREATE)

        policy_number = (policy_number or "").strip()
        if not transaction_id or not str(transaction_id).strip() or not policy_number:
            raise ValidationError("Missing required fields")
        transaction_uuid = _as_uuid(transaction_id, "transaction id")

        if family is TransactionFamily.EFT and not await self.policy_repo.exists(policy_number):
            raise NotFoundError("ASSIT policy not found")

        transaction = await self.transaction_repo.resolve(family.transaction_model, transaction_uuid)
        if transaction is None:
            raise NotFoundError("Transaction not found")

        if await self.request_repo.find_active_for_transaction(transaction_uuid) is not None:
            raise ConflictError(ACTIVE_CONFLICT_MESSAGE)

        request_id = uuid.uuid4()
        uploaded_paths: List[str] = []
        evidence_urls: List[str] = []
        try:
            for file in evidence_files:
                path = evidence_path(request_id, getattr(file, "filename", None) or "file")
                evidence_urls.append(await self.storage_service.upload_file(file, path))
                uploaded_paths.append(path)

            now = utcnow()
            await self.request_repo.create_request(
                id=request_id,
                transaction_id=transaction_uuid,
                transaction_model=family.transaction_model.value,
                type=family.value,
                policy_number=policy_number,
                easypay_number=getattr(transaction, "easypay_number", None),
                notes=normalize_notes(notes),
                evidence=evidence_urls,
                status=AllocationRequestStatus.PENDING.value,
                requested_by=actor.id,
                requested_at=now,
                created_at=now,
                updated_at=now,
            )
        except Exception:
            # Storage errors and insert failures alike leave no orphaned evidence
            if uploaded_paths:
                LOGGER.warning(
                    f"Removing {len(uploaded_paths)} evidence file(s) for uncreated request {request_id}",
                    extra={"request_id": str(request_id)},
                )
                await self.storage_service.delete_files(uploaded_paths)
            raise

        LOGGER.info(
            f"Created {family.value} allocation request {request_id}",
            extra={
                "request_id": str(request_id),
                "transaction_id": str(transaction_uuid),
                "policy_number": policy_number,
                "evidence_count": len(evidence_urls),
                "actor": actor.id,
            },
        )
        return AllocationRequestCreated(id=request_id, evidence=evidence_urls)

    # Review

    async def review_allocation_request(
        self,
        family: TransactionFamily,
        request_id: Any,
        decision: Union[AllocationRequestStatus, str],
        actor: CurrentUser,
        rejection_reason: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AllocationRequestRead:
        """Approve, reject or cancel a single request.

        Any non-terminal request may be reviewed again; the latest decision
        replaces the earlier one.

        Raises:
            ValidationError: Not a review decision, or a rejection without reason
            NotFoundError: No such request in the family
            ConflictError: The request is already ALLOCATED or DUPLICATE
        """
        return await self.execute(
            action="review",
            family=family,
            request_id=request_id,
            decision=decision,
            actor=actor,
            rejection_reason=rejection_reason,
            note=note,
        )

    async def _review_logic(
        self,
        family: TransactionFamily,
        request_id: Any,
        decision: Union[AllocationRequestStatus, str],
        actor: CurrentUser,
        rejection_reason: Optional[str],
        note: Optional[str],
    ) -> AllocationRequestRead:
        ensure_permitted(actor, family, AllocationOperation.REVIEW)

        try:
            decision = AllocationRequestStatus(decision)
        except ValueError:
            raise ValidationError("Invalid status") from None
        request_uuid = _as_uuid(request_id, "allocation request id")

        values = review_values(decision, actor.id, utcnow(), rejection_reason)
        updated = await self.request_repo.apply_review(
            request_uuid, family, values, note=(note or "").strip() or None
        )

        if updated is None:
            existing = await self.request_repo.get_in_family(request_uuid, family)
            if existing is None:
                raise NotFoundError("Allocation request not found")
            raise ConflictError(f"Allocation request is {existing.status} and can no longer be reviewed")

        LOGGER.info(
            f"Allocation request {request_uuid} reviewed: {decision.value}",
            extra={"request_id": str(request_uuid), "status": decision.value, "actor": actor.id},
        )
        return AllocationRequestRead.model_validate(updated)

    # Bulk transitions

    async def bulk_submit(
        self, family: TransactionFamily, ids: Sequence[Any], actor: CurrentUser
    ) -> BulkTransitionResult:
        """Move APPROVED requests to SUBMITTED."""
        return await self._bulk(AllocationOperation.SUBMIT, family, ids, actor)

    async def bulk_allocate(
        self, family: TransactionFamily, ids: Sequence[Any], actor: CurrentUser
    ) -> BulkTransitionResult:
        """Move SUBMITTED requests to ALLOCATED."""
        return await self._bulk(AllocationOperation.ALLOCATE, family, ids, actor)

    async def bulk_mark_duplicate(
        self, family: TransactionFamily, ids: Sequence[Any], actor: CurrentUser
    ) -> BulkTransitionResult:
        """Move SUBMITTED requests to DUPLICATE."""
        return await self._bulk(AllocationOperation.MARK_DUPLICATE, family, ids, actor)

    async def _bulk(
        self,
        operation: AllocationOperation,
        family: TransactionFamily,
        ids: Sequence[Any],
        actor: CurrentUser,
    ) -> BulkTransitionResult:
        return await self.execute(
            action="bulk_transition",
            operation=operation,
            family=family,
            ids=ids,
            actor=actor,
        )

    async def _bulk_transition_logic(
        self,
        operation: AllocationOperation,
        family: TransactionFamily,
        ids: Sequence[Any],
        actor: CurrentUser,
    ) -> BulkTransitionResult:
        ensure_permitted(actor, family, operation)

        if not ids:
            raise ValidationError("No request ids provided")
        request_ids = list(dict.fromkeys(_as_uuid(i, "allocation request id") for i in ids))

        transition = BULK_TRANSITIONS[operation]
        matched, modified = await self.request_repo.bulk_transition(
            request_ids,
            family,
            transition.source,
            transition.target,
            {transition.by_field: actor.id, transition.at_field: utcnow()},
        )

        LOGGER.info(
            f"{modified} of {len(request_ids)} {family.value} allocation request(s) {transition.verb}",
            extra={
                "operation": operation.value,
                "requested": len(request_ids),
                "matched": matched,
                "modified": modified,
                "actor": actor.id,
            },
        )

        if modified > 0 and transition.notification_type is not None:
            self.notifier.dispatch(
                f"{family.value} allocation requests {transition.verb}",
                f"{actor.display_name} {transition.verb} {modified} {family.value} allocation request(s).",
                type=transition.notification_type,
            )

        return BulkTransitionResult(matched=matched, modified=modified)

    # Queries

    async def list_allocation_requests(
        self,
        family: TransactionFamily,
        actor: CurrentUser,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[AllocationRequestStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> AllocationRequestPage:
        return await self.execute(
            action="list",
            family=family,
            actor=actor,
            page=page,
            limit=limit,
            status=status,
            start=start,
            end=end,
        )

    async def _list_logic(
        self,
        family: TransactionFamily,
        actor: CurrentUser,
        page: int,
        limit: Optional[int],
        status: Optional[AllocationRequestStatus],
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> AllocationRequestPage:
        ensure_permitted(actor, family, AllocationOperation.VIEW)

        config = settings.reconciliation
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or config.default_page_size), 1), config.max_page_size)

        items, total = await self.request_repo.list_requests(
            family,
            offset=(page - 1) * limit,
            limit=limit,
            status=status,
            start=start,
            end=end,
        )
        return AllocationRequestPage(
            items=[AllocationRequestRead.model_validate(item) for item in items],
            pagination=Pagination(page=page, limit=limit, total=total),
        )

    async def get_allocation_request(
        self, family: TransactionFamily, request_id: Any, actor: CurrentUser
    ) -> AllocationRequestDetail:
        return await self.execute(action="get", family=family, request_id=request_id, actor=actor)

    async def _get_logic(
        self, family: TransactionFamily, request_id: Any, actor: CurrentUser
    ) -> AllocationRequestDetail:
        ensure_permitted(actor, family, AllocationOperation.VIEW)

        request = await self.request_repo.get_in_family(_as_uuid(request_id, "allocation request id"), family)
        if request is None:
            raise NotFoundError("Allocation request not found")

        model = TransactionModel(request.transaction_model)
        transaction = await self.transaction_repo.resolve(model, request.transaction_id)
        return AllocationRequestDetail(
            item=AllocationRequestRead.model_validate(request),
            transaction=to_transaction_read(model, transaction) if transaction is not None else None,
        )

    async def summarize_allocation_requests(
        self, family: TransactionFamily, actor: CurrentUser
    ) -> AllocationStatusSummary:
        return await self.execute(action="summary", family=family, actor=actor)

    async def _summary_logic(self, family: TransactionFamily, actor: CurrentUser) -> AllocationStatusSummary:
        ensure_permitted(actor, family, AllocationOperation.VIEW)

        counts = await self.request_repo.count_by_status(family)
        by_status = {status: counts.get(status, 0) for status in AllocationRequestStatus}
        return AllocationStatusSummary(family=family, total=sum(by_status.values()), by_status=by_status)

    # Duplicate scans

    async def scan_persisted_requests(
        self,
        family: TransactionFamily,
        receipts: Sequence[ReceiptRow],
        actor: CurrentUser,
        status: AllocationRequestStatus = AllocationRequestStatus.SUBMITTED,
    ) -> ScanResult:
        """Scan the family's stored requests in ``status`` against ASSIT receipts."""
        return await self.execute(
            action="scan_persisted",
            family=family,
            receipts=receipts,
            actor=actor,
            status=status,
        )

    async def _scan_persisted_logic(
        self,
        family: TransactionFamily,
        receipts: Sequence[ReceiptRow],
        actor: CurrentUser,
        status: AllocationRequestStatus,
    ) -> ScanResult:
        ensure_permitted(actor, family, AllocationOperation.SCAN)

        requests = await self.request_repo.list_by_status(family, status)

        ids_by_model: Dict[TransactionModel, List[uuid.UUID]] = defaultdict(list)
        for request in requests:
            ids_by_model[TransactionModel(request.transaction_model)].append(request.transaction_id)
        transactions = {
            model: await self.transaction_repo.get_many(model, ids) for model, ids in ids_by_model.items()
        }

        scannable = []
        for request in requests:
            model = TransactionModel(request.transaction_model)
            transaction = transactions.get(model, {}).get(request.transaction_id)
            scannable.append(
                ScannableAllocationRequest(
                    id=str(request.id),
                    policy_number=request.policy_number,
                    transaction_model=model,
                    type=request.type,
                    status=request.status,
                    transaction=(
                        ScannableTransaction(**to_transaction_read(model, transaction).model_dump(mode="json"))
                        if transaction is not None
                        else None
                    ),
                )
            )

        return scan_for_duplicates(scannable, receipts, scan_timezone())

    async def scan_supplied_requests(
        self,
        allocation_requests: Sequence[Union[ScannableAllocationRequest, RawAllocationRequest]],
        receipts: Sequence[ReceiptRow],
        actor: CurrentUser,
    ) -> ScanResult:
        """Scan caller-supplied requests, which may mix both families.

        Posted items are validated one by one; a malformed item is reported as
        failed and does not affect the rest of the batch.
        """
        return await self.execute(
            action="scan_supplied",
            allocation_requests=allocation_requests,
            receipts=receipts,
            actor=actor,
        )

    async def _scan_supplied_logic(
        self,
        allocation_requests: Sequence[Union[ScannableAllocationRequest, RawAllocationRequest]],
        receipts: Sequence[ReceiptRow],
        actor: CurrentUser,
    ) -> ScanResult:
        items = [parse_request(item) or item for item in allocation_requests]

        # Malformed items are not evaluated and carry no family
        families = set()
        for request in items:
            if not isinstance(request, ScannableAllocationRequest):
                continue
            if request.type is not None:
                families.add(request.type)
            elif request.transaction_model is not None:
                families.add(TransactionFamily.from_model(request.transaction_model))
            else:
                families.add(None)

        if None in families or not families:
            ensure_any_role(actor, CROSS_FAMILY_SCAN_ROLES)
        for family in families - {None}:
            ensure_permitted(actor, family, AllocationOperation.SCAN)

        return scan_for_duplicates(items, receipts, scan_timezone())
