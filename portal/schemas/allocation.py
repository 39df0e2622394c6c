"""Request and response schemas for allocation requests."""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from portal.schemas.enums import AllocationRequestStatus, TransactionFamily, TransactionModel
from portal.schemas.transaction import TransactionRead


class AllocationRequestRead(BaseModel):
    """Allocation request as stored, with its full transition history."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: UUID
    transaction_model: TransactionModel
    type: TransactionFamily
    policy_number: str
    easypay_number: Optional[str] = None
    notes: List[str] = Field(default_factory=list)
    evidence: List[str] = Field(default_factory=list)
    status: AllocationRequestStatus

    requested_by: str
    requested_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    allocated_by: Optional[str] = None
    allocated_at: Optional[datetime] = None
    marked_as_duplicate_by: Optional[str] = None
    marked_as_duplicate_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AllocationRequestDetail(BaseModel):
    """A request together with its resolved transaction, if it still exists."""

    item: AllocationRequestRead
    transaction: Optional[TransactionRead] = None


class AllocationRequestCreated(BaseModel):
    id: UUID
    evidence: List[str] = Field(default_factory=list)


class ReviewAllocationRequest(BaseModel):
    """Body of a single-request review decision."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(..., description="APPROVED, REJECTED or CANCELLED")
    rejection_reason: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("rejection_reason", "rejectionReason"),
        description="Required when rejecting",
    )
    note: Optional[str] = Field(None, description="Reviewer comment appended to the request notes")


class BulkTransitionRequest(BaseModel):
    ids: List[UUID] = Field(default_factory=list, description="Allocation request IDs")


class BulkTransitionResult(BaseModel):
    """Outcome of a guarded bulk transition.

    ``matched`` counts requests that exist; ``modified`` counts those that were
    in the required source state and moved. A gap means some ids were stale.
    """

    matched: int
    modified: int


class Pagination(BaseModel):
    page: int
    limit: int
    total: int


class AllocationRequestPage(BaseModel):
    items: List[AllocationRequestRead]
    pagination: Pagination


class AllocationStatusSummary(BaseModel):
    family: TransactionFamily
    total: int
    by_status: Dict[AllocationRequestStatus, int]
