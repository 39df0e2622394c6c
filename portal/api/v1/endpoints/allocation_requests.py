from datetime import datetime
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status

from portal.api.deps import get_allocation_service, get_family
from portal.core.auth import get_current_user
from portal.schemas.allocation import BulkTransitionRequest, ReviewAllocationRequest
from portal.schemas.auth import CurrentUser
from portal.schemas.enums import AllocationRequestStatus, TransactionFamily
from portal.schemas.responses import ApiResponse
from portal.schemas.scan import PersistedScanRequest, ScanRequest
from portal.services.allocation_service import AllocationRequestService
from portal.utils.logging import get_logger
from portal.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()

CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
FamilyDep = Annotated[TransactionFamily, Depends(get_family)]
ServiceDep = Annotated[AllocationRequestService, Depends(get_allocation_service)]


@router.post(
    "/scan/duplicates",
    response_model=ApiResponse,
    summary="Scan supplied allocation requests for ASSIT duplicates",
    operation_id="scan_supplied_allocation_requests",
)
async def scan_supplied_requests(
    request: Request,
    body: ScanRequest,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Classify caller-supplied requests as failed, duplicate or importable."""
    result = await service.scan_supplied_requests(body.allocation_requests, body.receipts, current_user)
    return create_api_response(data=result, message="Duplicate scan completed", request=request)


@router.post(
    "/{family}/request-allocation",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request allocation of a transaction to a policy",
    operation_id="create_allocation_request",
)
async def create_allocation_request(
    request: Request,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
    transaction_id: Optional[str] = Form(None),
    policy_number: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    evidence: Optional[List[UploadFile]] = File(None, description="Supporting evidence files"),
) -> ApiResponse:
    """Open a PENDING allocation request, uploading any evidence first."""
    created = await service.create_allocation_request(
        family,
        transaction_id,
        policy_number,
        current_user,
        notes=notes,
        evidence_files=evidence,
    )
    return create_api_response(
        data=created,
        message="Allocation request created",
        request=request,
    )


@router.get(
    "/{family}/allocation-requests",
    response_model=ApiResponse,
    summary="List allocation requests",
    operation_id="list_allocation_requests",
)
async def list_allocation_requests(
    request: Request,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size, capped at the configured maximum"),
    status: Optional[AllocationRequestStatus] = Query(None),
    start: Optional[datetime] = Query(None, description="Created at or after"),
    end: Optional[datetime] = Query(None, description="Created at or before"),
) -> ApiResponse:
    result = await service.list_allocation_requests(
        family,
        current_user,
        page=page,
        limit=limit,
        status=status,
        start=start,
        end=end,
    )
    return create_api_response(data=result, message="Allocation requests retrieved", request=request)


@router.get(
    "/{family}/allocation-requests/summary",
    response_model=ApiResponse,
    summary="Count allocation requests by status",
    operation_id="summarize_allocation_requests",
)
async def summarize_allocation_requests(
    request: Request,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    result = await service.summarize_allocation_requests(family, current_user)
    return create_api_response(data=result, message="Allocation request summary retrieved", request=request)


@router.post(
    "/{family}/allocation-requests/submit",
    response_model=ApiResponse,
    summary="Submit approved allocation requests",
    operation_id="submit_allocation_requests",
)
async def submit_allocation_requests(
    request: Request,
    body: BulkTransitionRequest,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Move APPROVED requests to SUBMITTED. Requests in any other state are skipped."""
    result = await service.bulk_submit(family, body.ids, current_user)
    return create_api_response(
        data=result,
        message=f"{result.modified} allocation request(s) submitted",
        request=request,
    )


@router.post(
    "/{family}/allocation-requests/allocate",
    response_model=ApiResponse,
    summary="Mark submitted allocation requests as allocated",
    operation_id="allocate_allocation_requests",
)
async def allocate_allocation_requests(
    request: Request,
    body: BulkTransitionRequest,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    result = await service.bulk_allocate(family, body.ids, current_user)
    return create_api_response(
        data=result,
        message=f"{result.modified} allocation request(s) allocated",
        request=request,
    )


@router.post(
    "/{family}/allocation-requests/mark-duplicates",
    response_model=ApiResponse,
    summary="Mark submitted allocation requests as duplicates",
    operation_id="mark_duplicate_allocation_requests",
)
async def mark_duplicate_allocation_requests(
    request: Request,
    body: BulkTransitionRequest,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    result = await service.bulk_mark_duplicate(family, body.ids, current_user)
    return create_api_response(
        data=result,
        message=f"{result.modified} allocation request(s) marked as duplicate",
        request=request,
    )


@router.post(
    "/{family}/allocation-requests/scan",
    response_model=ApiResponse,
    summary="Scan stored allocation requests for ASSIT duplicates",
    operation_id="scan_allocation_requests",
)
async def scan_allocation_requests(
    request: Request,
    body: PersistedScanRequest,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Scan the family's requests in ``status`` (SUBMITTED by default) against a receipt export."""
    result = await service.scan_persisted_requests(family, body.receipts, current_user, status=body.status)
    return create_api_response(data=result, message="Duplicate scan completed", request=request)


@router.get(
    "/{family}/allocation-requests/{request_id}",
    response_model=ApiResponse,
    summary="Get an allocation request with its transaction",
    operation_id="get_allocation_request",
)
async def get_allocation_request(
    request: Request,
    request_id: UUID,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    result = await service.get_allocation_request(family, request_id, current_user)
    return create_api_response(data=result, message="Allocation request retrieved", request=request)


@router.patch(
    "/{family}/allocation-requests/{request_id}",
    response_model=ApiResponse,
    summary="Approve, reject or cancel an allocation request",
    operation_id="review_allocation_request",
)
async def review_allocation_request(
    request: Request,
    request_id: UUID,
    body: ReviewAllocationRequest,
    family: FamilyDep,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    result = await service.review_allocation_request(
        family,
        request_id,
        body.status,
        current_user,
        rejection_reason=body.rejection_reason,
        note=body.note,
    )
    LOGGER.info(f"Review recorded by {current_user.id} for allocation request {request_id}")
    return create_api_response(
        data=result,
        message=f"Allocation request {result.status.value.lower()}",
        request=request,
    )
