"""Duplicate scan of allocation requests against an ASSIT receipt export.

Pure classification: nothing is read from or written to the database. Each
request ends up in exactly one of three buckets:

- failed: no resolved transaction, a malformed request, or one that could not be evaluated
- duplicate: ASSIT already holds a receipt for the policy on the transaction's day
- import: safe to push into ASSIT
"""

from collections import defaultdict
from datetime import date, timezone, tzinfo
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from portal.schemas.enums import ScanOutcome
from portal.schemas.scan import (
    RawAllocationRequest,
    ReceiptRow,
    ScannableAllocationRequest,
    ScanResult,
    ScanStats,
)
from portal.utils.dates import calendar_day, try_calendar_day
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Column names seen across ASSIT export versions
POLICY_ID_FIELDS = ("MembershipID", "membership_id", "Membership ID")
EFFECTIVE_DATE_FIELDS = ("Effective Date", "effective_date", "EffectiveDate")


def _first_present(row: Mapping[str, Any], fields: Iterable[str]) -> Any:
    for field in fields:
        value = row.get(field)
        if value not in (None, ""):
            return value
    return None


def normalize_policy_id(value: Any) -> Optional[str]:
    """Compare policy ids as trimmed strings; spreadsheet exports may yield numbers."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_request(
    item: Union[ScannableAllocationRequest, RawAllocationRequest],
) -> Optional[ScannableAllocationRequest]:
    """Validate a single posted request; None when it is malformed."""
    if isinstance(item, ScannableAllocationRequest):
        return item
    try:
        return ScannableAllocationRequest.model_validate(item)
    except ValidationError:
        return None


def index_receipts(
    receipts: Sequence[ReceiptRow], tz: tzinfo = timezone.utc
) -> dict[str, list[Optional[date]]]:
    """Group receipt effective days by policy id.

    Receipts without a policy id are ignored. An unparseable effective date is
    kept as None: it still counts as a policy match but never as a same-day one.
    """
    index: dict[str, list[Optional[date]]] = defaultdict(list)
    for receipt in receipts:
        policy_id = normalize_policy_id(_first_present(receipt, POLICY_ID_FIELDS))
        if policy_id is None:
            continue
        index[policy_id].append(try_calendar_day(_first_present(receipt, EFFECTIVE_DATE_FIELDS), tz))
    return index


def classify_request(
    request: ScannableAllocationRequest,
    receipt_days_by_policy: Mapping[str, list[Optional[date]]],
    tz: tzinfo = timezone.utc,
) -> ScanOutcome:
    """Classify a single request against indexed receipts.

    Args:
        request: Request to classify
        receipt_days_by_policy: Output of ``index_receipts``
        tz: Timezone in which calendar days are compared

    Returns:
        ScanOutcome: FAILED, DUPLICATE or IMPORTABLE
    """
    if request.transaction is None:
        return ScanOutcome.FAILED

    try:
        receipt_days = receipt_days_by_policy.get(normalize_policy_id(request.policy_number) or "", [])
        if not receipt_days:
            return ScanOutcome.IMPORTABLE

        transaction_day = calendar_day(request.transaction.date, tz)
        if any(day == transaction_day for day in receipt_days):
            return ScanOutcome.DUPLICATE
        return ScanOutcome.IMPORTABLE

    except Exception as e:
        LOGGER.warning(
            f"Could not evaluate allocation request {request.id}: {e}",
            extra={"policy_number": request.policy_number},
        )
        return ScanOutcome.FAILED


def scan_for_duplicates(
    allocation_requests: Sequence[Union[ScannableAllocationRequest, RawAllocationRequest]],
    receipts: Sequence[ReceiptRow],
    tz: tzinfo = timezone.utc,
) -> ScanResult:
    """Partition requests into failed, duplicate and importable.

    The same inputs always yield the same partition, in input order.

    Args:
        allocation_requests: Requests to evaluate, as models or posted mappings.
            Mappings that fail validation are reported as failed.
        receipts: Rows of the ASSIT receipt export
        tz: Timezone in which calendar days are compared

    Returns:
        ScanResult: The three partitions plus aggregate counters
    """
    result = ScanResult(
        stats=ScanStats(
            total_requests=len(allocation_requests),
            receipts_from_assit=len(receipts),
        )
    )
    receipt_days_by_policy = index_receipts(receipts, tz)

    for item in allocation_requests:
        request = parse_request(item)
        if request is None:
            LOGGER.warning("Malformed allocation request in scan", extra={"request": item})
            result.stats.requests_to_scan += 1
            result.failed_requests.append(item)
            continue

        if request.transaction is None:
            result.stats.requests_without_transactions += 1
            result.failed_requests.append(request)
            continue

        result.stats.requests_to_scan += 1
        outcome = classify_request(request, receipt_days_by_policy, tz)
        if outcome is ScanOutcome.DUPLICATE:
            result.duplicate_requests.append(request)
        elif outcome is ScanOutcome.IMPORTABLE:
            result.import_requests.append(request)
        else:
            result.failed_requests.append(request)

    result.stats.failed_requests = len(result.failed_requests)
    result.stats.duplicate_requests = len(result.duplicate_requests)
    result.stats.import_requests = len(result.import_requests)

    LOGGER.info(
        "Duplicate scan completed",
        extra=result.stats.model_dump(),
    )
    return result
