"""Schemas for the ASSIT duplicate scan."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from portal.schemas.enums import AllocationRequestStatus, TransactionFamily, TransactionModel

ReceiptRow = Dict[str, Any]

# A request as posted by a caller, validated per item during the scan
RawAllocationRequest = Dict[str, Any]


class ScannableTransaction(BaseModel):
    """The part of a transaction the scanner reads. Other fields pass through."""

    model_config = ConfigDict(extra="allow")

    date: Union[datetime, date, str]


class ScannableAllocationRequest(BaseModel):
    """An allocation request as supplied to the scanner.

    ``transaction`` is None when the request's transaction could not be
    resolved; such requests are reported as failed without being scanned.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "_id"))
    policy_number: str = Field(..., validation_alias=AliasChoices("policy_number", "policyNumber"))
    transaction_model: Optional[TransactionModel] = Field(
        None, validation_alias=AliasChoices("transaction_model", "transactionModel")
    )
    type: Optional[TransactionFamily] = None
    status: Optional[AllocationRequestStatus] = None
    transaction: Optional[ScannableTransaction] = None

    @model_validator(mode="after")
    def check_model_matches_type(self) -> "ScannableAllocationRequest":
        if self.transaction_model and self.type:
            if TransactionFamily.from_model(self.transaction_model) is not self.type:
                raise ValueError(
                    f"transaction_model {self.transaction_model.value} does not match type {self.type.value}"
                )
        return self


class ScanRequest(BaseModel):
    """Caller-supplied requests and ASSIT receipt export rows."""

    model_config = ConfigDict(populate_by_name=True)

    allocation_requests: List[RawAllocationRequest] = Field(
        ..., validation_alias=AliasChoices("allocation_requests", "allocationRequests")
    )
    receipts: List[ReceiptRow] = Field(
        ..., validation_alias=AliasChoices("receipts", "receiptsFromASSIT", "receipts_from_assit")
    )


class PersistedScanRequest(BaseModel):
    """Receipts to scan the family's stored requests against."""

    model_config = ConfigDict(populate_by_name=True)

    receipts: List[ReceiptRow] = Field(
        ..., validation_alias=AliasChoices("receipts", "receiptsFromASSIT", "receipts_from_assit")
    )
    status: AllocationRequestStatus = AllocationRequestStatus.SUBMITTED


class ScanStats(BaseModel):
    total_requests: int = 0
    receipts_from_assit: int = 0
    requests_without_transactions: int = 0
    requests_to_scan: int = 0
    failed_requests: int = 0
    duplicate_requests: int = 0
    import_requests: int = 0


class ScanResult(BaseModel):
    failed_requests: List[Union[ScannableAllocationRequest, RawAllocationRequest]] = Field(default_factory=list)
    duplicate_requests: List[ScannableAllocationRequest] = Field(default_factory=list)
    import_requests: List[ScannableAllocationRequest] = Field(default_factory=list)
    stats: ScanStats = Field(default_factory=ScanStats)
