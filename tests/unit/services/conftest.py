"""In-memory doubles for the allocation workflow service tests."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from portal.core.exceptions import ConflictError
from portal.database.models import AllocationRequest, EasypayTransaction, EftTransaction
from portal.repositories.allocation_request_repository import ACTIVE_CONFLICT_MESSAGE
from portal.schemas.enums import (
    INACTIVE_STATUSES,
    TERMINAL_STATUSES,
    AllocationRequestStatus,
    TransactionModel,
)
from portal.services.allocation_service import AllocationRequestService
from portal.services.notification_service import NotificationService
from portal.services.storage_service import StorageService


class InMemoryAllocationRequestRepository:
    """Dict-backed stand-in with the same guarded semantics as the SQL repository.

    Each method mutates state without awaiting in between, so under asyncio
    it is as atomic as the single UPDATE statements it stands in for.
    """

    def __init__(self):
        self.rows: Dict[uuid.UUID, AllocationRequest] = {}
        self._sequence = count()

    def _is_active(self, row: AllocationRequest) -> bool:
        return AllocationRequestStatus(row.status) not in INACTIVE_STATUSES

    async def get_in_family(self, id, family):
        row = self.rows.get(id)
        if row is None or row.type != family.value:
            return None
        return row

    async def find_active_for_transaction(self, transaction_id):
        for row in self.rows.values():
            if row.transaction_id == transaction_id and self._is_active(row):
                return row
        return None

    async def create_request(self, **fields):
        if await self.find_active_for_transaction(fields["transaction_id"]) is not None:
            raise ConflictError(ACTIVE_CONFLICT_MESSAGE)
        # Strictly increasing creation times keep newest-first ordering deterministic
        fields["created_at"] = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(self._sequence))
        row = AllocationRequest(**fields)
        self.rows[row.id] = row
        return row

    async def apply_review(self, id, family, values, note=None):
        row = await self.get_in_family(id, family)
        if row is None or AllocationRequestStatus(row.status) in TERMINAL_STATUSES:
            return None

        becomes_active = AllocationRequestStatus(values["status"]) not in INACTIVE_STATUSES
        if becomes_active and not self._is_active(row):
            holder = await self.find_active_for_transaction(row.transaction_id)
            if holder is not None and holder.id != row.id:
                raise ConflictError(ACTIVE_CONFLICT_MESSAGE)

        for key, value in values.items():
            setattr(row, key, value)
        if note:
            row.notes = [*row.notes, note]
        return row

    async def bulk_transition(self, ids, family, from_status, to_status, stamp):
        unique_ids = list(dict.fromkeys(ids))
        in_family = [self.rows[i] for i in unique_ids if i in self.rows and self.rows[i].type == family.value]
        modified = 0
        for row in in_family:
            if row.status == from_status.value:
                row.status = to_status.value
                for key, value in stamp.items():
                    setattr(row, key, value)
                modified += 1
        return len(in_family), modified

    async def list_requests(self, family, offset=0, limit=20, status=None, start=None, end=None):
        rows = [r for r in self.rows.values() if r.type == family.value]
        if status is not None:
            rows = [r for r in rows if r.status == status.value]
        if start is not None:
            rows = [r for r in rows if r.created_at >= start]
        if end is not None:
            rows = [r for r in rows if r.created_at <= end]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[offset : offset + limit], len(rows)

    async def count_by_status(self, family):
        counts: Dict[AllocationRequestStatus, int] = {}
        for row in self.rows.values():
            if row.type == family.value:
                status = AllocationRequestStatus(row.status)
                counts[status] = counts.get(status, 0) + 1
        return counts

    async def list_by_status(self, family, status):
        return [r for r in self.rows.values() if r.type == family.value and r.status == status.value]


class InMemoryTransactionRepository:
    def __init__(self):
        self.rows: Dict[TransactionModel, Dict[uuid.UUID, Any]] = {model: {} for model in TransactionModel}
        self.get_many_calls: List[TransactionModel] = []

    def add_eft(self, date: str = "2024-03-11T09:30:00Z", amount: str = "250.00") -> EftTransaction:
        row = EftTransaction(
            id=uuid.uuid4(),
            date=date,
            amount=Decimal(amount),
            source="FNB",
            description="DEPOSIT",
            additional_information="--",
        )
        self.rows[TransactionModel.EFT][row.id] = row
        return row

    def add_easypay(self, date: str = "2024-03-11", easypay_number: str = "9123456789") -> EasypayTransaction:
        row = EasypayTransaction(
            id=uuid.uuid4(),
            date=date,
            amount=Decimal("99.50"),
            easypay_number=easypay_number,
            policy_number=None,
        )
        self.rows[TransactionModel.EASYPAY][row.id] = row
        return row

    async def resolve(self, model, id):
        return self.rows[TransactionModel(model)].get(id)

    async def get_many(self, model, ids):
        self.get_many_calls.append(TransactionModel(model))
        return {i: self.rows[TransactionModel(model)][i] for i in ids if i in self.rows[TransactionModel(model)]}


@pytest.fixture
def request_repo() -> InMemoryAllocationRequestRepository:
    return InMemoryAllocationRequestRepository()


@pytest.fixture
def transaction_repo() -> InMemoryTransactionRepository:
    return InMemoryTransactionRepository()


@pytest.fixture
def policy_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.exists.return_value = True
    return repo


@pytest.fixture
def storage_service() -> AsyncMock:
    storage = AsyncMock(spec=StorageService)
    storage.upload_file.side_effect = lambda file, path: f"https://test.supabase.co/storage/v1/object/public/allocation-evidence/{path}"
    storage.delete_files.return_value = True
    return storage


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=NotificationService)


@pytest.fixture
def service(request_repo, transaction_repo, policy_repo, storage_service, notifier) -> AllocationRequestService:
    return AllocationRequestService(
        request_repo=request_repo,
        transaction_repo=transaction_repo,
        policy_repo=policy_repo,
        storage_service=storage_service,
        notifier=notifier,
    )


@pytest.fixture
def evidence_file():
    def _make(filename: str = "slip.pdf", content: bytes = b"%PDF-1.4"):
        upload = MagicMock()
        upload.filename = filename
        upload.content_type = "application/pdf"
        upload.read = AsyncMock(return_value=content)
        return upload

    return _make
