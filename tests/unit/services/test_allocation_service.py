"""Unit tests for the allocation request workflow service."""

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from portal.core.exceptions import (
    AppError,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from portal.schemas.enums import AllocationRequestStatus, TransactionFamily, TransactionModel
from portal.schemas.scan import ScannableAllocationRequest
from portal.schemas.transaction import EasypayTransactionRead, EftTransactionRead
from portal.services.notification_service import NotificationType

EFT = TransactionFamily.EFT
EASYPAY = TransactionFamily.EASYPAY


@pytest.fixture
def reviewer(make_user):
    return make_user("eft_reviewer", id="reviewer-1")


@pytest.fixture
def allocator(make_user):
    return make_user("eft_allocator", id="allocator-1")


@pytest.fixture
def admin(make_user):
    return make_user("admin", id="admin-1")


@pytest.fixture
def clerk(make_user):
    return make_user("user", id="clerk-1")


async def create_eft(service, transaction_repo, actor, policy_number="POL-100", **kwargs):
    transaction = transaction_repo.add_eft()
    created = await service.create_allocation_request(EFT, transaction.id, policy_number, actor, **kwargs)
    return transaction, created


async def move_to(service, request_id, status, reviewer, allocator):
    """Drive a request along the happy path up to ``status``."""
    await service.review_allocation_request(EFT, request_id, AllocationRequestStatus.APPROVED, reviewer)
    if status is AllocationRequestStatus.APPROVED:
        return
    await service.bulk_submit(EFT, [request_id], reviewer)
    if status is AllocationRequestStatus.SUBMITTED:
        return
    await service.bulk_allocate(EFT, [request_id], allocator)


class TestCreateAllocationRequest:
    @pytest.mark.asyncio
    async def test_creates_pending_request(self, service, request_repo, transaction_repo, clerk):
        transaction, created = await create_eft(service, transaction_repo, clerk, notes="Paid at branch")

        row = request_repo.rows[created.id]
        assert row.status == AllocationRequestStatus.PENDING.value
        assert row.transaction_id == transaction.id
        assert row.transaction_model == TransactionModel.EFT.value
        assert row.type == EFT.value
        assert row.requested_by == "clerk-1"
        assert row.requested_at is not None
        assert row.notes == ["Paid at branch"]
        assert row.easypay_number is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transaction_id,policy_number", [(None, "POL-1"), ("", "POL-1"), ("tx", "  "), ("tx", None)])
    async def test_missing_fields(self, service, clerk, transaction_id, policy_number):
        with pytest.raises(ValidationError, match="Missing required fields"):
            await service.create_allocation_request(EFT, transaction_id, policy_number, clerk)

    @pytest.mark.asyncio
    async def test_unknown_assit_policy(self, service, policy_repo, transaction_repo, request_repo, clerk):
        policy_repo.exists.return_value = False

        with pytest.raises(NotFoundError, match="ASSIT policy not found"):
            await create_eft(service, transaction_repo, clerk)
        assert request_repo.rows == {}

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, service, clerk):
        with pytest.raises(NotFoundError, match="Transaction not found"):
            await service.create_allocation_request(EFT, uuid.uuid4(), "POL-1", clerk)

    @pytest.mark.asyncio
    async def test_easypay_skips_policy_check_and_copies_easypay_number(
        self, service, policy_repo, transaction_repo, request_repo, clerk
    ):
        transaction = transaction_repo.add_easypay(easypay_number="9000111")

        created = await service.create_allocation_request(EASYPAY, str(transaction.id), "POL-7", clerk)

        policy_repo.exists.assert_not_awaited()
        row = request_repo.rows[created.id]
        assert row.easypay_number == "9000111"
        assert row.transaction_model == TransactionModel.EASYPAY.value
        assert row.type == EASYPAY.value

    @pytest.mark.asyncio
    async def test_evidence_uploaded_under_request_folder(
        self, service, storage_service, transaction_repo, request_repo, clerk, evidence_file
    ):
        _, created = await create_eft(
            service, transaction_repo, clerk, evidence_files=[evidence_file("slip.pdf"), evidence_file("id.png")]
        )

        paths = [call.args[1] for call in storage_service.upload_file.await_args_list]
        assert paths == [
            f"allocation-requests/{created.id}/evidence_slip.pdf",
            f"allocation-requests/{created.id}/evidence_id.png",
        ]
        assert request_repo.rows[created.id].evidence == created.evidence
        assert created.evidence[0].endswith(f"allocation-requests/{created.id}/evidence_slip.pdf")

    @pytest.mark.asyncio
    async def test_failed_upload_creates_nothing_and_removes_uploaded_files(
        self, service, storage_service, transaction_repo, request_repo, clerk, evidence_file
    ):
        uploaded = []

        async def upload(file, path):
            if file.filename == "second.pdf":
                raise StorageError("Evidence upload failed with status 500")
            uploaded.append(path)
            return f"https://storage/{path}"

        storage_service.upload_file.side_effect = upload

        with pytest.raises(StorageError):
            await create_eft(
                service,
                transaction_repo,
                clerk,
                evidence_files=[evidence_file("first.pdf"), evidence_file("second.pdf")],
            )

        assert request_repo.rows == {}
        storage_service.delete_files.assert_awaited_once_with(uploaded)

    @pytest.mark.asyncio
    async def test_second_active_request_conflicts(self, service, transaction_repo, request_repo, clerk):
        transaction, _ = await create_eft(service, transaction_repo, clerk)

        with pytest.raises(ConflictError, match="already exists"):
            await service.create_allocation_request(EFT, transaction.id, "POL-200", clerk)
        assert len(request_repo.rows) == 1

    @pytest.mark.asyncio
    async def test_conflict_on_insert_removes_uploaded_evidence(
        self, service, storage_service, transaction_repo, request_repo, clerk, evidence_file
    ):
        request_repo.create_request = AsyncMock(side_effect=ConflictError("An allocation request already exists"))

        with pytest.raises(ConflictError):
            await create_eft(service, transaction_repo, clerk, evidence_files=[evidence_file()])

        storage_service.delete_files.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("decision", [AllocationRequestStatus.REJECTED, AllocationRequestStatus.CANCELLED])
    async def test_new_request_allowed_after_inactive_one(
        self, service, transaction_repo, request_repo, clerk, reviewer, decision
    ):
        transaction, first = await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(
            EFT, first.id, decision, reviewer, rejection_reason="Wrong policy"
        )

        second = await service.create_allocation_request(EFT, transaction.id, "POL-101", clerk)

        assert second.id != first.id
        assert len(request_repo.rows) == 2


class TestReviewAllocationRequest:
    @pytest.mark.asyncio
    async def test_approve_stamps_approver(self, service, transaction_repo, clerk, reviewer):
        _, created = await create_eft(service, transaction_repo, clerk)

        result = await service.review_allocation_request(EFT, created.id, "APPROVED", reviewer)

        assert result.status is AllocationRequestStatus.APPROVED
        assert result.approved_by == "reviewer-1"
        assert result.approved_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [None, "", "   "])
    async def test_reject_requires_reason(self, service, transaction_repo, request_repo, clerk, reviewer, reason):
        _, created = await create_eft(service, transaction_repo, clerk)

        with pytest.raises(ValidationError, match="Rejection reason is required"):
            await service.review_allocation_request(
                EFT, created.id, AllocationRequestStatus.REJECTED, reviewer, rejection_reason=reason
            )
        assert request_repo.rows[created.id].status == AllocationRequestStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_reject_records_trimmed_reason(self, service, transaction_repo, clerk, reviewer):
        _, created = await create_eft(service, transaction_repo, clerk)

        result = await service.review_allocation_request(
            EFT, created.id, AllocationRequestStatus.REJECTED, reviewer, rejection_reason="  Policy lapsed "
        )

        assert result.status is AllocationRequestStatus.REJECTED
        assert result.rejection_reason == "Policy lapsed"
        assert result.rejected_by == "reviewer-1"

    @pytest.mark.asyncio
    async def test_reapproving_rejected_request_clears_rejection(self, service, transaction_repo, clerk, reviewer):
        _, created = await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(
            EFT, created.id, AllocationRequestStatus.REJECTED, reviewer, rejection_reason="Unclear slip"
        )

        result = await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.APPROVED, reviewer)

        assert result.status is AllocationRequestStatus.APPROVED
        assert result.rejected_by is None
        assert result.rejected_at is None
        assert result.rejection_reason is None

    @pytest.mark.asyncio
    async def test_cancel_clears_approval(self, service, transaction_repo, clerk, reviewer):
        _, created = await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.APPROVED, reviewer)

        result = await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.CANCELLED, reviewer)

        assert result.status is AllocationRequestStatus.CANCELLED
        assert result.cancelled_by == "reviewer-1"
        assert result.approved_by is None

    @pytest.mark.asyncio
    async def test_note_is_appended(self, service, transaction_repo, clerk, reviewer):
        _, created = await create_eft(service, transaction_repo, clerk, notes="first")

        result = await service.review_allocation_request(
            EFT, created.id, AllocationRequestStatus.APPROVED, reviewer, note="checked bank statement"
        )

        assert result.notes == ["first", "checked bank statement"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("decision", ["PENDING", "SUBMITTED", "ALLOCATED", "bogus"])
    async def test_rejects_non_review_decisions(self, service, transaction_repo, clerk, reviewer, decision):
        _, created = await create_eft(service, transaction_repo, clerk)

        with pytest.raises(ValidationError, match="Invalid status"):
            await service.review_allocation_request(EFT, created.id, decision, reviewer)

    @pytest.mark.asyncio
    async def test_terminal_request_cannot_be_reviewed(
        self, service, transaction_repo, request_repo, clerk, reviewer, allocator
    ):
        _, created = await create_eft(service, transaction_repo, clerk)
        await move_to(service, created.id, AllocationRequestStatus.ALLOCATED, reviewer, allocator)

        with pytest.raises(ConflictError):
            await service.review_allocation_request(
                EFT, created.id, AllocationRequestStatus.CANCELLED, reviewer
            )
        assert request_repo.rows[created.id].status == AllocationRequestStatus.ALLOCATED.value

    @pytest.mark.asyncio
    async def test_request_of_other_family_is_not_found(self, service, transaction_repo, clerk, admin):
        _, created = await create_eft(service, transaction_repo, clerk)

        with pytest.raises(NotFoundError):
            await service.review_allocation_request(EASYPAY, created.id, AllocationRequestStatus.APPROVED, admin)

    @pytest.mark.asyncio
    async def test_unknown_request_is_not_found(self, service, reviewer):
        with pytest.raises(NotFoundError):
            await service.review_allocation_request(EFT, uuid.uuid4(), AllocationRequestStatus.APPROVED, reviewer)

    @pytest.mark.asyncio
    async def test_forbidden_actor_leaves_request_unchanged(self, service, transaction_repo, request_repo, clerk):
        _, created = await create_eft(service, transaction_repo, clerk)

        with pytest.raises(ForbiddenError):
            await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.APPROVED, clerk)
        assert request_repo.rows[created.id].status == AllocationRequestStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_easypay_reviewer_cannot_review_eft(self, service, transaction_repo, clerk, make_user):
        _, created = await create_eft(service, transaction_repo, clerk)

        with pytest.raises(ForbiddenError):
            await service.review_allocation_request(
                EFT, created.id, AllocationRequestStatus.APPROVED, make_user("easypay_reviewer")
            )


class TestBulkTransitions:
    @pytest.mark.asyncio
    async def test_submit_only_moves_approved(self, service, transaction_repo, request_repo, clerk, reviewer, notifier):
        _, approved = await create_eft(service, transaction_repo, clerk)
        _, pending = await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(EFT, approved.id, AllocationRequestStatus.APPROVED, reviewer)

        result = await service.bulk_submit(EFT, [approved.id, pending.id], reviewer)

        assert (result.matched, result.modified) == (2, 1)
        assert request_repo.rows[approved.id].status == AllocationRequestStatus.SUBMITTED.value
        assert request_repo.rows[approved.id].submitted_by == "reviewer-1"
        assert request_repo.rows[pending.id].status == AllocationRequestStatus.PENDING.value
        notifier.dispatch.assert_called_once()
        assert notifier.dispatch.call_args.kwargs["type"] is NotificationType.INFO

    @pytest.mark.asyncio
    async def test_no_notification_when_nothing_moved(self, service, transaction_repo, clerk, reviewer, notifier):
        _, pending = await create_eft(service, transaction_repo, clerk)

        result = await service.bulk_submit(EFT, [pending.id], reviewer)

        assert (result.matched, result.modified) == (1, 0)
        notifier.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_collapsed(self, service, transaction_repo, clerk, reviewer):
        _, created = await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.APPROVED, reviewer)

        result = await service.bulk_submit(EFT, [created.id, str(created.id), created.id], reviewer)

        assert (result.matched, result.modified) == (1, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["bulk_submit", "bulk_allocate", "bulk_mark_duplicate"])
    async def test_empty_id_list(self, service, admin, method):
        with pytest.raises(ValidationError, match="No request ids provided"):
            await getattr(service, method)(EFT, [], admin)

    @pytest.mark.asyncio
    async def test_allocate_skips_requests_not_submitted(
        self, service, transaction_repo, request_repo, clerk, reviewer, allocator
    ):
        _, approved = await create_eft(service, transaction_repo, clerk)
        await move_to(service, approved.id, AllocationRequestStatus.APPROVED, reviewer, allocator)

        result = await service.bulk_allocate(EFT, [approved.id], allocator)

        assert (result.matched, result.modified) == (1, 0)
        assert request_repo.rows[approved.id].status == AllocationRequestStatus.APPROVED.value

    @pytest.mark.asyncio
    async def test_reviewer_cannot_allocate(self, service, transaction_repo, request_repo, clerk, reviewer, allocator):
        _, created = await create_eft(service, transaction_repo, clerk)
        await move_to(service, created.id, AllocationRequestStatus.SUBMITTED, reviewer, allocator)

        with pytest.raises(ForbiddenError):
            await service.bulk_allocate(EFT, [created.id], reviewer)
        with pytest.raises(ForbiddenError):
            await service.bulk_mark_duplicate(EFT, [created.id], reviewer)
        assert request_repo.rows[created.id].status == AllocationRequestStatus.SUBMITTED.value

    @pytest.mark.asyncio
    async def test_mark_duplicate(self, service, transaction_repo, request_repo, clerk, reviewer, allocator, notifier):
        _, created = await create_eft(service, transaction_repo, clerk)
        await move_to(service, created.id, AllocationRequestStatus.SUBMITTED, reviewer, allocator)
        notifier.dispatch.reset_mock()

        result = await service.bulk_mark_duplicate(EFT, [created.id], allocator)

        assert (result.matched, result.modified) == (1, 1)
        row = request_repo.rows[created.id]
        assert row.status == AllocationRequestStatus.DUPLICATE.value
        assert row.marked_as_duplicate_by == "allocator-1"
        assert notifier.dispatch.call_args.kwargs["type"] is NotificationType.WARNING

    @pytest.mark.asyncio
    async def test_duplicate_is_terminal(self, service, transaction_repo, request_repo, clerk, reviewer, allocator):
        _, created = await create_eft(service, transaction_repo, clerk)
        await move_to(service, created.id, AllocationRequestStatus.SUBMITTED, reviewer, allocator)
        await service.bulk_mark_duplicate(EFT, [created.id], allocator)

        result = await service.bulk_allocate(EFT, [created.id], allocator)

        assert (result.matched, result.modified) == (1, 0)
        assert request_repo.rows[created.id].status == AllocationRequestStatus.DUPLICATE.value

    @pytest.mark.asyncio
    async def test_ids_of_other_family_do_not_match(self, service, transaction_repo, clerk, reviewer, admin):
        _, created = await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.APPROVED, reviewer)

        result = await service.bulk_submit(EASYPAY, [created.id], admin)

        assert (result.matched, result.modified) == (0, 0)

    @pytest.mark.asyncio
    async def test_concurrent_allocations_modify_once(self, service, transaction_repo, clerk, reviewer, allocator, admin):
        _, created = await create_eft(service, transaction_repo, clerk)
        await move_to(service, created.id, AllocationRequestStatus.SUBMITTED, reviewer, allocator)

        first, second = await asyncio.gather(
            service.bulk_allocate(EFT, [created.id], allocator),
            service.bulk_allocate(EFT, [created.id], admin),
        )

        assert first.modified + second.modified == 1
        assert first.matched == second.matched == 1

    @pytest.mark.asyncio
    async def test_invalid_id(self, service, admin):
        with pytest.raises(ValidationError):
            await service.bulk_allocate(EFT, ["not-a-uuid"], admin)


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_newest_first_with_pagination(self, service, transaction_repo, clerk, reviewer):
        created = [(await create_eft(service, transaction_repo, clerk))[1] for _ in range(3)]

        page = await service.list_allocation_requests(EFT, reviewer, page=1, limit=2)

        assert [item.id for item in page.items] == [created[2].id, created[1].id]
        assert (page.pagination.page, page.pagination.limit, page.pagination.total) == (1, 2, 3)

    @pytest.mark.asyncio
    async def test_list_limit_is_capped(self, service, reviewer):
        page = await service.list_allocation_requests(EFT, reviewer, limit=1000)

        assert page.pagination.limit == 100

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, service, transaction_repo, clerk, reviewer):
        _, approved = await create_eft(service, transaction_repo, clerk)
        await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(EFT, approved.id, AllocationRequestStatus.APPROVED, reviewer)

        page = await service.list_allocation_requests(EFT, reviewer, status=AllocationRequestStatus.APPROVED)

        assert [item.id for item in page.items] == [approved.id]

    @pytest.mark.asyncio
    async def test_list_requires_view_role(self, service, clerk):
        with pytest.raises(ForbiddenError):
            await service.list_allocation_requests(EFT, clerk)

    @pytest.mark.asyncio
    async def test_get_includes_tagged_transaction(self, service, transaction_repo, clerk, reviewer):
        transaction, created = await create_eft(service, transaction_repo, clerk)

        detail = await service.get_allocation_request(EFT, created.id, reviewer)

        assert detail.item.id == created.id
        assert isinstance(detail.transaction, EftTransactionRead)
        assert detail.transaction.kind is TransactionModel.EFT
        assert detail.transaction.id == transaction.id

    @pytest.mark.asyncio
    async def test_get_easypay_transaction(self, service, transaction_repo, clerk, make_user):
        transaction = transaction_repo.add_easypay()
        created = await service.create_allocation_request(EASYPAY, transaction.id, "POL-5", clerk)

        detail = await service.get_allocation_request(EASYPAY, created.id, make_user("easypay_reviewer"))

        assert isinstance(detail.transaction, EasypayTransactionRead)
        assert detail.transaction.easypay_number == "9123456789"

    @pytest.mark.asyncio
    async def test_get_with_missing_transaction(self, service, transaction_repo, clerk, reviewer):
        transaction, created = await create_eft(service, transaction_repo, clerk)
        del transaction_repo.rows[TransactionModel.EFT][transaction.id]

        detail = await service.get_allocation_request(EFT, created.id, reviewer)

        assert detail.transaction is None

    @pytest.mark.asyncio
    async def test_summary_counts_every_status(self, service, transaction_repo, clerk, reviewer):
        _, approved = await create_eft(service, transaction_repo, clerk)
        await create_eft(service, transaction_repo, clerk)
        await service.review_allocation_request(EFT, approved.id, AllocationRequestStatus.APPROVED, reviewer)

        summary = await service.summarize_allocation_requests(EFT, reviewer)

        assert summary.total == 2
        assert summary.by_status[AllocationRequestStatus.APPROVED] == 1
        assert summary.by_status[AllocationRequestStatus.PENDING] == 1
        assert summary.by_status[AllocationRequestStatus.ALLOCATED] == 0

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_generic_app_errors(self, service, request_repo, reviewer):
        request_repo.count_by_status = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(AppError) as exc_info:
            await service.summarize_allocation_requests(EFT, reviewer)

        assert type(exc_info.value) is AppError
        assert exc_info.value.message == "Internal server error"
        assert isinstance(exc_info.value.original_error, RuntimeError)

    @pytest.mark.asyncio
    async def test_database_failures_become_database_errors(self, service, request_repo, reviewer):
        request_repo.list_requests = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("server closed the connection"))
        )

        with pytest.raises(DatabaseError) as exc_info:
            await service.list_allocation_requests(EFT, reviewer)

        assert exc_info.value.status_code == 500


class TestScans:
    @pytest.mark.asyncio
    async def test_scan_persisted_submitted_requests(
        self, service, transaction_repo, request_repo, clerk, reviewer, allocator
    ):
        _, duplicate = await create_eft(service, transaction_repo, clerk, policy_number="POL-1")
        _, importable = await create_eft(service, transaction_repo, clerk, policy_number="POL-2")
        _, orphan = await create_eft(service, transaction_repo, clerk, policy_number="POL-3")
        _, still_pending = await create_eft(service, transaction_repo, clerk, policy_number="POL-1")
        for created in (duplicate, importable, orphan):
            await move_to(service, created.id, AllocationRequestStatus.SUBMITTED, reviewer, allocator)
        orphan_row = request_repo.rows[orphan.id]
        del transaction_repo.rows[TransactionModel.EFT][orphan_row.transaction_id]

        result = await service.scan_persisted_requests(
            EFT, [{"MembershipID": "POL-1", "Effective Date": "2024-03-11"}], allocator
        )

        assert [r.id for r in result.duplicate_requests] == [str(duplicate.id)]
        assert [r.id for r in result.import_requests] == [str(importable.id)]
        assert [r.id for r in result.failed_requests] == [str(orphan.id)]
        assert result.stats.total_requests == 3
        assert transaction_repo.get_many_calls == [TransactionModel.EFT]

    @pytest.mark.asyncio
    async def test_scan_persisted_requires_allocator(self, service, reviewer):
        with pytest.raises(ForbiddenError):
            await service.scan_persisted_requests(EFT, [], reviewer)

    @pytest.mark.asyncio
    async def test_scan_supplied_checks_each_family(self, service, make_user):
        requests = [ScannableAllocationRequest(id="r1", policy_number="P1", type=EASYPAY)]

        with pytest.raises(ForbiddenError):
            await service.scan_supplied_requests(requests, [], make_user("eft_allocator"))

        result = await service.scan_supplied_requests(requests, [], make_user("easypay_allocator"))
        assert result.stats.failed_requests == 1

    @pytest.mark.asyncio
    async def test_scan_supplied_without_family_needs_an_allocator_role(self, service, make_user):
        requests = [ScannableAllocationRequest(id="r1", policy_number="P1", transaction={"date": "2024-03-11"})]

        with pytest.raises(ForbiddenError):
            await service.scan_supplied_requests(requests, [], make_user("eft_reviewer"))

        result = await service.scan_supplied_requests(requests, [], make_user("eft_allocator"))
        assert result.stats.import_requests == 1

    @pytest.mark.asyncio
    async def test_scan_supplied_reports_malformed_items_as_failed(self, service, make_user):
        good = {"_id": "r1", "policyNumber": "P1", "type": "Easypay", "transaction": {"date": "2024-03-11"}}
        malformed = {"_id": "r2", "policyNumber": None, "type": "EFT", "transaction": {"date": "2024-03-11"}}

        result = await service.scan_supplied_requests(
            [good, malformed],
            [{"MembershipID": "P1", "Effective Date": "2024-03-11"}],
            make_user("easypay_allocator"),
        )

        assert [r.id for r in result.duplicate_requests] == ["r1"]
        assert result.failed_requests == [malformed]
        assert result.stats.failed_requests == 1


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_request_lifecycle(self, service, transaction_repo, request_repo, clerk, reviewer, allocator):
        transaction = transaction_repo.add_eft()

        created = await service.create_allocation_request(EFT, transaction.id, "POL-100", clerk)
        assert request_repo.rows[created.id].status == AllocationRequestStatus.PENDING.value

        with pytest.raises(ConflictError):
            await service.create_allocation_request(EFT, transaction.id, "POL-100", clerk)

        approved = await service.review_allocation_request(EFT, created.id, AllocationRequestStatus.APPROVED, reviewer)
        assert approved.status is AllocationRequestStatus.APPROVED
        assert approved.approved_by == "reviewer-1"

        submitted = await service.bulk_submit(EFT, [created.id], reviewer)
        assert (submitted.matched, submitted.modified) == (1, 1)
        assert request_repo.rows[created.id].status == AllocationRequestStatus.SUBMITTED.value

        allocated = await service.bulk_allocate(EFT, [created.id], allocator)
        assert (allocated.matched, allocated.modified) == (1, 1)
        assert request_repo.rows[created.id].status == AllocationRequestStatus.ALLOCATED.value
        assert request_repo.rows[created.id].allocated_by == "allocator-1"

        again = await service.bulk_allocate(EFT, [created.id], allocator)
        assert (again.matched, again.modified) == (1, 0)
