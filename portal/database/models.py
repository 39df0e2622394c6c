"""SQLAlchemy models for the allocation workflow tables."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.core.database import Base
from portal.schemas.enums import AllocationRequestStatus, TransactionFamily, TransactionModel


class EftTransaction(Base):
    """Bank statement line imported by the EFT importer. Read-only here."""

    __tablename__ = "eft_transactions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Kept exactly as imported; the scanner parses it at day granularity
    date: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False, default="--")
    additional_information: Mapped[str] = mapped_column(String, nullable=False, default="--")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("NOW()"))


class EasypayTransaction(Base):
    """Payment received through the EasyPay retail channel. Read-only here."""

    __tablename__ = "easypay_transactions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    date: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    easypay_number: Mapped[str] = mapped_column(String, nullable=False, default="--")
    policy_number: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("NOW()"))


class AssitPolicy(Base):
    """Policy mirrored from the ASSIT ledger, keyed by membership ID."""

    __tablename__ = "assit_policies"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    membership_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_at_number: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("NOW()"))


_INACTIVE_SQL = ", ".join(
    f"'{s.value}'" for s in (AllocationRequestStatus.REJECTED, AllocationRequestStatus.CANCELLED)
)
_MODEL_FAMILY_PAIRS = " OR ".join(
    f"(transaction_model = '{family.transaction_model.value}' AND type = '{family.value}')"
    for family in TransactionFamily
)


class AllocationRequest(Base):
    """Proposed link between one financial transaction and one policy."""

    __tablename__ = "allocation_requests"
    __table_args__ = (
        CheckConstraint(_MODEL_FAMILY_PAIRS, name="ck_allocation_requests_model_matches_type"),
        CheckConstraint(
            f"status <> '{AllocationRequestStatus.REJECTED.value}' "
            "OR length(trim(coalesce(rejection_reason, ''))) > 0",
            name="ck_allocation_requests_rejection_reason",
        ),
        # At most one active request per transaction
        Index(
            "uq_allocation_requests_active_transaction",
            "transaction_id",
            unique=True,
            postgresql_where=text(f"status NOT IN ({_INACTIVE_SQL})"),
        ),
        Index("ix_allocation_requests_type_status", "type", "status"),
        Index("ix_allocation_requests_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Polymorphic reference: transaction_model names the table transaction_id points into
    transaction_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    transaction_model: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default=TransactionFamily.EFT.value)

    policy_number: Mapped[str] = mapped_column(String, nullable=False)
    easypay_number: Mapped[str | None] = mapped_column(String, nullable=True)

    notes: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    evidence: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String, nullable=False, default=AllocationRequestStatus.PENDING.value
    )  # PENDING | APPROVED | REJECTED | CANCELLED | SUBMITTED | ALLOCATED | DUPLICATE

    requested_by: Mapped[str] = mapped_column(String, nullable=False)
    requested_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    allocated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    allocated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    marked_as_duplicate_by: Mapped[str | None] = mapped_column(String, nullable=True)
    marked_as_duplicate_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )

    @property
    def family(self) -> TransactionFamily:
        return TransactionFamily.from_model(self.transaction_model)


TRANSACTION_MODELS: dict[TransactionModel, type[EftTransaction] | type[EasypayTransaction]] = {
    TransactionModel.EFT: EftTransaction,
    TransactionModel.EASYPAY: EasypayTransaction,
}
