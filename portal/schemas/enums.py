"""Enumerations shared by models, schemas and services."""

from enum import Enum


class AllocationRequestStatus(str, Enum):
    """Lifecycle states of an allocation request."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    SUBMITTED = "SUBMITTED"
    ALLOCATED = "ALLOCATED"
    DUPLICATE = "DUPLICATE"


# A transaction may carry a new request once its previous one ended in one of these
INACTIVE_STATUSES = frozenset({AllocationRequestStatus.REJECTED, AllocationRequestStatus.CANCELLED})

TERMINAL_STATUSES = frozenset({AllocationRequestStatus.ALLOCATED, AllocationRequestStatus.DUPLICATE})

REVIEW_DECISIONS = frozenset(
    {
        AllocationRequestStatus.APPROVED,
        AllocationRequestStatus.REJECTED,
        AllocationRequestStatus.CANCELLED,
    }
)


class TransactionModel(str, Enum):
    """Discriminator naming the table a request's transaction lives in."""

    EFT = "EftTransaction"
    EASYPAY = "EasypayTransaction"


class TransactionFamily(str, Enum):
    """Payment channel a transaction (and its allocation request) belongs to."""

    EFT = "EFT"
    EASYPAY = "Easypay"

    @property
    def slug(self) -> str:
        """Lower-case name used in URLs and role names."""
        return self.name.lower()

    @property
    def transaction_model(self) -> TransactionModel:
        return TransactionModel[self.name]

    @classmethod
    def from_model(cls, model: "TransactionModel | str") -> "TransactionFamily":
        return cls[TransactionModel(model).name]

    @classmethod
    def from_slug(cls, slug: str) -> "TransactionFamily":
        try:
            return cls[slug.upper()]
        except KeyError:
            raise ValueError(f"Unknown transaction family: {slug}") from None


class AllocationOperation(str, Enum):
    """Operations subject to the role policy."""

    VIEW = "view"
    CREATE = "create"
    REVIEW = "review"
    SUBMIT = "submit"
    ALLOCATE = "allocate"
    MARK_DUPLICATE = "mark_duplicate"
    SCAN = "scan"


class ScanOutcome(str, Enum):
    """Classification produced by the duplicate scanner."""

    FAILED = "FAILED"
    DUPLICATE = "DUPLICATE"
    IMPORTABLE = "IMPORTABLE"
