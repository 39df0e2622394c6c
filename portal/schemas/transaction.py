"""Read models for the two transaction families.

``TransactionRead`` is a tagged union discriminated by ``kind``, which
carries the same value as an allocation request's ``transaction_model``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from portal.schemas.enums import TransactionModel


class TransactionBase(BaseModel):
    """Shape every transaction exposes to the allocation workflow."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    date: str = Field(..., description="Transaction date as imported")
    amount: Decimal
    created_at: Optional[datetime] = None


class EftTransactionRead(TransactionBase):
    kind: Literal[TransactionModel.EFT] = TransactionModel.EFT
    source: str
    description: str = "--"
    additional_information: str = "--"


class EasypayTransactionRead(TransactionBase):
    kind: Literal[TransactionModel.EASYPAY] = TransactionModel.EASYPAY
    easypay_number: str = "--"
    policy_number: Optional[str] = None


TransactionRead = Annotated[
    Union[EftTransactionRead, EasypayTransactionRead],
    Field(discriminator="kind"),
]

READ_MODELS: dict[TransactionModel, type[TransactionBase]] = {
    TransactionModel.EFT: EftTransactionRead,
    TransactionModel.EASYPAY: EasypayTransactionRead,
}


def to_transaction_read(model: TransactionModel, row) -> Union[EftTransactionRead, EasypayTransactionRead]:
    """Convert an ORM transaction row into its tagged read model."""
    return READ_MODELS[model].model_validate(row)
