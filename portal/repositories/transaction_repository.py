"""Resolver for the polymorphic transaction reference on allocation requests."""

from typing import Iterable, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database.models import TRANSACTION_MODELS, EasypayTransaction, EftTransaction
from portal.schemas.enums import TransactionModel
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

TransactionRow = Union[EftTransaction, EasypayTransaction]


class TransactionRepository:
    """Looks up EFT and EasyPay transactions by their ``transaction_model`` tag.

    Transactions are imported by other parts of the portal; this repository
    never writes them.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = LOGGER

    async def resolve(self, model: TransactionModel, id: UUID) -> Optional[TransactionRow]:
        """Get the transaction a request points at, or None if it no longer exists."""
        orm_model = TRANSACTION_MODELS[TransactionModel(model)]
        try:
            result = await self.session.execute(select(orm_model).where(orm_model.id == id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error resolving {orm_model.__name__} {id}: {e}", exc_info=True)
            raise

    async def get_many(self, model: TransactionModel, ids: Iterable[UUID]) -> dict[UUID, TransactionRow]:
        """Fetch several transactions of one model in a single query, keyed by id."""
        id_list = list(set(ids))
        if not id_list:
            return {}

        orm_model = TRANSACTION_MODELS[TransactionModel(model)]
        try:
            result = await self.session.execute(select(orm_model).where(orm_model.id.in_(id_list)))
            return {row.id: row for row in result.scalars().all()}
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {len(id_list)} {orm_model.__name__} rows: {e}", exc_info=True)
            raise
