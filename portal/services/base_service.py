from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from portal.core.exceptions import AppError, DatabaseError
from portal.repositories.base_repository import BaseRepository
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseService(ABC):
    """Base class for application services.

    Provides a standardized execution flow with validation and error handling.
    """

    def __init__(self, repository: Optional[BaseRepository] = None):
        """Initialize the service.

        Args:
            repository: Optional primary repository for the service
        """
        self.repository = repository
        self.logger = LOGGER

    async def execute(self, *args, **kwargs) -> Any:
        """Execute the service logic.

        Validates input, runs the core logic and maps unexpected failures to
        a generic AppError (DatabaseError for SQLAlchemy failures). AppError
        subclasses pass through unchanged so the API layer can render their
        status codes.

        Raises:
            AppError: If execution fails
        """
        try:
            self.validate(*args, **kwargs)
            return await self.run(*args, **kwargs)

        except AppError:
            raise

        except SQLAlchemyError as e:
            self.logger.error(
                f"Database error in {self.__class__.__name__}: {str(e)}",
                exc_info=True,
            )
            raise DatabaseError("Database operation failed", original_error=e)

        except Exception as e:
            self.logger.error(
                f"Service execution failed: {str(e)}",
                exc_info=True,
                extra={"service": self.__class__.__name__},
            )
            raise AppError("Internal server error", original_error=e)

    def validate(self, *args, **kwargs):
        """Validate service input.

        Override this method to implement custom validation logic.

        Raises:
            ValidationError: If input is invalid
        """
        pass

    @abstractmethod
    async def run(self, *args, **kwargs) -> Any:
        """Run the core service logic."""
        pass
