"""Base service class shared by the job, ledger, queue and orchestrator services."""

import logging
from typing import Optional, Callable, TypeVar, Any, Dict
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from productify.services.exceptions import ServiceError

T = TypeVar("T")


class BaseService:
    """Transaction boundary and structured logging for services.

    Repositories flush, services commit. Every log record carries the
    correlation id so an API request, the queue entries it creates and the
    ledger entries they produce can be traced together.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self.logger = logging.getLogger(self.__class__.__name__)

    def _set_repositories(self, **repositories):
        """Attach named repository instances to the service."""
        for name, repo in repositories.items():
            setattr(self, name, repo)

    def _log_fields(self, **fields: Any) -> Dict[str, Any]:
        return {"correlation_id": self.correlation_id, "service": self.__class__.__name__, **fields}

    def run_in_transaction(self, db: Session, operation: Callable[[], T]) -> T:
        """Run `operation`, then commit.

        Any exception rolls the session back and is re-raised. A `ServiceError`
        is a rejected operation (insufficient credits, wrong job state) and is
        logged at INFO; everything else at ERROR.

        Args:
            db: Session the operation works in
            operation: Callable doing the reads and writes

        Returns:
            Whatever `operation` returned
        """
        try:
            result = operation()
            db.commit()
        except ServiceError as e:
            db.rollback()
            self.logger.info(
                "Operation rejected, transaction rolled back",
                extra=self._log_fields(error_code=e.error_code)
            )
            raise
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.error(
                "Database error, transaction rolled back",
                extra=self._log_fields(error=str(e))
            )
            raise
        except Exception as e:
            db.rollback()
            self.logger.exception(
                "Unexpected error, transaction rolled back",
                extra=self._log_fields(error=str(e))
            )
            raise

        self.logger.debug("Transaction committed", extra=self._log_fields())
        return result

    def log_operation(self, operation: str, **kwargs: Any) -> None:
        """Log service operation with structured fields."""
        self.logger.info(f"Service operation: {operation}", extra=self._log_fields(operation=operation, **kwargs))
