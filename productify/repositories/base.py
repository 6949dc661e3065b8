"""Base repository class with common CRUD operations."""

import logging
from abc import ABC
from typing import Generic, TypeVar, Type, Optional, Any, Dict
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from productify.db.base_class import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType], ABC):
    """Common persistence helpers for one model.

    Repositories flush but never commit; the owning service decides where the
    transaction ends. Conditional updates that guard an invariant (balance
    debits, queue claims) live on the concrete repositories.
    """

    def __init__(self, db: Session, model: Type[ModelType], correlation_id: Optional[str] = None):
        self.db = db
        self.model = model
        self.correlation_id = correlation_id
        self.logger = logging.getLogger(self.__class__.__name__)

    def create(self, obj_in: Any, **kwargs: Any) -> ModelType:
        """Insert a row built from a pydantic model or a mapping plus `kwargs`.

        The row is flushed and refreshed so server defaults and the primary key
        are populated before the caller commits.
        """
        obj_data = obj_in.model_dump(exclude_unset=True) if hasattr(obj_in, "model_dump") else dict(obj_in)
        obj_data.update(kwargs)
        db_obj = self.model(**obj_data)
        try:
            self.db.add(db_obj)
            self.db.flush()
            self.db.refresh(db_obj)
        except SQLAlchemyError as e:
            self._log_failure("create", e)
            raise

        self._log_operation("create", model=self.model.__name__, id=getattr(db_obj, "id", None))
        return db_obj

    def get_by_id(self, id: Any) -> Optional[ModelType]:
        result = self.db.get(self.model, id)
        self._log_operation("get_by_id", model=self.model.__name__, id=id, found=result is not None)
        return result

    def update_fields(self, db_obj: ModelType, fields: Dict[str, Any]) -> ModelType:
        """Set attributes on a loaded instance and flush; unknown names are ignored."""
        for field, value in fields.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self._log_failure("update_fields", e)
            raise

        self._log_operation("update_fields", model=self.model.__name__, id=getattr(db_obj, "id", None), fields=list(fields))
        return db_obj

    def _log_failure(self, operation: str, error: Exception) -> None:
        self.logger.error(
            f"{operation} failed for {self.model.__name__}",
            extra={
                "correlation_id": self.correlation_id,
                "repository": self.__class__.__name__,
                "error": str(error)
            }
        )

    def _log_operation(self, operation: str, **kwargs: Any) -> None:
        """Log repository operation with structured fields."""
        log_data = {
            "correlation_id": self.correlation_id,
            "repository": self.__class__.__name__,
            "operation": operation,
            **kwargs
        }
        self.logger.debug(f"Repository operation: {operation}", extra=log_data)
