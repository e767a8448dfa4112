"""
BaseService -- abstract base for all giving kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (API handler, background worker, ``session_scope``) owns
      commit/rollback.
    - Per-id serialization: mutations load their row through
      ``_get_for_update`` (SELECT ... FOR UPDATE with populate_existing),
      and a stale versioned write surfaces as OptimisticLockError.
"""

from abc import ABC
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from giving_kernel.db.base import Base
from giving_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide projections for display -- those belong
          in ``giving_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _get_for_update(self, model: type[ModelType], entity_id: Any) -> ModelType | None:
        """Load one row with a row-level lock, refreshing any cached copy."""
        return self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _flush(self, entity_type: str, entity_id: Any) -> None:
        """Flush pending changes, translating a version conflict."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type, str(entity_id)) from exc
