"""
BaseService -- abstract base for session-bound services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every stateful service.  Concrete services receive a SQLAlchemy
    ``Session`` and persist through ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    Transaction boundaries belong to the caller: the reconciliation
    committer or a module service owns commit/rollback, so multi-step
    writes (document, lines, stock, request status) stay atomic.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from intake_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for session-bound services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle.
    """

    def __init__(self, session: Session):
        self.session = session
