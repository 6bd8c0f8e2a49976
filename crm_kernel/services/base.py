"""
BaseService -- shared constructor for kernel write services.

Responsibility:
    Holds the caller's Session and the injected Clock.  Write services add
    and flush rows in that session; they never end the transaction.

Architecture position:
    Kernel > Services.  The unit of work belongs to the caller
    (InvoiceInventoryService, a request handler, a test), which is what
    makes a multi-item stock operation all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from crm_kernel.db.base import Base
from crm_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Flush-only service bound to one session.  Reads go through selectors."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()
