"""
Module: crm_kernel.selectors.base
Responsibility: Read-only query base scoped to one organization.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Selectors never add, delete, flush or commit.
    - Every query starts from org_scoped(), so a tenant can only see its
      own rows.  Selectors return DTOs, not ORM rows.
"""

from abc import ABC
from typing import ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from crm_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Queries over one tenant table, named by ``model``."""

    model: ClassVar[type]

    def __init__(self, session: Session):
        self.session = session

    def org_scoped(self, org_id: UUID) -> Select:
        return select(self.model).where(self.model.org_id == org_id)

    def get_scoped(self, org_id: UUID, row_id: UUID) -> ModelType | None:
        return self.session.execute(
            self.org_scoped(org_id).where(self.model.id == row_id)
        ).scalar_one_or_none()
