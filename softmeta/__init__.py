"""
softmeta: soft-delete and audit metadata on top of a generic async CRUD repository.

STRUCTURE:
- softmeta.config: Settings (pydantic-settings) and structured logging
- softmeta.utils.exceptions: NotFoundError, InvalidFilterError
- softmeta.infrastructure.db: Async engine and session factory
- softmeta.models: Base, AuditMixin, AuditedEntity
- softmeta.repositories:
  - filters.py: Where algebra (And / Or / Flat), Filter, deleted-row rewrite
  - crud.py: CrudRepository, generic async SQLAlchemy CRUD
  - soft_delete.py: SoftDeleteRepository, soft delete + audit stamping

IMPORT EXAMPLES:
    from softmeta.models import Base, AuditMixin
    from softmeta.repositories import SoftDeleteRepository, Filter, And, Or, Flat
    from softmeta.utils.exceptions import NotFoundError
"""

__version__ = "0.1.0"
