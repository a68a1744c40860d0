"""
SQLAlchemy ORM base classes.

- base: Base, AuditMixin, AuditedEntity, epoch_now
"""

from .base import Base, AuditMixin, AuditedEntity, DELETION_FIELDS, epoch_now

__all__ = [
    "Base",
    "AuditMixin",
    "AuditedEntity",
    "DELETION_FIELDS",
    "epoch_now",
]
