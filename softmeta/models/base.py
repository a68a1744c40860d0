"""
Base class, AuditMixin and the audited-entity shape for SQLAlchemy ORM models.
"""

from __future__ import annotations

import math
import time
from typing import Any, Optional, Protocol, runtime_checkable

from sqlalchemy import BigInteger, Boolean, String, false
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Fields owned by the soft-delete state machine. Never accepted from clients on create.
DELETION_FIELDS = ("deleted", "deleted_at", "deleted_by")


def epoch_now() -> int:
    """Current UNIX time in whole seconds, the unit of every audit timestamp."""
    return math.floor(time.time())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class AuditMixin:
    """
    Mixin providing soft delete and audit trail fields.

    Fields added:
    - deleted: Soft delete flag (True = deleted, False = active)
    - created_at, updated_at, deleted_at: Audit timestamps (epoch seconds)
    - created_by, updated_by, deleted_by: Identifier of the acting principal

    List it before Base so the constructor default for ``deleted`` applies:

        class Widget(AuditMixin, Base):
            __tablename__ = "widget"
            id: Mapped[int] = mapped_column(primary_key=True)
    """

    # Audit timestamps, defaulted at insert when the application leaves them unset
    created_at: Mapped[int] = mapped_column(
        "created_on", BigInteger, default=epoch_now, nullable=True
    )
    updated_at: Mapped[int] = mapped_column(
        "updated_on", BigInteger, default=epoch_now, nullable=True
    )

    # Principal tracking
    created_by: Mapped[Optional[str]] = mapped_column("created_by", String(255), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column("updated_by", String(255), nullable=True)

    # Soft delete state, the three fields always change together
    deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False, index=True
    )
    deleted_at: Mapped[Optional[int]] = mapped_column("deleted_on", BigInteger, nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column("deleted_by", String(255), nullable=True)

    def __init__(self, **kwargs: Any) -> None:
        # Partial construction: anything not given stays unset, except the flag
        kwargs.setdefault("deleted", False)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        id_val = getattr(self, "id", None)
        state = "deleted" if self.deleted else "active"
        return f"<{class_name}(id={id_val}, {state})>"


@runtime_checkable
class AuditedEntity(Protocol):
    """
    Shape the repositories rely on: an identifier plus the audit fields.

    AuditMixin provides it, but any mapped class declaring these attributes
    qualifies.
    """

    id: Any
    created_at: Optional[int]
    updated_at: Optional[int]
    created_by: Optional[str]
    updated_by: Optional[str]
    deleted: Optional[bool]
    deleted_at: Optional[int]
    deleted_by: Optional[str]
