"""
Centralized exceptions for consistent error handling.

Only the not-found condition belongs to this layer's own contract. Storage
failures raised by SQLAlchemy propagate unchanged and are never wrapped here.

Usage:
    from softmeta.utils.exceptions import NotFoundError, InvalidFilterError

    raise NotFoundError("Widget", widget_id)
    raise InvalidFilterError("'or' must be a list of conditions", where=where)
"""

from typing import Any

from fastapi import HTTPException, status

from softmeta.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """
    Base exception with automatic logging.

    Subclasses HTTPException so an API layer sitting on top of the
    repositories maps them to responses without extra handlers.
    """

    code: str = "AppError"

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, status_code=status_code, code=self.code, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)


# =============================================================================
# 404 Not Found Errors
# =============================================================================


class NotFoundError(AppException):
    """
    Entity not found error (404).

    Raised identically whether the row never existed or only exists in
    soft-deleted form.

    Usage:
        raise NotFoundError("Widget", 123)
    """

    code = "EntityNotFound"

    def __init__(self, entity: str, entity_id: Any = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity} with ID {entity_id} not found"
        else:
            detail = f"{entity} not found"

        self.entity = entity
        self.entity_id = entity_id

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            log_level="info",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )


# =============================================================================
# 400 Bad Request Errors
# =============================================================================


class ValidationError(AppException):
    """
    Input validation error (400).

    Usage:
        raise ValidationError("Unknown field 'colour'", field="colour")
    """

    code = "ValidationError"

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            log_level="warning",
            **log_context,
        )


class InvalidFilterError(ValidationError):
    """A filter or where clause has a shape the repository cannot interpret."""

    code = "InvalidFilter"

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(f"Invalid filter: {detail}", **log_context)
