"""
Soft-delete repository with audit stamping.

Wraps a CrudRepository so that:
- every read, count, bulk update and id lookup skips rows with deleted=True,
  unless the caller uses an *_including_deleted method;
- delete, delete_all and delete_by_id flip the deleted flag and stamp
  deleted_at / deleted_by instead of removing rows;
- create and update paths stamp created_at / updated_at / created_by / updated_by;
- *_hard methods remove rows physically and skip all bookkeeping.

Usage:
    from softmeta.repositories import SoftDeleteRepository

    async def current_user():
        return request_state.user  # anything with an ``id``, or None

    repo = SoftDeleteRepository.for_model(Widget, session, get_current_user=current_user)
    widget = await repo.create({"name": "bolt", "type": "a"})
    await repo.delete(widget)                     # soft
    await repo.find_by_id(widget.id)              # NotFoundError
    await repo.find_by_id_including_deleted(widget.id)
    await repo.delete_by_id_hard(widget.id)       # gone for good

The repository holds no state between calls beyond the wrapped CRUD
repository and the principal accessor. Filters are never mutated; every
rewrite produces a new Filter / Where.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from softmeta.config.logging import get_logger
from softmeta.config.settings import settings
from softmeta.models.base import AuditedEntity, DELETION_FIELDS, epoch_now
from softmeta.repositories.crud import CrudRepository, Options
from softmeta.repositories.filters import (
    Filter,
    Where,
    exclude_deleted,
    merge_fields,
    parse_where,
    where_to_dict,
)
from softmeta.utils.exceptions import NotFoundError

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=AuditedEntity)
IdT = TypeVar("IdT")
RelationsT = TypeVar("RelationsT")

# Zero-argument coroutine returning the acting principal, or None
PrincipalAccessor = Callable[[], Awaitable[Any]]


def _principal_id(principal: Any) -> Any:
    if principal is None:
        return None
    if isinstance(principal, Mapping):
        return principal.get("id")
    return getattr(principal, "id", None)


class SoftDeleteRepository(Generic[ModelT, IdT, RelationsT]):
    """
    Soft-delete aware decorator around a CrudRepository.

    Args:
        crud: Repository doing the actual storage work, bound to the same model.
        get_current_user: Optional accessor for the acting principal. When it
            is missing, actor fields are left unset.
        strict_filters: Reject unrecognised where shapes instead of falling
            back to flat field equality. Defaults to settings.strict_filters.
    """

    def __init__(
        self,
        crud: CrudRepository[ModelT, IdT],
        get_current_user: Optional[PrincipalAccessor] = None,
        *,
        strict_filters: Optional[bool] = None,
    ):
        self._crud = crud
        self._get_current_user = get_current_user
        self._strict = settings.strict_filters if strict_filters is None else strict_filters

    @classmethod
    def for_model(
        cls,
        model: type[ModelT],
        session: AsyncSession,
        get_current_user: Optional[PrincipalAccessor] = None,
        *,
        strict_filters: Optional[bool] = None,
    ) -> SoftDeleteRepository[ModelT, Any, Any]:
        """Build the repository and its CrudRepository for one model and session."""
        strict = settings.strict_filters if strict_filters is None else strict_filters
        crud: CrudRepository[ModelT, Any] = CrudRepository(model, session, strict_filters=strict)
        return cls(crud, get_current_user, strict_filters=strict)

    @property
    def crud(self) -> CrudRepository[ModelT, IdT]:
        """The wrapped repository (no soft-delete handling)."""
        return self._crud

    @property
    def model(self) -> type[ModelT]:
        return self._crud.model

    # -------------------------------------------------------------------------
    # Filter rewriting
    # -------------------------------------------------------------------------

    def _parse(self, where: Any) -> Optional[Where]:
        return parse_where(where, strict=self._strict)

    def _active_where(self, where: Any, **extra: Any) -> Where:
        """Where clause restricted to rows that are not soft deleted."""
        rewritten = exclude_deleted(self._parse(where), **extra)
        logger.debug("Excluding deleted rows", model=self.model.__name__, where=where_to_dict(rewritten))
        return rewritten

    def _active_filter(self, filter: Any, **extra: Any) -> Filter:
        coerced = Filter.coerce(filter, strict=self._strict)
        return coerced.with_where(self._active_where(coerced.where, **extra))

    # -------------------------------------------------------------------------
    # Audit stamping
    # -------------------------------------------------------------------------

    async def _get_user_id(self, options: Options = None) -> Optional[str]:
        """
        Identifier of the acting principal, or None when unknown.

        Falls back to options["current_user"] when the accessor yields nothing.
        """
        if self._get_current_user is None:
            return None
        current_user = await self._get_current_user()
        if current_user is None and options:
            current_user = options.get("current_user")
        user_id = _principal_id(current_user)
        if user_id is None or user_id == "":
            return None
        return str(user_id)

    def _prepare_new(self, entity: Any, user_id: Optional[str]) -> Any:
        """
        Stamp creation audit fields and drop client-supplied deletion state.

        Mappings are copied; model instances are stamped in place.
        """
        now = epoch_now()
        if isinstance(entity, Mapping):
            data = {key: value for key, value in entity.items() if key not in DELETION_FIELDS}
            if data.get("created_at") is None:
                data["created_at"] = now
            data["updated_at"] = now
            data["created_by"] = user_id
            data["updated_by"] = user_id
            return data

        if getattr(entity, "created_at", None) is None:
            entity.created_at = now
        entity.updated_at = now
        entity.created_by = user_id
        entity.updated_by = user_id
        entity.deleted = False
        entity.deleted_at = None
        entity.deleted_by = None
        return entity

    async def _deletion_values(self, options: Options) -> dict[str, Any]:
        return {
            "deleted": True,
            "deleted_at": epoch_now(),
            "deleted_by": await self._get_user_id(options),
        }

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(self, entity: Any, options: Options = None) -> ModelT:
        """Insert one entity with creation audit fields stamped."""
        user_id = await self._get_user_id(options)
        return await self._crud.create(self._prepare_new(entity, user_id), options)

    async def create_all(self, entities: Sequence[Any], options: Options = None) -> list[ModelT]:
        """Insert several entities, resolving the principal once for the batch."""
        user_id = await self._get_user_id(options)
        prepared = [self._prepare_new(entity, user_id) for entity in entities]
        return await self._crud.create_all(prepared, options)

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def find(self, filter: Any = None, options: Options = None) -> list[ModelT]:
        """Entities matching the filter, soft-deleted rows excluded."""
        return await self._crud.find(self._active_filter(filter), options)

    async def find_including_deleted(self, filter: Any = None, options: Options = None) -> list[ModelT]:
        """Entities matching the filter, soft-deleted rows included."""
        return await self._crud.find(filter, options)

    async def find_one(self, filter: Any = None, options: Options = None) -> Optional[ModelT]:
        return await self._crud.find_one(self._active_filter(filter), options)

    async def find_one_including_deleted(
        self, filter: Any = None, options: Options = None
    ) -> Optional[ModelT]:
        return await self._crud.find_one(filter, options)

    async def find_by_id(self, entity_id: IdT, filter: Any = None, options: Options = None) -> ModelT:
        """
        Entity by id, refusing soft-deleted rows.

        Raises:
            NotFoundError: The row is missing or soft deleted
        """
        scoped = self._active_filter(filter, **{self._crud.id_key: entity_id})
        return await self._checked_find_by_id(entity_id, scoped, options)

    async def find_by_id_including_deleted(
        self, entity_id: IdT, filter: Any = None, options: Options = None
    ) -> ModelT:
        """
        Entity by id, soft-deleted rows included.

        Raises:
            NotFoundError: The row does not exist
        """
        coerced = Filter.coerce(filter, strict=self._strict)
        scoped = coerced.with_where(merge_fields(coerced.where, **{self._crud.id_key: entity_id}))
        return await self._checked_find_by_id(entity_id, scoped, options)

    async def _checked_find_by_id(self, entity_id: IdT, scoped: Filter, options: Options) -> ModelT:
        # Existence check first; the fetch re-applies the same where, so a row
        # deleted in between surfaces as NotFoundError from the fetch instead.
        if await self._crud.find_one(scoped, options) is None:
            raise NotFoundError(self.model.__name__, entity_id)
        return await self._crud.find_by_id(entity_id, scoped, options)

    async def count(self, where: Any = None, options: Options = None) -> int:
        """Number of matching rows that are not soft deleted."""
        return await self._crud.count(self._active_where(where), options)

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    async def update_all(self, data: Mapping[str, Any], where: Any = None, options: Options = None) -> int:
        """
        Update matching rows that are not soft deleted.

        updated_at / updated_by are always overwritten. The caller's mapping is
        left untouched.
        """
        values = dict(data)
        values["updated_at"] = epoch_now()
        values["updated_by"] = await self._get_user_id(options)
        return await self._crud.update_all(values, self._active_where(where), options)

    async def update_by_id(self, entity_id: IdT, data: Mapping[str, Any], options: Options = None) -> None:
        """
        Update one row that is not soft deleted.

        Raises:
            NotFoundError: The row is missing or soft deleted
        """
        count = await self.update_all(data, {self._crud.id_key: entity_id}, options)
        if not count:
            raise NotFoundError(self.model.__name__, entity_id)

    # -------------------------------------------------------------------------
    # Delete (soft)
    # -------------------------------------------------------------------------

    async def delete(self, entity: ModelT, options: Options = None) -> None:
        """Soft delete an entity instance and persist it with an update."""
        entity.deleted = True
        entity.deleted_at = epoch_now()
        entity.deleted_by = await self._get_user_id(options)
        await self._crud.update(entity, options)
        logger.info(
            "Entity soft deleted",
            model=self.model.__name__,
            entity_id=self._crud.identity_of(entity),
            deleted_by=entity.deleted_by,
        )

    async def delete_all(self, where: Any = None, options: Options = None) -> int:
        """Soft delete every matching row that is not already deleted."""
        count = await self.update_all(await self._deletion_values(options), where, options)
        logger.info("Entities soft deleted", model=self.model.__name__, count=count)
        return count

    async def delete_by_id(self, entity_id: IdT, options: Options = None) -> None:
        """
        Soft delete one row by id with a direct field update.

        Raises:
            NotFoundError: The row does not exist
        """
        await self._crud.update_by_id(entity_id, await self._deletion_values(options), options)
        logger.info("Entity soft deleted", model=self.model.__name__, entity_id=entity_id)

    async def restore_by_id(self, entity_id: IdT, options: Options = None) -> None:
        """
        Bring a soft-deleted row back: clear the deletion fields and stamp the update.

        Raises:
            NotFoundError: The row does not exist
        """
        values = {
            "deleted": False,
            "deleted_at": None,
            "deleted_by": None,
            "updated_at": epoch_now(),
            "updated_by": await self._get_user_id(options),
        }
        await self._crud.update_by_id(entity_id, values, options)
        logger.info("Entity restored", model=self.model.__name__, entity_id=entity_id)

    # -------------------------------------------------------------------------
    # Delete (hard). Irreversible, no soft-delete bookkeeping.
    # -------------------------------------------------------------------------

    async def delete_hard(self, entity: ModelT, options: Options = None) -> None:
        """Physically delete an entity instance."""
        await self.delete_by_id_hard(self._crud.identity_of(entity), options)

    async def delete_all_hard(self, where: Any = None, options: Options = None) -> int:
        """Physically delete every matching row, soft-deleted or not."""
        count = await self._crud.delete_all(self._parse(where), options)
        logger.warning("Entities hard deleted", model=self.model.__name__, count=count)
        return count

    async def delete_by_id_hard(self, entity_id: IdT, options: Options = None) -> None:
        """
        Physically delete one row by id.

        Raises:
            NotFoundError: The row does not exist
        """
        await self._crud.delete_by_id(entity_id, options)
        logger.warning("Entity hard deleted", model=self.model.__name__, entity_id=entity_id)
