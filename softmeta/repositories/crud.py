"""
Generic async CRUD repository over a SQLAlchemy model.

This is the plain storage-backed repository: it knows nothing about soft
deletes. SoftDeleteRepository wraps one instance of it.

Usage:
    from softmeta.repositories.crud import CrudRepository

    repo = CrudRepository(Widget, session)
    widget = await repo.create({"name": "bolt", "type": "a"})
    widgets = await repo.find({"where": {"type": "a"}, "order": "name DESC"})
    await repo.update_all({"name": "nut"}, {"type": "a"})

Every write flushes the session. Pass ``options={"commit": True}`` to commit
instead; otherwise the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import (
    ColumnElement,
    Select,
    and_,
    delete,
    func,
    inspect,
    or_,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import load_only, selectinload

from softmeta.repositories.filters import Filter, Flat, Or, Where, parse_where
from softmeta.utils.exceptions import InvalidFilterError, NotFoundError

ModelT = TypeVar("ModelT")
IdT = TypeVar("IdT")

Options = Optional[Mapping[str, Any]]


class CrudRepository(Generic[ModelT, IdT]):
    """
    Create/read/update/delete operations for one mapped model.

    Filters are Filter objects or filter dictionaries; where clauses are
    Where trees or where dictionaries (see softmeta.repositories.filters).
    """

    def __init__(self, model: type[ModelT], session: AsyncSession, *, strict_filters: bool = True):
        self._model = model
        self._session = session
        self._strict = strict_filters
        self._mapper = inspect(model)
        if len(self._mapper.primary_key) != 1:
            raise TypeError(f"{model.__name__} must have a single-column primary key")
        self._id_key = self._mapper.get_property_by_column(self._mapper.primary_key[0]).key

    @property
    def model(self) -> type[ModelT]:
        """The SQLAlchemy model class."""
        return self._model

    @property
    def session(self) -> AsyncSession:
        """The database session."""
        return self._session

    @property
    def id_key(self) -> str:
        """Attribute name of the primary key."""
        return self._id_key

    def identity_of(self, entity: ModelT) -> IdT:
        """Primary key value of an entity instance."""
        return getattr(entity, self._id_key)

    # -------------------------------------------------------------------------
    # Query building
    # -------------------------------------------------------------------------

    def _attribute(self, name: str) -> Any:
        if name not in self._mapper.column_attrs:
            raise InvalidFilterError(
                f"unknown field '{name}' for {self._model.__name__}",
                field=name,
            )
        return getattr(self._model, name)

    def _condition(self, name: str, value: Any) -> ColumnElement[bool]:
        """Expression for one field condition: literal or operator mapping."""
        column = self._attribute(name)
        if not isinstance(value, Mapping):
            if value is None or isinstance(value, bool):
                return column.is_(value)
            return column == value

        expressions = []
        for op, operand in value.items():
            if op == "eq":
                expressions.append(column.is_(None) if operand is None else column == operand)
            elif op == "neq":
                expressions.append(column.is_not(None) if operand is None else column != operand)
            elif op == "gt":
                expressions.append(column > operand)
            elif op == "gte":
                expressions.append(column >= operand)
            elif op == "lt":
                expressions.append(column < operand)
            elif op == "lte":
                expressions.append(column <= operand)
            elif op == "inq":
                expressions.append(column.in_(list(operand)))
            elif op == "nin":
                expressions.append(column.not_in(list(operand)))
            elif op == "between":
                if not isinstance(operand, Sequence) or len(operand) != 2:
                    raise InvalidFilterError("'between' takes exactly two values", field=name)
                expressions.append(column.between(operand[0], operand[1]))
            elif op == "like":
                expressions.append(column.like(operand))
            elif op == "nlike":
                expressions.append(column.not_like(operand))
            elif op == "ilike":
                expressions.append(column.ilike(operand))
            else:
                raise InvalidFilterError(f"unknown operator '{op}'", field=name)

        if not expressions:
            raise InvalidFilterError(f"empty condition for '{name}'", field=name)
        return and_(*expressions)

    def _compile(self, where: Optional[Where]) -> Optional[ColumnElement[bool]]:
        """Translate a Where tree to a SQL expression. None means no restriction."""
        if where is None:
            return None
        if isinstance(where, Flat):
            parts = [self._condition(name, value) for name, value in where.fields.items()]
        else:
            parts = [part for part in (self._compile(c) for c in where.clauses) if part is not None]
        if not parts:
            return None
        if isinstance(where, Or):
            return or_(*parts)
        return and_(*parts)

    def _where_expression(self, where: Any) -> Optional[ColumnElement[bool]]:
        return self._compile(parse_where(where, strict=self._strict))

    def _order_by(self, entries: Sequence[str]) -> list[Any]:
        clauses = []
        for entry in entries:
            name, _, direction = entry.strip().partition(" ")
            direction = direction.strip().upper() or "ASC"
            if direction not in ("ASC", "DESC"):
                raise InvalidFilterError(f"bad order direction in '{entry}'")
            column = self._attribute(name)
            clauses.append(column.desc() if direction == "DESC" else column.asc())
        return clauses

    def _select(self, filter: Filter, extra: Optional[ColumnElement[bool]] = None) -> Select:
        query = select(self._model)

        condition = self._compile(filter.where)
        if extra is not None:
            condition = extra if condition is None else and_(extra, condition)
        if condition is not None:
            query = query.where(condition)

        if filter.fields:
            query = query.options(load_only(*(self._attribute(name) for name in filter.fields)))
        for name in filter.include:
            if name not in self._mapper.relationships:
                raise InvalidFilterError(f"unknown relation '{name}' for {self._model.__name__}")
            query = query.options(selectinload(getattr(self._model, name)))

        if filter.order:
            query = query.order_by(*self._order_by(filter.order))
        if filter.offset is not None:
            query = query.offset(filter.offset)
        if filter.limit is not None:
            query = query.limit(filter.limit)
        return query

    def _values(self, data: Mapping[str, Any]) -> dict[Any, Any]:
        """UPDATE values keyed by mapped attribute, validated against the model."""
        return {self._attribute(name): value for name, value in data.items()}

    def _instantiate(self, data: Any) -> ModelT:
        if isinstance(data, self._model):
            return data
        if isinstance(data, Mapping):
            return self._model(**data)
        raise TypeError(f"expected {self._model.__name__} or mapping, got {type(data).__name__}")

    async def _finish(self, options: Options) -> None:
        """Flush pending changes, or commit when the caller asks for it."""
        if options and options.get("commit"):
            await self._session.commit()
        else:
            await self._session.flush()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(self, data: Any, options: Options = None) -> ModelT:
        """Insert one entity from a model instance or a mapping of values."""
        entity = self._instantiate(data)
        self._session.add(entity)
        await self._finish(options)
        await self._session.refresh(entity)
        return entity

    async def create_all(self, items: Sequence[Any], options: Options = None) -> list[ModelT]:
        """Insert several entities in one flush."""
        entities = [self._instantiate(item) for item in items]
        self._session.add_all(entities)
        await self._finish(options)
        for entity in entities:
            await self._session.refresh(entity)
        return entities

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def find(self, filter: Any = None, options: Options = None) -> list[ModelT]:
        """All entities matching the filter."""
        query = self._select(Filter.coerce(filter, strict=self._strict))
        result = await self._session.scalars(query)
        return list(result.all())

    async def find_one(self, filter: Any = None, options: Options = None) -> Optional[ModelT]:
        """First entity matching the filter, or None."""
        query = self._select(replace(Filter.coerce(filter, strict=self._strict), limit=1))
        result = await self._session.scalars(query)
        return result.first()

    async def find_by_id(self, entity_id: IdT, filter: Any = None, options: Options = None) -> ModelT:
        """
        Entity with the given id that also satisfies the filter's where clause.

        Raises:
            NotFoundError: No such row
        """
        id_condition = getattr(self._model, self._id_key) == entity_id
        query = self._select(Filter.coerce(filter, strict=self._strict), extra=id_condition)
        result = await self._session.scalars(query)
        entity = result.first()
        if entity is None:
            raise NotFoundError(self._model.__name__, entity_id)
        return entity

    async def count(self, where: Any = None, options: Options = None) -> int:
        """Number of rows matching the where clause."""
        query = select(func.count()).select_from(self._model)
        condition = self._where_expression(where)
        if condition is not None:
            query = query.where(condition)
        return await self._session.scalar(query) or 0

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    async def update(self, entity: ModelT, options: Options = None) -> ModelT:
        """
        Persist the current state of an entity over its existing row.

        Raises:
            NotFoundError: The row does not exist
        """
        entity_id = self.identity_of(entity)
        if entity not in self._session:
            if await self._session.get(self._model, entity_id) is None:
                raise NotFoundError(self._model.__name__, entity_id)
            entity = await self._session.merge(entity)
        await self._finish(options)
        return entity

    async def update_all(self, data: Any, where: Any = None, options: Options = None) -> int:
        """Set the given values on every matching row. Returns the row count."""
        query = update(self._model).values(self._values(data))
        condition = self._where_expression(where)
        if condition is not None:
            query = query.where(condition)
        result = await self._session.execute(
            query.execution_options(synchronize_session="fetch")
        )
        await self._finish(options)
        return result.rowcount

    async def update_by_id(self, entity_id: IdT, data: Any, options: Options = None) -> None:
        """
        Set the given values on one row.

        Raises:
            NotFoundError: The row does not exist
        """
        query = (
            update(self._model)
            .where(getattr(self._model, self._id_key) == entity_id)
            .values(self._values(data))
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(query)
        if not result.rowcount:
            raise NotFoundError(self._model.__name__, entity_id)
        await self._finish(options)

    # -------------------------------------------------------------------------
    # Delete (physical)
    # -------------------------------------------------------------------------

    async def delete_by_id(self, entity_id: IdT, options: Options = None) -> None:
        """
        Remove one row.

        Raises:
            NotFoundError: The row does not exist
        """
        query = (
            delete(self._model)
            .where(getattr(self._model, self._id_key) == entity_id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(query)
        if not result.rowcount:
            raise NotFoundError(self._model.__name__, entity_id)
        await self._finish(options)

    async def delete_all(self, where: Any = None, options: Options = None) -> int:
        """Remove every matching row. Returns the row count."""
        query = delete(self._model)
        condition = self._where_expression(where)
        if condition is not None:
            query = query.where(condition)
        result = await self._session.execute(
            query.execution_options(synchronize_session="fetch")
        )
        await self._finish(options)
        return result.rowcount
