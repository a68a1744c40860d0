"""
Filter algebra for repository queries.

A where clause is a small immutable tree:

    Flat({"type": "a", "price": {"gt": 10}})   every field condition holds
    And((clause, clause, ...))                 every clause holds
    Or((clause, clause, ...))                  at least one clause holds

Callers may also pass the equivalent dictionaries
({"and": [...]}, {"or": [...]}, {"field": value}); ``parse_where`` and
``Filter.coerce`` turn them into the tree. Nothing in this module mutates a
caller's filter: every transform returns a new value.

Usage:
    where = parse_where({"or": [{"id": 1}, {"id": 2}]})
    exclude_deleted(where)
    # And((Flat({'deleted': False}), Or((Flat({'id': 1}), Flat({'id': 2})))))
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Optional, Union

from softmeta.config.logging import get_logger
from softmeta.utils.exceptions import InvalidFilterError

logger = get_logger(__name__)


# Comparison operators accepted inside a field condition: {"price": {"gte": 10}}
OPERATORS = frozenset({
    "eq", "neq", "gt", "gte", "lt", "lte",
    "inq", "nin", "between",
    "like", "nlike", "ilike",
})

# Keys accepted in a filter dictionary. "skip" is an alias of "offset".
FILTER_KEYS = frozenset({"where", "order", "limit", "offset", "skip", "fields", "include"})


@dataclass(frozen=True)
class Flat:
    """Field conditions that must all hold. A literal value means equality."""

    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def __repr__(self) -> str:
        return f"Flat({dict(self.fields)!r})"

    def __hash__(self) -> int:
        return hash(_freeze(self.fields))


@dataclass(frozen=True)
class And:
    """Conjunction of clauses."""

    clauses: tuple[Where, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "clauses", tuple(self.clauses))


@dataclass(frozen=True)
class Or:
    """Disjunction of clauses."""

    clauses: tuple[Where, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "clauses", tuple(self.clauses))


Where = Union[Flat, And, Or]


def _freeze(value: Any) -> Any:
    """Hashable stand-in for condition values (operator mappings, inq lists)."""
    if isinstance(value, Mapping):
        return frozenset((key, _freeze(item)) for key, item in value.items())
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _is_clause_list(value: Any) -> bool:
    """True for a list/tuple whose items are clause mappings or Where nodes."""
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        return False
    return all(isinstance(item, (Mapping, Flat, And, Or)) for item in value)


def parse_where(value: Any, *, strict: bool = True) -> Optional[Where]:
    """
    Build a Where tree from a dictionary (or pass a tree through).

    Plain keys next to "and"/"or" become one more Flat clause of the
    conjunction. A malformed "and"/"or" value raises InvalidFilterError when
    ``strict``; otherwise it is dropped with a warning and the remaining
    plain keys are read as a flat map.
    """
    if value is None or isinstance(value, (Flat, And, Or)):
        return value

    if not isinstance(value, Mapping):
        # No flat-map reading exists for a non-mapping, so this is rejected in both modes
        raise InvalidFilterError(
            f"where must be a mapping, got {type(value).__name__}",
        )

    rest: dict[str, Any] = {}
    boolean: dict[str, list[Where]] = {}
    for key, item in value.items():
        if key in ("and", "or"):
            if _is_clause_list(item):
                boolean[key] = [parse_where(clause, strict=strict) for clause in item]
                continue
            if strict:
                raise InvalidFilterError(
                    f"'{key}' must be a list of conditions",
                    key=key,
                )
            logger.warning(
                "Ignoring unrecognised boolean clause",
                key=key,
                value_type=type(item).__name__,
            )
            continue
        rest[key] = item

    if "and" in boolean:
        clauses = list(boolean["and"])
        if "or" in boolean:
            clauses.append(Or(tuple(boolean["or"])))
        if rest:
            clauses.append(Flat(rest))
        return And(tuple(clauses))

    if "or" in boolean:
        disjunction = Or(tuple(boolean["or"]))
        if rest:
            return And((Flat(rest), disjunction))
        return disjunction

    return Flat(rest)


def where_to_dict(where: Optional[Where]) -> Optional[dict[str, Any]]:
    """Inverse of parse_where, used for logging and serialisation."""
    if where is None:
        return None
    if isinstance(where, Flat):
        return dict(where.fields)
    key = "and" if isinstance(where, And) else "or"
    return {key: [where_to_dict(clause) for clause in where.clauses]}


def _as_names(value: Any, what: str) -> tuple[str, ...]:
    """Normalise a name, a list of names or a {name: bool} mapping."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Mapping):
        return tuple(name for name, enabled in value.items() if enabled)
    if isinstance(value, Sequence) and all(isinstance(name, str) for name in value):
        return tuple(value)
    raise InvalidFilterError(f"'{what}' must be a name or a list of names")


def _as_count(value: Any, what: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidFilterError(f"'{what}' must be a non-negative integer", value=value)
    return value


@dataclass(frozen=True)
class Filter:
    """
    Query filter: where clause plus ordering, paging and projection.

    order:   "field", "field ASC" or "field DESC" entries
    fields:  attributes to load (the primary key is always loaded)
    include: relationships to eager-load
    """

    where: Optional[Where] = None
    order: tuple[str, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    fields: tuple[str, ...] = ()
    include: tuple[str, ...] = ()

    @classmethod
    def coerce(cls, value: Any = None, *, strict: bool = True) -> Filter:
        """Accept None, a Filter, or a filter dictionary."""
        if value is None:
            return cls()
        if isinstance(value, Filter):
            return value
        if not isinstance(value, Mapping):
            raise InvalidFilterError(f"filter must be a mapping, got {type(value).__name__}")

        unknown = set(value) - FILTER_KEYS
        if unknown:
            if strict:
                raise InvalidFilterError(f"unknown filter keys: {', '.join(sorted(unknown))}")
            logger.warning("Ignoring unknown filter keys", keys=sorted(unknown))

        offset = value.get("offset", value.get("skip"))
        return cls(
            where=parse_where(value.get("where"), strict=strict),
            order=_as_names(value.get("order"), "order"),
            limit=_as_count(value.get("limit"), "limit"),
            offset=_as_count(offset, "offset"),
            fields=_as_names(value.get("fields"), "fields"),
            include=_as_names(value.get("include"), "include"),
        )

    def with_where(self, where: Optional[Where]) -> Filter:
        """Copy of this filter with another where clause."""
        return replace(self, where=where)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.where is not None:
            data["where"] = where_to_dict(self.where)
        if self.order:
            data["order"] = list(self.order)
        if self.limit is not None:
            data["limit"] = self.limit
        if self.offset is not None:
            data["offset"] = self.offset
        if self.fields:
            data["fields"] = list(self.fields)
        if self.include:
            data["include"] = list(self.include)
        return data


# =============================================================================
# Soft-delete predicate rewrite
# =============================================================================


def merge_fields(where: Optional[Where], **fields: Any) -> Where:
    """
    Require ``fields`` on top of ``where`` without changing its meaning.

    - Non-empty And: the conditions are appended as one more clause
      (skipped when an identical clause is already there).
    - Non-empty Or: wrapped as And(conditions, original Or), so "any
      disjunct matches" still holds.
    - Anything else (absent, empty And/Or, Flat): a Flat copy with the
      conditions set, overriding same-named keys.
    """
    if isinstance(where, And) and where.clauses:
        clause = Flat(fields)
        if clause in where.clauses:
            return where
        return And(where.clauses + (clause,))

    if isinstance(where, Or) and where.clauses:
        return And((Flat(fields), where))

    base = where.fields if isinstance(where, Flat) else {}
    return Flat({**base, **fields})


def exclude_deleted(where: Optional[Where], **extra: Any) -> Where:
    """Add ``deleted = False`` (plus ``extra``, e.g. an id) to a where clause."""
    return merge_fields(where, deleted=False, **extra)
