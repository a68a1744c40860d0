"""
Repositories: filter algebra, generic CRUD and the soft-delete decorator.
"""

from softmeta.repositories.filters import (
    And,
    Filter,
    Flat,
    Or,
    Where,
    exclude_deleted,
    merge_fields,
    parse_where,
    where_to_dict,
)
from softmeta.repositories.crud import CrudRepository
from softmeta.repositories.soft_delete import PrincipalAccessor, SoftDeleteRepository

__all__ = [
    # filters
    "And",
    "Filter",
    "Flat",
    "Or",
    "Where",
    "exclude_deleted",
    "merge_fields",
    "parse_where",
    "where_to_dict",
    # repositories
    "CrudRepository",
    "PrincipalAccessor",
    "SoftDeleteRepository",
]
