"""
Mapping metadata used by repositories: primary keys and retargeted tables.
"""

from typing import Any, Callable, Dict, Optional, Tuple, Type
from sqlalchemy import MetaData, Table, and_, inspect as sa_inspect
from sqlalchemy.orm import Mapper

# model -> names of its primary-key attributes (empty when unknown)
KeyResolver = Callable[[Type[Any]], Tuple[str, ...]]

# (model, table name) -> copy of the model's table under that name
_retargeted_tables: Dict[Tuple[Type[Any], str], Table] = {}


def mapper_of(model: Type[Any]) -> Optional[Mapper]:
    return sa_inspect(model, raiseerr=False)


def primary_key_names(model: Type[Any]) -> Tuple[str, ...]:
    """
    Default key resolver.

    A model may declare its key explicitly with a `__primary_key__` tuple of
    attribute names; otherwise the mapper's primary key is used.
    """
    declared = getattr(model, "__primary_key__", None)
    if declared:
        return tuple(declared)
    mapper = mapper_of(model)
    if mapper is None:
        return ()
    return tuple(mapper.get_property_by_column(column).key for column in mapper.primary_key)


def as_key_tuple(key: Any) -> Tuple[Any, ...]:
    """Normalize a scalar or composite key into a tuple."""
    if isinstance(key, tuple):
        return key
    return (key,)


def identity_argument(key: Tuple[Any, ...]) -> Any:
    """Argument for Session.get: a scalar for single keys, the tuple otherwise."""
    return key[0] if len(key) == 1 else key


def retarget_table(model: Type[Any], table_name: str) -> Table:
    """Copy of `model`'s table with the same columns under another name (cached)."""
    cache_key = (model, table_name)
    if cache_key not in _retargeted_tables:
        source = mapper_of(model).local_table
        _retargeted_tables[cache_key] = source.to_metadata(MetaData(), name=table_name)
    return _retargeted_tables[cache_key]


def column_values(model: Type[Any], entity: Any, table: Table) -> Dict[str, Any]:
    """Column name -> value of `entity`, for Core statements against `table`."""
    mapper = mapper_of(model)
    values = {}
    for column in mapper.local_table.columns:
        value = getattr(entity, mapper.get_property_by_column(column).key)
        if value is None and column.primary_key:
            # Left to the database (autoincrement)
            continue
        values[table.c[column.name].key] = value
    return values


def key_clause(model: Type[Any], table: Table, key: Tuple[Any, ...]):
    """WHERE clause matching one row of `table` by primary key."""
    mapper = mapper_of(model)
    columns = [table.c[column.name] for column in mapper.primary_key]
    if len(columns) != len(key):
        raise ValueError(
            f"{model.__name__} has {len(columns)} key column(s), got {len(key)} value(s)"
        )
    return and_(*(column == value for column, value in zip(columns, key)))


def entity_key(model: Type[Any], entity: Any) -> Tuple[Any, ...]:
    mapper = mapper_of(model)
    return tuple(getattr(entity, mapper.get_property_by_column(column).key) for column in mapper.primary_key)
