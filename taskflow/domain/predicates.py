from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Union


@dataclass(frozen=True)
class Always:
    pass


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Contains:
    field: str
    text: str


@dataclass(frozen=True)
class StartsWith:
    field: str
    text: str


@dataclass(frozen=True)
class Between:
    """Half-open range ``start <= value < end``."""

    field: str
    start: Any
    end: Any


@dataclass(frozen=True)
class And:
    items: tuple[Predicate, ...]


@dataclass(frozen=True)
class Or:
    items: tuple[Predicate, ...]


@dataclass(frozen=True)
class Not:
    item: Predicate


Predicate = Union[Always, Equals, In, Contains, StartsWith, Between, And, Or, Not]

TRUE = Always()


def all_of(*items: Predicate) -> Predicate:
    flat: list[Predicate] = []
    for item in items:
        if isinstance(item, Always):
            continue
        if isinstance(item, And):
            flat.extend(item.items)
            continue
        flat.append(item)
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def any_of(*items: Predicate) -> Predicate:
    flat: list[Predicate] = []
    for item in items:
        if isinstance(item, Always):
            return TRUE
        if isinstance(item, Or):
            flat.extend(item.items)
            continue
        flat.append(item)
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def is_null(field: str) -> Equals:
    return Equals(field, None)


def differs(field: str, value: Any) -> Predicate:
    """``field`` is NULL or holds something other than ``value``."""
    return any_of(is_null(field), Not(Equals(field, value)))


def fields_of(predicate: Predicate) -> set[str]:
    if isinstance(predicate, (Equals, In, Contains, StartsWith, Between)):
        return {predicate.field}
    if isinstance(predicate, (And, Or)):
        names: set[str] = set()
        for item in predicate.items:
            names |= fields_of(item)
        return names
    if isinstance(predicate, Not):
        return fields_of(predicate.item)
    return set()


def _lookup(record: Mapping[str, Any] | object, path: str) -> Any:
    if isinstance(record, Mapping) and path in record:
        return record[path]
    current: Any = record
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def evaluate(predicate: Predicate, record: Mapping[str, Any] | object) -> bool:
    """Interpret ``predicate`` against one in-memory record."""
    if isinstance(predicate, Always):
        return True
    if isinstance(predicate, Equals):
        value = _lookup(record, predicate.field)
        if predicate.value is None:
            return value is None
        return value is not None and value == predicate.value
    if isinstance(predicate, In):
        value = _lookup(record, predicate.field)
        return value is not None and value in predicate.values
    if isinstance(predicate, Contains):
        value = _lookup(record, predicate.field)
        return isinstance(value, str) and predicate.text.casefold() in value.casefold()
    if isinstance(predicate, StartsWith):
        value = _lookup(record, predicate.field)
        return isinstance(value, str) and value.casefold().startswith(predicate.text.casefold())
    if isinstance(predicate, Between):
        value = _lookup(record, predicate.field)
        if value is None:
            return False
        return _comparable(predicate.start) <= _comparable(value) < _comparable(predicate.end)
    if isinstance(predicate, And):
        return all(evaluate(item, record) for item in predicate.items)
    if isinstance(predicate, Or):
        return any(evaluate(item, record) for item in predicate.items)
    if isinstance(predicate, Not):
        return not evaluate(predicate.item, record)
    raise TypeError(f"unsupported predicate: {predicate!r}")


def filter_records(predicate: Predicate, records: Iterable[Any]) -> list[Any]:
    return [item for item in records if evaluate(predicate, item)]
