"""
Query predicates over entity fields.

Predicates are plain data (no callables) so a container can translate them
into its own query language:

    from docrepo.repositories.filters import field

    predicate = (field("title") == "draft") & (field("priority") >= 3)
    notes = await repo.get_all(predicate)

Values are normalized with pydantic's JSON conversion so UUIDs and enums
compare against their stored representation. Datetimes use the same
fixed-width UTC text Entity stores, so range comparisons follow time order.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Tuple

from pydantic_core import to_jsonable_python

from docrepo.models.base import to_storage_datetime


COMPARISON_OPERATORS = ("eq", "ne", "lt", "le", "gt", "ge", "in")


class Condition:
    """Base class for predicate nodes; combine with &, | and ~."""

    def __and__(self, other: "Condition") -> "Condition":
        return All(_flatten(All, (self, other)))

    def __or__(self, other: "Condition") -> "Condition":
        return AnyOf(_flatten(AnyOf, (self, other)))

    def __invert__(self) -> "Condition":
        return Not(self)

    def map_paths(self, mapper: Callable[[str], str]) -> "Condition":
        """Return a copy with every field path rewritten by mapper."""
        raise NotImplementedError


@dataclass(frozen=True)
class Comparison(Condition):
    """Compare the value at path with a literal."""

    path: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in COMPARISON_OPERATORS:
            raise ValueError(f"Unsupported operator '{self.op}'")
        if not self.path:
            raise ValueError("Field path cannot be empty")

    def map_paths(self, mapper: Callable[[str], str]) -> "Condition":
        return Comparison(mapper(self.path), self.op, self.value)


@dataclass(frozen=True)
class All(Condition):
    """Logical AND of every child condition."""

    conditions: Tuple[Condition, ...]

    def map_paths(self, mapper: Callable[[str], str]) -> "Condition":
        return All(tuple(c.map_paths(mapper) for c in self.conditions))


@dataclass(frozen=True)
class AnyOf(Condition):
    """Logical OR of every child condition."""

    conditions: Tuple[Condition, ...]

    def map_paths(self, mapper: Callable[[str], str]) -> "Condition":
        return AnyOf(tuple(c.map_paths(mapper) for c in self.conditions))


@dataclass(frozen=True)
class Not(Condition):
    """Logical negation."""

    condition: Condition

    def map_paths(self, mapper: Callable[[str], str]) -> "Condition":
        return Not(self.condition.map_paths(mapper))


def _flatten(kind: type, conditions: Iterable[Condition]) -> Tuple[Condition, ...]:
    flat = []
    for condition in conditions:
        if not isinstance(condition, Condition):
            raise TypeError(
                f"Cannot combine a predicate with {type(condition).__name__}"
            )
        if isinstance(condition, kind):
            flat.extend(condition.conditions)
        else:
            flat.append(condition)
    return tuple(flat)


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_storage_datetime(value)
    return to_jsonable_python(value)


class Field:
    """
    Reference to a document field, used to build comparisons.

    Paths may be Python attribute names or stored keys; dotted paths
    address nested objects ("address.city").
    """

    __slots__ = ("path",)

    def __init__(self, path: str):
        self.path = path

    def _compare(self, op: str, value: Any) -> Comparison:
        return Comparison(self.path, op, _normalize(value))

    def __eq__(self, value: Any) -> Comparison:  # type: ignore[override]
        return self._compare("eq", value)

    def __ne__(self, value: Any) -> Comparison:  # type: ignore[override]
        return self._compare("ne", value)

    def __lt__(self, value: Any) -> Comparison:
        return self._compare("lt", value)

    def __le__(self, value: Any) -> Comparison:
        return self._compare("le", value)

    def __gt__(self, value: Any) -> Comparison:
        return self._compare("gt", value)

    def __ge__(self, value: Any) -> Comparison:
        return self._compare("ge", value)

    def in_(self, values: Iterable[Any]) -> Comparison:
        values = tuple(_normalize(v) for v in values)
        if not values:
            raise ValueError("in_() requires at least one value")
        return Comparison(self.path, "in", values)

    def is_null(self) -> Comparison:
        return Comparison(self.path, "eq", None)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"field({self.path!r})"


def field(path: str) -> Field:
    """Start a predicate on the field at path."""
    return Field(path)


def not_deleted() -> Condition:
    """The soft-delete visibility filter applied to every read."""
    return Comparison("isDeleted", "eq", False)
