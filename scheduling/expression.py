"""
Six-field schedule expressions.

An expression holds one matcher spec per field, in the order
second, minute, hour, day-of-month, month, day-of-week.
Each spec follows the cron field grammar:

    *  |  N  |  N-M  |  N,M,...  |  */N  |  N-M/S

Specs are validated when they are written, so an expression that
exists is always well-formed and can be evaluated without errors.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import FrozenSet, Iterator, Tuple, Union

WILDCARD = "*"


class MalformedExpressionError(ValueError):
    """Raised when a field spec or raw expression is not well-formed."""
    pass


class ScheduleField(IntEnum):
    """Field positions inside an expression (1-indexed)."""
    SECOND = 1
    MINUTE = 2
    HOUR = 3
    DAY_OF_MONTH = 4
    MONTH = 5
    DAY_OF_WEEK = 6

    @property
    def bounds(self) -> Tuple[int, int]:
        """Inclusive (low, high) domain of the field."""
        return FIELD_BOUNDS[self]


FIELD_BOUNDS = {
    ScheduleField.SECOND: (0, 59),
    ScheduleField.MINUTE: (0, 59),
    ScheduleField.HOUR: (0, 23),
    ScheduleField.DAY_OF_MONTH: (1, 31),
    ScheduleField.MONTH: (1, 12),
    ScheduleField.DAY_OF_WEEK: (0, 6),
}


def _parse_number(text: str, spec: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise MalformedExpressionError(
            f"Expected a number but found {text!r} in field spec {spec!r}"
        )
    return int(text)


def _iter_terms(spec: str) -> Iterator[Tuple[int, int, int, bool]]:
    """
    Split a field spec into (start, end, step, is_wildcard) terms.

    Wildcard terms carry start/end of -1; the caller substitutes the
    field's bounds.
    """
    if not spec:
        raise MalformedExpressionError("Field spec cannot be empty")

    for term in spec.split(","):
        if not term:
            raise MalformedExpressionError(f"Empty list item in field spec {spec!r}")

        base, sep, step_text = term.partition("/")
        step = 1
        if sep:
            step = _parse_number(step_text, spec)
            if step == 0:
                raise MalformedExpressionError(f"Step cannot be zero in field spec {spec!r}")

        if base == WILDCARD:
            yield -1, -1, step, True
            continue

        low_text, dash, high_text = base.partition("-")
        low = _parse_number(low_text, spec)
        if dash:
            high = _parse_number(high_text, spec)
        elif sep:
            raise MalformedExpressionError(
                f"Step requires '*' or a range in field spec {spec!r}"
            )
        else:
            high = low
        yield low, high, step, False


def validate_spec(spec: str) -> str:
    """
    Check that a field spec is syntactically well-formed.

    Args:
        spec: Raw field spec (e.g. "*/5", "1-5", "0,30")

    Returns:
        The spec, stripped of surrounding whitespace

    Raises:
        MalformedExpressionError: If the spec does not follow the field grammar
    """
    spec = str(spec).strip()
    for _ in _iter_terms(spec):
        pass
    return spec


def expand_spec(spec: str, field: ScheduleField) -> FrozenSet[int]:
    """
    Expand a field spec into the set of integers it allows.

    Values outside the field's domain are dropped. On the day-of-week
    field, 7 is treated as Sunday (0).
    """
    low_bound, high_bound = field.bounds
    if field is ScheduleField.DAY_OF_WEEK:
        high_bound = 7

    values = set()
    for start, end, step, is_wildcard in _iter_terms(spec):
        if is_wildcard:
            start, end = field.bounds
        values.update(range(start, end + 1, step))

    if field is ScheduleField.DAY_OF_WEEK and 7 in values:
        values.discard(7)
        values.add(0)

    return frozenset(v for v in values if low_bound <= v <= high_bound)


@dataclass(frozen=True)
class ScheduleExpression:
    """
    Immutable six-field schedule expression.

    Use `parse()` to build one from a raw string and `set_field()` to
    derive a copy with one field replaced.
    """
    second: str = WILDCARD
    minute: str = WILDCARD
    hour: str = WILDCARD
    day_of_month: str = WILDCARD
    month: str = WILDCARD
    day_of_week: str = WILDCARD

    def __post_init__(self):
        for field in ScheduleField:
            attr = field.name.lower()
            object.__setattr__(self, attr, validate_spec(getattr(self, attr)))

    @classmethod
    def parse(cls, text: str) -> 'ScheduleExpression':
        """
        Build an expression from a raw cron string.

        Six fields are read as second, minute, hour, day-of-month, month,
        day-of-week. Five fields are classic cron (no seconds) and get a
        leading second field of "0".

        Raises:
            MalformedExpressionError: On a wrong field count or bad field syntax
        """
        parts = str(text).split()
        if len(parts) == 5:
            parts = ["0"] + parts
        if len(parts) != 6:
            raise MalformedExpressionError(
                f"Expression must have 5 or 6 fields, got {len(parts)}: {text!r}"
            )
        return cls(*parts)

    def get(self, field: ScheduleField) -> str:
        """Return the raw spec of a field."""
        return getattr(self, ScheduleField(field).name.lower())

    def set_field(self, field: Union[ScheduleField, int], spec) -> 'ScheduleExpression':
        """
        Return a copy of this expression with one field replaced.

        Args:
            field: Field to replace (enum member or 1-6 position)
            spec: New field spec; ints are converted to strings

        Raises:
            MalformedExpressionError: If the spec is not well-formed. The
                original expression is never modified.
        """
        field = ScheduleField(field)
        spec = validate_spec(spec)
        values = list(self.fields())
        values[field - 1] = spec
        return ScheduleExpression(*values)

    def fields(self) -> Tuple[str, ...]:
        """All six raw specs in positional order."""
        return tuple(self.get(field) for field in ScheduleField)

    def is_wildcard(self, field: ScheduleField) -> bool:
        return self.get(field) == WILDCARD

    def values(self, field: ScheduleField) -> FrozenSet[int]:
        """Allowed integer values of a field."""
        return expand_spec(self.get(field), ScheduleField(field))

    def to_canonical_string(self) -> str:
        return " ".join(self.fields())

    def __str__(self):
        return self.to_canonical_string()
