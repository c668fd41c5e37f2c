"""
Small filter AST for search queries and its Meilisearch rendering.

Filters are built as data (Eq, Range, AnyOf, And) and rendered to the search
engine's filter syntax in one place, so query construction can be tested
without an engine and values are always quoted consistently.
"""
from dataclasses import dataclass

FilterValue = str | int | float | bool


@dataclass(frozen=True)
class Eq:
    """``field = value``."""

    field: str
    value: FilterValue


@dataclass(frozen=True)
class Range:
    """Inclusive range ``gte <= field <= lte``; either bound may be omitted."""

    field: str
    gte: int | float | None = None
    lte: int | float | None = None


@dataclass(frozen=True)
class AnyOf:
    """Set membership: ``field`` equals (or, for arrays, contains) any of ``values``."""

    field: str
    values: tuple[FilterValue, ...]


@dataclass(frozen=True)
class And:
    """Conjunction of clauses."""

    clauses: tuple["Filter", ...]


Filter = Eq | Range | AnyOf | And


def render_value(value: FilterValue) -> str:
    """Render a literal: numbers bare, strings double-quoted with escapes."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return repr(value)
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_filter(node: Filter) -> str:
    """
    Render a filter AST to a Meilisearch filter expression.

    Examples:
        Eq("owner_id", 7)                    -> owner_id = 7
        AnyOf("tags", ("a", "b"))            -> tags IN ["a", "b"]
        Range("created_at", gte=1, lte=2)    -> created_at 1 TO 2
        And((Eq(...), AnyOf(...)))           -> (owner_id = 7) AND (tags IN [...])
    """
    match node:
        case Eq(field=field, value=value):
            return f"{field} = {render_value(value)}"
        case AnyOf(field=field, values=values):
            rendered = ", ".join(render_value(v) for v in values)
            return f"{field} IN [{rendered}]"
        case Range(field=field, gte=gte, lte=lte):
            if gte is not None and lte is not None:
                return f"{field} {render_value(gte)} TO {render_value(lte)}"
            if gte is not None:
                return f"{field} >= {render_value(gte)}"
            if lte is not None:
                return f"{field} <= {render_value(lte)}"
            raise ValueError(f"Range filter on {field!r} has no bounds")
        case And(clauses=clauses):
            if not clauses:
                raise ValueError("And filter has no clauses")
            if len(clauses) == 1:
                return render_filter(clauses[0])
            return " AND ".join(f"({render_filter(c)})" for c in clauses)
    raise TypeError(f"Unsupported filter node: {node!r}")
