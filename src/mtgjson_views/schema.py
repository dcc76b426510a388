"""Column classification rules and view statements for parquet sources.

MTGJSON flattens list fields (``colors``, ``keywords``, ...) into
comma-separated VARCHAR columns and nested objects (``identifiers``,
``legalities``, ...) into JSON text when it writes parquet. The rules in
this module decide, from a source's probed schema alone, which columns get
split back into ``VARCHAR[]`` and which get cast to DuckDB's ``JSON`` type.

Nothing here touches DuckDB: :func:`classify_columns` and the
``build_*_statement`` helpers are pure, so the same schema and rules always
produce the same SQL.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


class ColumnKind(str, enum.Enum):
    """How a source column is exposed by its view."""

    IDENTITY = "identity"
    STATIC_LIST = "static_list"
    HEURISTIC_LIST = "heuristic_list"
    IGNORED = "ignored"
    JSON_CAST = "json_cast"


# Known list columns that don't follow the plural naming convention
# (colorIdentity, availability, producedMana, ...).
_STATIC_LIST_COLUMNS: dict[str, frozenset[str]] = {
    "cards": frozenset(
        {
            "artistIds",
            "attractionLights",
            "availability",
            "boosterTypes",
            "cardParts",
            "colorIdentity",
            "colorIndicator",
            "colors",
            "finishes",
            "frameEffects",
            "keywords",
            "originalPrintings",
            "otherFaceIds",
            "printings",
            "producedMana",
            "promoTypes",
            "rebalancedPrintings",
            "subsets",
            "subtypes",
            "supertypes",
            "types",
            "variations",
        }
    ),
    "tokens": frozenset(
        {
            "artistIds",
            "availability",
            "boosterTypes",
            "colorIdentity",
            "colorIndicator",
            "colors",
            "finishes",
            "frameEffects",
            "keywords",
            "otherFaceIds",
            "producedMana",
            "promoTypes",
            "reverseRelated",
            "subtypes",
            "supertypes",
            "types",
        }
    ),
}

# Scalar strings that end in "s" but must never be split: free text that
# contains commas, status-like values, and the JSON-bearing columns.
_IGNORED_COLUMNS = frozenset(
    {
        "text",
        "originalText",
        "flavorText",
        "printedText",
        "identifiers",
        "legalities",
        "leadershipSkills",
        "purchaseUrls",
        "relatedCards",
        "rulings",
        "sourceProducts",
        "foreignData",
        "translations",
        "toughness",
        "status",
        "format",
        "uris",
        "scryfallUri",
    }
)

# JSON text columns exposed as DuckDB JSON, so ``identifiers->>'scryfallId'``
# and json_extract() work directly on the view.
_JSON_CAST_COLUMNS = frozenset(
    {
        "identifiers",
        "legalities",
        "leadershipSkills",
        "purchaseUrls",
        "relatedCards",
        "rulings",
        "sourceProducts",
        "foreignData",
        "translations",
    }
)


@dataclass(frozen=True)
class ClassificationRules:
    """Versioned rule tables driving column classification.

    Bump :attr:`version` whenever a table changes so cached classifications
    and test expectations can be tied to a rule set.
    """

    version: int
    static_list_columns: Mapping[str, frozenset[str]] = field(default_factory=dict)
    ignored_columns: frozenset[str] = frozenset()
    json_cast_columns: frozenset[str] = frozenset()
    list_suffix: str = "s"
    list_delimiter: str = ", "
    string_type: str = "VARCHAR"

    def static_lists_for(self, view_name: str) -> frozenset[str]:
        return self.static_list_columns.get(view_name, frozenset())

    def looks_like_list(self, column: str) -> bool:
        """Plural-name heuristic for string columns not covered by a table."""
        return column.endswith(self.list_suffix) and column not in self.ignored_columns


DEFAULT_RULES = ClassificationRules(
    version=1,
    static_list_columns=_STATIC_LIST_COLUMNS,
    ignored_columns=_IGNORED_COLUMNS,
    json_cast_columns=_JSON_CAST_COLUMNS,
)


@dataclass(frozen=True)
class ColumnClassification:
    """Per-column decisions for one source, in source column order."""

    view_name: str
    kinds: tuple[tuple[str, ColumnKind], ...]
    rules_version: int

    def as_dict(self) -> dict[str, ColumnKind]:
        return dict(self.kinds)

    def columns_of(self, *kinds: ColumnKind) -> list[str]:
        """Sorted names of the columns classified as any of *kinds*."""
        return sorted(col for col, kind in self.kinds if kind in kinds)

    @property
    def list_columns(self) -> list[str]:
        return self.columns_of(ColumnKind.STATIC_LIST, ColumnKind.HEURISTIC_LIST)

    @property
    def json_columns(self) -> list[str]:
        return self.columns_of(ColumnKind.JSON_CAST)


def classify_columns(
    view_name: str,
    schema: Mapping[str, str],
    rules: ClassificationRules = DEFAULT_RULES,
) -> ColumnClassification:
    """Classify every column of a probed source schema.

    Only columns whose declared type is the string type are ever rewritten;
    a column the upstream already ships as a native array stays untouched
    even when a rule table names it.

    Args:
        view_name: Logical view the source is registered as.
        schema: Column name to declared DuckDB type, in source order.
        rules: Rule tables to apply.

    Returns:
        The classification of every column in *schema*.
    """
    static_lists = rules.static_lists_for(view_name)
    kinds: list[tuple[str, ColumnKind]] = []
    for column, dtype in schema.items():
        if dtype != rules.string_type:
            kind = ColumnKind.IDENTITY
        elif column in static_lists:
            kind = ColumnKind.STATIC_LIST
        elif column in rules.json_cast_columns:
            kind = ColumnKind.JSON_CAST
        elif column in rules.ignored_columns:
            kind = ColumnKind.IGNORED
        elif rules.looks_like_list(column):
            kind = ColumnKind.HEURISTIC_LIST
        else:
            kind = ColumnKind.IDENTITY
        kinds.append((column, kind))
    return ColumnClassification(view_name, tuple(kinds), rules.version)


def quote_ident(name: str) -> str:
    """Double-quote a DuckDB identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a DuckDB string literal."""
    return "'" + value.replace("'", "''") + "'"


def parquet_source(path: str) -> str:
    """``read_parquet(...)`` table function call for a local file path."""
    return f"read_parquet({quote_literal(path)})"


def describe_statement(source_sql: str) -> str:
    """Zero-row schema probe: only the parquet footer is read."""
    return f"SELECT column_name, column_type FROM (DESCRIBE SELECT * FROM {source_sql})"


def list_split_expr(column: str, delimiter: str = ", ") -> str:
    """Expression turning a delimited string column into ``VARCHAR[]``.

    NULL and blank strings become an empty list.
    """
    col = quote_ident(column)
    return (
        f"CASE WHEN {col} IS NULL OR TRIM({col}) = '' "
        f"THEN []::VARCHAR[] "
        f"ELSE string_split({col}, {quote_literal(delimiter)}) END AS {col}"
    )


def json_cast_expr(column: str) -> str:
    """Expression casting a JSON text column; unparseable text becomes NULL."""
    col = quote_ident(column)
    return f"TRY_CAST({col} AS JSON) AS {col}"


def build_replace_clause(
    classification: ColumnClassification,
    rules: ClassificationRules = DEFAULT_RULES,
) -> str:
    """``REPLACE (...)`` clause for a ``SELECT *``, or ``""`` if nothing changes."""
    exprs = [list_split_expr(c, rules.list_delimiter) for c in classification.list_columns]
    exprs.extend(json_cast_expr(c) for c in classification.json_columns)
    if not exprs:
        return ""
    return " REPLACE (" + ", ".join(exprs) + ")"


def build_view_statement(
    view_name: str,
    source_sql: str,
    classification: ColumnClassification,
    rules: ClassificationRules = DEFAULT_RULES,
) -> str:
    """Single ``CREATE OR REPLACE VIEW`` for a list/JSON-adapted source."""
    replace_clause = build_replace_clause(classification, rules)
    return (
        f"CREATE OR REPLACE VIEW {quote_ident(view_name)} AS "
        f"SELECT *{replace_clause} FROM {source_sql}"
    )


@dataclass(frozen=True)
class WidePivot:
    """A wide source with one column per category, read back as rows.

    Every column outside :attr:`identity_columns` is a category; new
    categories (formats) are picked up without code changes.
    """

    identity_columns: tuple[str, ...]
    name_column: str
    value_column: str

    def category_columns(self, columns: Iterable[str]) -> list[str]:
        """Category columns in source order."""
        return [c for c in columns if c not in self.identity_columns]


#: Views materialized by unpivoting instead of list/JSON rewriting.
PIVOT_VIEWS: dict[str, WidePivot] = {
    "card_legalities": WidePivot(
        identity_columns=("uuid",),
        name_column="format",
        value_column="status",
    ),
}


def build_pivot_statement(
    view_name: str,
    source_sql: str,
    columns: Iterable[str],
    pivot: WidePivot,
) -> str:
    """``CREATE OR REPLACE VIEW`` that unpivots a wide source.

    Produces ``(identity..., name_column, value_column)`` rows and drops rows
    whose value is NULL. A source without category columns is assumed to be
    in row format already and is passed through unchanged.
    """
    categories = pivot.category_columns(columns)
    view = quote_ident(view_name)
    if not categories:
        return f"CREATE OR REPLACE VIEW {view} AS SELECT * FROM {source_sql}"
    name_col = quote_ident(pivot.name_column)
    value_col = quote_ident(pivot.value_column)
    keep = ", ".join(quote_ident(c) for c in pivot.identity_columns)
    on = ", ".join(quote_ident(c) for c in categories)
    return (
        f"CREATE OR REPLACE VIEW {view} AS "
        f"SELECT {keep}, {name_col}, {value_col} FROM ("
        f"UNPIVOT (SELECT * FROM {source_sql}) "
        f"ON {on} "
        f"INTO NAME {name_col} VALUE {value_col}"
        f") WHERE {value_col} IS NOT NULL"
    )
