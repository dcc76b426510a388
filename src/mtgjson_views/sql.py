"""Parameterized SQL builder.

Values never reach the SQL text: every helper appends one ``$N`` placeholder
and pushes the value onto a single parameter list in the same call, so the
``N``-th parameter is always the one ``$N`` refers to. Fragments written by
callers use local ``$1``, ``$2``, ... and are renumbered on the way in.
"""

from __future__ import annotations

import re
from typing import Any

_PLACEHOLDER = re.compile(r"\$(\d+)")


def renumber(fragment: str, offset: int, count: int) -> str:
    """Shift local ``$1..$count`` placeholders in *fragment* by *offset*.

    Done in one regex pass, so ``$1`` never clobbers ``$10``.

    Raises:
        ValueError: If the fragment refers to a placeholder outside
            ``1..count``, or never refers to one of them.
    """
    seen: set[int] = set()

    def shift(match: re.Match[str]) -> str:
        local = int(match.group(1))
        if not 1 <= local <= count:
            raise ValueError(
                f"placeholder ${local} in {fragment!r} has no matching "
                f"parameter ({count} supplied)"
            )
        seen.add(local)
        return f"${offset + local}"

    remapped = _PLACEHOLDER.sub(shift, fragment)
    missing = sorted(set(range(1, count + 1)) - seen)
    if missing:
        raise ValueError(
            f"{fragment!r} never uses placeholder ${missing[0]} "
            f"({count} parameters supplied)"
        )
    return remapped


def _check_count(name: str, n: Any) -> int:
    if isinstance(n, bool) or not isinstance(n, int):
        raise TypeError(f"{name} must be a non-negative integer, got {n!r}")
    if n < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {n!r}")
    return n


class SQLBuilder:
    """Builds parameterized DuckDB queries. Methods return ``self`` for chaining.

    Example::

        sql, params = (
            SQLBuilder("cards")
            .where_eq("setCode", "MH3")
            .where_like("name", "Lightning%")
            .order_by("name ASC")
            .limit(10)
            .build()
        )
        rows = conn.execute(sql, params)

    Column names, join clauses and ORDER BY expressions are trusted SQL;
    only values go through parameters.
    """

    def __init__(self, base_table: str) -> None:
        self._select: list[str] = ["*"]
        self._distinct = False
        self._from = base_table
        self._joins: list[str] = []
        self._where: list[str] = []
        self._params: list[Any] = []
        # add_param indices not yet used by a verbatim fragment
        self._unclaimed: set[int] = set()
        self._group_by: list[str] = []
        self._having: list[str] = []
        self._order_by: list[str] = []
        self._limit: int | None = None
        self._offset: int | None = None

    @property
    def params(self) -> tuple[Any, ...]:
        """Parameters added so far, in placeholder order."""
        return tuple(self._params)

    def _bind(self, value: Any) -> str:
        self._params.append(value)
        return f"${len(self._params)}"

    def add_param(self, value: Any) -> str:
        """Append one value and return the placeholder that refers to it.

        For fragments the helpers don't cover::

            ph = q.add_param(3)
            q.where(f"len(colors) >= {ph}")   # no $N left to renumber

        The placeholder may be used by exactly one value-less
        :meth:`where` or :meth:`having` fragment.
        """
        placeholder = self._bind(value)
        self._unclaimed.add(len(self._params))
        return placeholder

    def select(self, *columns: str) -> SQLBuilder:
        """Replace the default ``*`` with the given columns or expressions."""
        self._select = list(columns)
        return self

    def distinct(self) -> SQLBuilder:
        self._distinct = True
        return self

    def join(self, clause: str) -> SQLBuilder:
        """Add a full JOIN clause (e.g. ``"JOIN sets s ON cards.setCode = s.code"``)."""
        self._joins.append(clause)
        return self

    def _absorb(self, fragment: str, params: tuple[Any, ...]) -> str:
        if not params:
            # Verbatim fragments may only refer to unclaimed add_param slots
            used = {int(n) for n in _PLACEHOLDER.findall(fragment)}
            stray = sorted(used - self._unclaimed)
            if stray:
                raise ValueError(
                    f"placeholder ${stray[0]} in {fragment!r} has no matching "
                    "parameter (pass values, or use one returned by add_param)"
                )
            self._unclaimed -= used
            return fragment
        remapped = renumber(fragment, len(self._params), len(params))
        self._params.extend(params)
        return remapped

    def where(self, condition: str, *params: Any) -> SQLBuilder:
        """Add a raw WHERE condition using local ``$1``, ``$2``, ... placeholders.

        A condition given without values is added as-is. Its placeholders
        must be ones returned by :meth:`add_param` and not used before.

        Args:
            condition: SQL condition, e.g. ``"manaValue BETWEEN $1 AND $2"``.
            *params: Values for the local placeholders, in order.

        Raises:
            ValueError: If *condition* uses a placeholder with no value, or
                one that another fragment already uses.
        """
        self._where.append(self._absorb(condition, params))
        return self

    def where_eq(self, column: str, value: Any) -> SQLBuilder:
        self._where.append(f"{column} = {self._bind(value)}")
        return self

    def where_like(self, column: str, value: str) -> SQLBuilder:
        """Case-insensitive LIKE (``%`` and ``_`` are wildcards)."""
        self._where.append(f"LOWER({column}) LIKE LOWER({self._bind(value)})")
        return self

    def where_gte(self, column: str, value: Any) -> SQLBuilder:
        self._where.append(f"{column} >= {self._bind(value)}")
        return self

    def where_lte(self, column: str, value: Any) -> SQLBuilder:
        self._where.append(f"{column} <= {self._bind(value)}")
        return self

    def where_in(self, column: str, values: list[Any]) -> SQLBuilder:
        """IN condition with one placeholder per value.

        An empty list adds ``FALSE``, which matches no rows.
        """
        if not values:
            self._where.append("FALSE")
            return self
        placeholders = ", ".join(self._bind(v) for v in values)
        self._where.append(f"{column} IN ({placeholders})")
        return self

    def where_contains(self, column: str, value: Any) -> SQLBuilder:
        """Membership test on a list column (e.g. ``colors`` contains ``"R"``)."""
        self._where.append(f"list_contains({column}, {self._bind(value)})")
        return self

    def where_regex(self, column: str, pattern: str) -> SQLBuilder:
        """Regular expression match via DuckDB ``regexp_matches``."""
        self._where.append(f"regexp_matches({column}, {self._bind(pattern)})")
        return self

    def where_fuzzy(
        self, column: str, value: str, *, threshold: float = 0.8
    ) -> SQLBuilder:
        """Typo-tolerant match on Jaro-Winkler similarity.

        Keeps rows where ``jaro_winkler_similarity(column, value) > threshold``.
        Pair with an ORDER BY on the similarity for best-first results.

        Raises:
            ValueError: If *threshold* is not a number in ``[0, 1]``.
        """
        if (
            isinstance(threshold, bool)
            or not isinstance(threshold, (int, float))
            or not 0 <= threshold <= 1
        ):
            raise ValueError(
                f"threshold must be a number between 0 and 1, got {threshold!r}"
            )
        target = self._bind(value)
        bound = self._bind(float(threshold))
        self._where.append(f"jaro_winkler_similarity({column}, {target}) > {bound}")
        return self

    def where_or(self, *conditions: tuple[str, Any]) -> SQLBuilder:
        """OR together ``(fragment, value)`` pairs, each using local ``$1``.

        Example::

            q.where_eq("setCode", "A25").where_or(
                ("rarity = $1", "rare"), ("rarity = $1", "mythic")
            )
            # WHERE setCode = $1 AND (rarity = $2 OR rarity = $3)
        """
        if not conditions:
            return self
        base = len(self._params)
        parts = [
            renumber(cond, base + i, 1) for i, (cond, _) in enumerate(conditions)
        ]
        self._params.extend(value for _, value in conditions)
        self._where.append(f"({' OR '.join(parts)})")
        return self

    def group_by(self, *columns: str) -> SQLBuilder:
        self._group_by.extend(columns)
        return self

    def having(self, condition: str, *params: Any) -> SQLBuilder:
        """Add a HAVING condition; placeholders work as in :meth:`where`."""
        self._having.append(self._absorb(condition, params))
        return self

    def order_by(self, *clauses: str) -> SQLBuilder:
        """Add ORDER BY clauses (e.g. ``"name ASC"``)."""
        self._order_by.extend(clauses)
        return self

    def limit(self, n: int) -> SQLBuilder:
        """Cap the number of returned rows.

        Raises:
            TypeError: If *n* is not an integer.
            ValueError: If *n* is negative.
        """
        self._limit = _check_count("limit", n)
        return self

    def offset(self, n: int) -> SQLBuilder:
        """Skip *n* rows before returning results.

        Raises:
            TypeError: If *n* is not an integer.
            ValueError: If *n* is negative.
        """
        self._offset = _check_count("offset", n)
        return self

    def build(self) -> tuple[str, list[Any]]:
        """Assemble the query.

        Returns:
            ``(sql, params)``; *params* is a fresh list in placeholder order,
            ready for :meth:`Connection.execute`.
        """
        distinct = "DISTINCT " if self._distinct else ""
        parts = [f"SELECT {distinct}{', '.join(self._select)}", f"FROM {self._from}"]
        parts.extend(self._joins)
        if self._where:
            parts.append("WHERE " + " AND ".join(self._where))
        if self._group_by:
            parts.append("GROUP BY " + ", ".join(self._group_by))
        if self._having:
            parts.append("HAVING " + " AND ".join(self._having))
        if self._order_by:
            parts.append("ORDER BY " + ", ".join(self._order_by))
        if self._limit is not None:
            parts.append(f"LIMIT {self._limit}")
        if self._offset is not None:
            parts.append(f"OFFSET {self._offset}")
        return "\n".join(parts), list(self._params)
