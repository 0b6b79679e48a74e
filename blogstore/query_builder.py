"""
Immutable QueryBuilder for SELECT statements.
The builder only produces SQL and positional parameters; it never executes anything.
"""

import re
from collections.abc import Callable
from typing import Any

from blogstore.errors import InvalidArgument

_PLACEHOLDER = re.compile(r"\$(\d+)")


def shift_placeholders(sql: str, offset: int) -> str:
    """Renumber every ``$n`` placeholder in ``sql`` to ``$(n + offset)``"""
    if offset == 0:
        return sql
    return _PLACEHOLDER.sub(lambda match: f"${int(match.group(1)) + offset}", sql)


class QueryBuilder:
    """
    Query builder for SELECT statements with ``$n`` parameters (asyncpg style).

    Every method returns a new builder, so partially built queries can be shared.

    Usage:
        builder = QueryBuilder("posts")
        query, params = (
            builder.where("published", True)
            .order_by_desc("created_at")
            .paginate(page=2, per_page=10)
            .build()
        )
    """

    def __init__(self, table_name: str):
        self.table_name = table_name
        self.select_fields = "*"
        self.join_clauses: list[str] = []
        self.where_conditions: list[str] = []
        self.or_where_conditions: list[str] = []
        self.params: list[Any] = []
        self.order_by_parts: list[str] = []
        self.order_by_params: list[list[Any]] = []
        self.group_by_parts: list[str] = []
        self.limit_count: int | None = None
        self.offset_count: int | None = None

    def _clone(self) -> "QueryBuilder":
        new_builder = QueryBuilder(self.table_name)
        new_builder.select_fields = self.select_fields
        new_builder.join_clauses = self.join_clauses.copy()
        new_builder.where_conditions = self.where_conditions.copy()
        new_builder.or_where_conditions = self.or_where_conditions.copy()
        new_builder.params = self.params.copy()
        new_builder.order_by_parts = self.order_by_parts.copy()
        new_builder.order_by_params = [params.copy() for params in self.order_by_params]
        new_builder.group_by_parts = self.group_by_parts.copy()
        new_builder.limit_count = self.limit_count
        new_builder.offset_count = self.offset_count
        return new_builder

    def _add_condition(
        self, field: str, value: Any, operator: str, is_or: bool = False
    ) -> "QueryBuilder":
        """Add a condition to either the AND or the OR list"""
        new_builder = self._clone()

        # None compares with IS NULL / IS NOT NULL
        if value is None and operator == "=":
            condition = f"{field} IS NULL"
        elif value is None and operator in ("!=", "<>"):
            condition = f"{field} IS NOT NULL"
        else:
            new_builder.params.append(value)
            condition = f"{field} {operator} ${len(new_builder.params)}"

        if is_or:
            new_builder.or_where_conditions.append(condition)
        else:
            new_builder.where_conditions.append(condition)
        return new_builder

    def _add_group_condition(
        self,
        group_function: Callable[["QueryBuilder"], "QueryBuilder"],
        is_or: bool = False,
    ) -> "QueryBuilder":
        """Add a parenthesised group built by ``group_function`` on an empty builder"""
        group_builder = group_function(QueryBuilder(""))
        if not group_builder.where_conditions and not group_builder.or_where_conditions:
            return self

        new_builder = self._clone()
        group_sql = shift_placeholders(
            group_builder._where_sql(), len(new_builder.params)
        )
        new_builder.params.extend(group_builder.params)

        if is_or:
            new_builder.or_where_conditions.append(f"({group_sql})")
        else:
            new_builder.where_conditions.append(f"({group_sql})")
        return new_builder

    @staticmethod
    def _split_args(method: str, args: tuple[Any, ...]) -> tuple[str, Any]:
        if len(args) == 2:
            return args[0], args[1]
        if len(args) == 1:
            return "=", args[0]
        raise InvalidArgument(
            f"{method}() expects (field, value) or (field, operator, value)"
        )

    def select(self, *fields: str) -> "QueryBuilder":
        """Set the SELECT list; no fields means ``*``"""
        new_builder = self._clone()
        new_builder.select_fields = ", ".join(fields) if fields else "*"
        return new_builder

    def join(self, table: str, on: str) -> "QueryBuilder":
        """Add an INNER JOIN"""
        new_builder = self._clone()
        new_builder.join_clauses.append(f"INNER JOIN {table} ON {on}")
        return new_builder

    def left_join(self, table: str, on: str) -> "QueryBuilder":
        """Add a LEFT JOIN"""
        new_builder = self._clone()
        new_builder.join_clauses.append(f"LEFT JOIN {table} ON {on}")
        return new_builder

    def where(
        self,
        field_or_function: str | Callable[["QueryBuilder"], "QueryBuilder"],
        *args: Any,
    ) -> "QueryBuilder":
        """Add a WHERE condition or a grouped WHERE clause.

        Supports:
        - where(field, value) -> operator defaults to '='
        - where(field, operator, value)
        - where(lambda qb: qb.where(...).or_where(...)) -> parenthesised group
        """
        if callable(field_or_function):
            return self._add_group_condition(field_or_function, is_or=False)
        operator, value = self._split_args("where", args)
        return self._add_condition(field_or_function, value, operator, is_or=False)

    def or_where(
        self,
        field_or_function: str | Callable[["QueryBuilder"], "QueryBuilder"],
        *args: Any,
    ) -> "QueryBuilder":
        """Add an OR WHERE condition or a grouped OR WHERE clause"""
        if callable(field_or_function):
            return self._add_group_condition(field_or_function, is_or=True)
        operator, value = self._split_args("or_where", args)
        return self._add_condition(field_or_function, value, operator, is_or=True)

    def where_in(self, field: str, values: list[Any]) -> "QueryBuilder":
        """Add a WHERE field = ANY($n) condition.

        The whole list travels as one array parameter, so an empty list
        matches nothing instead of producing invalid SQL.
        """
        new_builder = self._clone()
        new_builder.params.append(list(values))
        new_builder.where_conditions.append(
            f"{field} = ANY(${len(new_builder.params)})"
        )
        return new_builder

    def order_by(self, field: str) -> "QueryBuilder":
        """Add ORDER BY ascending. Chain to add more fields."""
        new_builder = self._clone()
        new_builder.order_by_parts.append(field)
        new_builder.order_by_params.append([])
        return new_builder

    def order_by_desc(self, field: str) -> "QueryBuilder":
        """Add ORDER BY ... DESC. Chain to add more fields."""
        new_builder = self._clone()
        new_builder.order_by_parts.append(f"{field} DESC")
        new_builder.order_by_params.append([])
        return new_builder

    def order_by_raw(
        self, expression: str, params: list[Any] | None = None, descending: bool = False
    ) -> "QueryBuilder":
        """Order by an expression that carries its own ``$1..$n`` parameters.

        ORDER BY parameters are bound after every filter parameter when the
        query is built, so the filters can still be reused for counting.
        """
        new_builder = self._clone()
        new_builder.order_by_parts.append(
            f"{expression} DESC" if descending else expression
        )
        new_builder.order_by_params.append(list(params or []))
        return new_builder

    def group_by(self, *fields: str) -> "QueryBuilder":
        """Add GROUP BY fields"""
        if not fields:
            return self
        new_builder = self._clone()
        new_builder.group_by_parts.extend(field for field in fields if field)
        return new_builder

    def limit(self, count: int) -> "QueryBuilder":
        if count < 0:
            raise InvalidArgument("Limit must be 0 or greater")
        new_builder = self._clone()
        new_builder.limit_count = count
        return new_builder

    def offset(self, count: int) -> "QueryBuilder":
        if count < 0:
            raise InvalidArgument("Offset must be 0 or greater")
        new_builder = self._clone()
        new_builder.offset_count = count
        return new_builder

    def paginate(self, page: int, per_page: int = 10) -> "QueryBuilder":
        """
        Set LIMIT and OFFSET for a 1-based page

        Args:
            page: Page number (1-based)
            per_page: Number of records per page (default: 10)
        """
        if page < 1:
            raise InvalidArgument("Page number must be 1 or greater")
        if per_page < 1:
            raise InvalidArgument("Per page count must be 1 or greater")

        return self.limit(per_page).offset((page - 1) * per_page)

    def has_conditions(self) -> bool:
        return bool(self.where_conditions or self.or_where_conditions)

    def _where_sql(self) -> str:
        """Combine AND conditions and OR conditions into one boolean expression"""
        parts = []
        if self.where_conditions:
            and_sql = " AND ".join(self.where_conditions)
            if len(self.where_conditions) > 1 and self.or_where_conditions:
                and_sql = f"({and_sql})"
            parts.append(and_sql)
        if self.or_where_conditions:
            parts.extend(self.or_where_conditions)
        return " OR ".join(parts)

    def build_where(self) -> tuple[str, list[Any]]:
        """Build only the WHERE clause (with a leading space) and its parameters.

        Used for UPDATE and DELETE statements that reuse the same filters.
        """
        if not self.has_conditions():
            return "", []
        return f" WHERE {self._where_sql()}", self.params.copy()

    def build(self) -> tuple[str, list[Any]]:
        """Build the final SQL query and parameters"""
        query_parts = [f"SELECT {self.select_fields} FROM {self.table_name}"]
        query_parts.extend(self.join_clauses)

        if self.has_conditions():
            query_parts.append(f"WHERE {self._where_sql()}")

        if self.group_by_parts:
            query_parts.append(f"GROUP BY {', '.join(self.group_by_parts)}")

        params = self.params.copy()
        if self.order_by_parts:
            order_parts = []
            for part, part_params in zip(self.order_by_parts, self.order_by_params):
                order_parts.append(shift_placeholders(part, len(params)))
                params.extend(part_params)
            query_parts.append(f"ORDER BY {', '.join(order_parts)}")

        if self.limit_count is not None:
            query_parts.append(f"LIMIT {self.limit_count}")

        if self.offset_count is not None:
            query_parts.append(f"OFFSET {self.offset_count}")

        return " ".join(query_parts), params

    def build_count(self) -> tuple[str, list[Any]]:
        """Build a COUNT(*) over the same FROM, JOIN and WHERE clauses.

        Ordering and pagination are dropped, they do not change the count.
        """
        base_builder = self._clone()
        base_builder.order_by_parts = []
        base_builder.order_by_params = []
        base_builder.limit_count = None
        base_builder.offset_count = None
        if base_builder.group_by_parts:
            inner_sql, params = base_builder.select("1").build()
            return f"SELECT COUNT(*) FROM ({inner_sql}) AS grouped", params
        return base_builder.select("COUNT(*)").build()

    def to_sql(self) -> str:
        """Return only the SQL query string without parameters"""
        query, _ = self.build()
        return query

    def __str__(self) -> str:
        query, params = self.build()
        return f"Query: {query}\nParams: {params}"
