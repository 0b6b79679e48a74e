"""Repository class"""

from typing import Any

from pydantic import BaseModel

from blogstore.database_operations import DatabaseOperations
from blogstore.entity_mapper import EntityMapper
from blogstore.errors import InvalidArgument
from blogstore.query_builder import QueryBuilder, shift_placeholders


class Repository[T: BaseModel]:
    """CRUD and fluent queries for one entity kind.

    Fluent methods return a new repository carrying a new query builder, so a
    repository can be shared and specialised freely:

        published = store.repository(Post).where("published", True)
        latest = await published.order_by_desc("created_at").limit(5).get()
        total = await published.count()
    """

    def __init__(
        self,
        entity_class: type[T],
        db_ops: DatabaseOperations,
        table_name: str | None = None,
    ):
        if table_name is None:
            table_name = getattr(entity_class, "table_name", None)
        if not table_name:
            raise InvalidArgument(f"{entity_class.__name__} does not declare a table_name")

        self.entity_class = entity_class
        self.table_name = table_name
        self._query_builder: QueryBuilder | None = None

        # Composition: Inject dependencies
        self.db_ops = db_ops
        self.entity_mapper = EntityMapper(entity_class)

    def _get_or_create_query_builder(self) -> QueryBuilder:
        if self._query_builder is None:
            return QueryBuilder(self.table_name)
        return self._query_builder

    def _clone_with_query_builder(self, query_builder: QueryBuilder) -> "Repository[T]":
        new_repo = Repository(self.entity_class, self.db_ops, self.table_name)
        new_repo._query_builder = query_builder
        return new_repo

    def _select_builder(self) -> QueryBuilder:
        """Builder for entity reads; joined reads only select this table's columns"""
        builder = self._get_or_create_query_builder()
        if builder.join_clauses and builder.select_fields == "*":
            builder = builder.select(f"{self.table_name}.*")
        return builder

    def _returns_entities(self) -> bool:
        builder = self._get_or_create_query_builder()
        return builder.select_fields.strip() == "*"

    # Fluent query methods that return a new repository instance
    def select(self, *fields: str) -> "Repository[T]":
        """Set the SELECT fields. Custom fields make get() return plain dicts."""
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().select(*fields)
        )

    def join(self, table: str, on: str) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().join(table, on)
        )

    def left_join(self, table: str, on: str) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().left_join(table, on)
        )

    def where(self, field: Any, *args: Any) -> "Repository[T]":
        """Add a WHERE condition.

        Supports where(field, value), where(field, operator, value) and
        grouped conditions where(lambda qb: ...).
        """
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().where(field, *args)
        )

    def or_where(self, field: Any, *args: Any) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().or_where(field, *args)
        )

    def where_in(self, field: str, values: list[Any]) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().where_in(field, values)
        )

    def order_by(self, field: str) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().order_by(field)
        )

    def order_by_desc(self, field: str) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().order_by_desc(field)
        )

    def order_by_raw(
        self, expression: str, params: list[Any] | None = None, descending: bool = False
    ) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().order_by_raw(
                expression, params, descending
            )
        )

    def group_by(self, *fields: str) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().group_by(*fields)
        )

    def limit(self, count: int) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().limit(count)
        )

    def offset(self, count: int) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().offset(count)
        )

    def paginate(self, page: int, per_page: int = 10) -> "Repository[T]":
        return self._clone_with_query_builder(
            self._get_or_create_query_builder().paginate(page, per_page)
        )

    # Execution methods for fluent queries
    async def get(self) -> list[T]:
        """Execute the query.

        Returns entities, or plain dicts when custom SELECT fields are used.
        """
        query, params = self._select_builder().build()
        rows = await self.db_ops.fetch_all(query, params)
        if not self._returns_entities():
            return [dict(row) for row in rows]  # type: ignore[misc]
        return self.entity_mapper.map_rows_to_entities(rows)

    async def first(self) -> T | None:
        """Execute the query and return the first matching entity"""
        query, params = self._select_builder().limit(1).build()
        row = await self.db_ops.fetch_one(query, params)
        if row is None:
            return None
        if not self._returns_entities():
            return dict(row)  # type: ignore[return-value]
        return self.entity_mapper.map_row_to_entity(row)

    async def count(self) -> int:
        """Count the records matching the current conditions"""
        query, params = self._get_or_create_query_builder().build_count()
        result = await self.db_ops.fetch_value(query, params)
        return result or 0

    async def exists(self) -> bool:
        return await self.count() > 0

    def to_sql(self) -> str:
        return self._select_builder().to_sql()

    def build(self) -> tuple[str, list[Any]]:
        return self._select_builder().build()

    # CRUD operations
    async def find_by_id(self, entity_id: int) -> T | None:
        return await self.where(f"{self.table_name}.id", entity_id).first()

    async def find_many_by_ids(self, ids: list[int]) -> list[T]:
        if not ids:
            return []
        return await self.where_in(f"{self.table_name}.id", ids).order_by(
            f"{self.table_name}.id"
        ).get()

    @staticmethod
    def _write_fields(data: BaseModel) -> dict[str, Any]:
        """Fields explicitly set on a write model; a missing id is left to the store"""
        fields = data.model_dump(exclude_unset=True)
        if fields.get("id", 0) is None:
            del fields["id"]
        return fields

    async def _advance_id_sequence(self):
        """Move the id identity sequence past the largest stored id, never backwards.

        Rows written with explicit ids do not advance the sequence.
        """
        await self.db_ops.fetch_value(
            "SELECT setval(pg_get_serial_sequence($1, 'id'), GREATEST("
            f"(SELECT COALESCE(MAX(id), 0) + 1 FROM {self.table_name}), "
            "nextval(pg_get_serial_sequence($1, 'id'))), false)",
            [self.table_name],
        )

    async def create(self, data: BaseModel) -> T:
        """Insert one row and return it as stored"""
        fields = self._write_fields(data)
        if fields:
            columns = ", ".join(fields.keys())
            placeholders = ", ".join(f"${i + 1}" for i in range(len(fields)))
            query = (
                f"INSERT INTO {self.table_name} ({columns}) "
                f"VALUES ({placeholders}) RETURNING *"
            )
        else:
            query = f"INSERT INTO {self.table_name} DEFAULT VALUES RETURNING *"

        row = await self.db_ops.fetch_one(query, list(fields.values()))
        if "id" in fields:
            await self._advance_id_sequence()
        return self.entity_mapper.map_row_to_entity(row)

    async def create_many(
        self, rows: list[BaseModel], *, skip_duplicates: bool = False
    ) -> int:
        """Insert many rows with one statement and return how many were written.

        Columns left unset on a row take the column DEFAULT. With
        ``skip_duplicates`` rows violating a unique constraint are skipped.
        """
        if not rows:
            return 0

        row_fields = [self._write_fields(row) for row in rows]
        columns: list[str] = []
        for fields in row_fields:
            columns.extend(column for column in fields if column not in columns)
        if not columns:
            raise InvalidArgument("create_many needs at least one column value")

        values: list[Any] = []
        rows_placeholders = []
        for fields in row_fields:
            placeholders = []
            for column in columns:
                if column in fields:
                    values.append(fields[column])
                    placeholders.append(f"${len(values)}")
                else:
                    placeholders.append("DEFAULT")
            rows_placeholders.append(f"({', '.join(placeholders)})")

        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES {', '.join(rows_placeholders)}"
        )
        if skip_duplicates:
            query += " ON CONFLICT DO NOTHING"

        status = await self.db_ops.execute_query(query, values)
        if "id" in columns:
            await self._advance_id_sequence()
        return self.db_ops.affected_rows(status)

    async def update(self, entity_id: int, update_data: BaseModel) -> T | None:
        """Update one row and return it, or None when it does not exist"""
        update_dict = update_data.model_dump(exclude_unset=True)
        if not update_dict:
            return await self.find_by_id(entity_id)

        set_clause = ", ".join(
            f"{column} = ${i + 2}" for i, column in enumerate(update_dict.keys())
        )
        row = await self.db_ops.fetch_one(
            f"UPDATE {self.table_name} SET {set_clause} WHERE id = $1 RETURNING *",
            [entity_id, *update_dict.values()],
        )
        if row is None:
            return None
        return self.entity_mapper.map_row_to_entity(row)

    async def update_where(self, update_data: BaseModel) -> int:
        """Update every row matching the current conditions and return the count"""
        update_dict = update_data.model_dump(exclude_unset=True)
        if not update_dict:
            return 0

        where_clause, where_params = self._get_or_create_query_builder().build_where()
        if not where_clause:
            raise InvalidArgument("Cannot update without WHERE conditions")

        # SET takes $1..$m, the WHERE placeholders follow
        set_clause = ", ".join(
            f"{column} = ${i + 1}" for i, column in enumerate(update_dict.keys())
        )
        status = await self.db_ops.execute_query(
            f"UPDATE {self.table_name} SET {set_clause}"
            f"{shift_placeholders(where_clause, len(update_dict))}",
            [*update_dict.values(), *where_params],
        )
        return self.db_ops.affected_rows(status)

    async def delete(self, entity_id: int) -> T | None:
        """Delete one row and return it, or None when it does not exist"""
        row = await self.db_ops.fetch_one(
            f"DELETE FROM {self.table_name} WHERE id = $1 RETURNING *", [entity_id]
        )
        if row is None:
            return None
        return self.entity_mapper.map_row_to_entity(row)

    async def delete_where(self, *, allow_all: bool = False) -> int:
        """Delete every row matching the current conditions and return the count.

        Deleting without conditions must be asked for with ``allow_all``.
        """
        where_clause, params = self._get_or_create_query_builder().build_where()
        if not where_clause and not allow_all:
            raise InvalidArgument("Cannot delete without WHERE conditions")

        status = await self.db_ops.execute_query(
            f"DELETE FROM {self.table_name}{where_clause}", params
        )
        return self.db_ops.affected_rows(status)
