from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel


class EntityMapper[T: BaseModel]:
    """Composition class for mapping rows to entities"""

    def __init__(self, entity_class: type[T]):
        self.entity_class = entity_class
        self.field_names = set(entity_class.model_fields)

    def map_row_to_entity(self, row: Mapping[str, Any]) -> T:
        """Map a row to an entity, ignoring columns the entity does not declare"""
        return self.entity_class(
            **{key: value for key, value in dict(row).items() if key in self.field_names}
        )

    def map_rows_to_entities(self, rows: Iterable[Mapping[str, Any]]) -> list[T]:
        return [self.map_row_to_entity(row) for row in rows]

    @staticmethod
    def group_by_key[K: Hashable, E](
        entities: Iterable[E], key: Callable[[E], K]
    ) -> dict[K, list[E]]:
        """Group already mapped entities by a key, keeping their order"""
        grouped: dict[K, list[E]] = defaultdict(list)
        for entity in entities:
            grouped[key(entity)].append(entity)
        return grouped
