# ==============================================================================
# TYPED TABLE REPOSITORY
# ==============================================================================
# Typed view over one table of the record store. Records come back as entity
# dataclasses; updates take patch objects.
# ==============================================================================

from typing import Any, Generic, List, Optional, Type, TypeVar

from stockwise.repositories.interfaces import IRecordStore

T = TypeVar('T')


class TableRepository(Generic[T]):
    """
    Base class for per-table repositories.

    Subclasses set `table` and `entity`.
    """

    table: str = ''
    entity: Type[T]

    def __init__(self, store: IRecordStore):
        self.store = store

    def _wrap(self, record: Optional[dict]) -> Optional[T]:
        return self.entity.from_dict(record) if record is not None else None

    def all(self) -> List[T]:
        return [self.entity.from_dict(r) for r in self.store.get_all(self.table)]

    def get(self, record_id: Any) -> Optional[T]:
        return self._wrap(self.store.get_by_id(self.table, record_id))

    def find(self, **criteria: Any) -> List[T]:
        return [self.entity.from_dict(r) for r in self.store.find(self.table, criteria)]

    def find_one(self, **criteria: Any) -> Optional[T]:
        return self._wrap(self.store.find_one(self.table, criteria))

    def count(self, **criteria: Any) -> int:
        return self.store.count(self.table, criteria)

    def add(self, entity: Any) -> Optional[str]:
        """Insert an entity or mapping; returns the new id."""
        return self.store.insert(self.table, entity)

    def update(self, record_id: Any, patch: Any) -> bool:
        return self.store.update(self.table, record_id, patch)

    def delete(self, record_id: Any) -> bool:
        return self.store.delete(self.table, record_id)
