from typing import List

from stockwise.models.entities import RecordStatus, Supplier
from stockwise.repositories.table_repository import TableRepository


class SupplierRepository(TableRepository[Supplier]):
    """Repository for suppliers."""

    table = 'suppliers'
    entity = Supplier

    def active(self) -> List[Supplier]:
        return [s for s in self.all() if s.status == RecordStatus.ACTIVE.value]
