# ==============================================================================
# INVENTORY REPOSITORIES - Products, categories and the stock ledger
# ==============================================================================

from typing import Any, List, Optional

from stockwise.exceptions import ProtectedTable
from stockwise.models.entities import Category, Product, RecordStatus, StockLogEntry
from stockwise.repositories.table_repository import TableRepository


class ProductRepository(TableRepository[Product]):
    """
    Repository for the product catalogue.

    `category` holds a Category.name and `supplier_id` a Supplier.id;
    neither reference is enforced.
    """

    table = 'products'
    entity = Product

    def get_by_code(self, product_code: str) -> Optional[Product]:
        """Exact, case-insensitive product code lookup."""
        code = (product_code or '').strip().lower()
        for product in self.all():
            if (product.product_code or '').lower() == code:
                return product
        return None

    def find_by_supplier(self, supplier_id: str) -> List[Product]:
        return [p for p in self.all() if p.supplier_id == supplier_id]

    def find_by_category(self, category: str) -> List[Product]:
        return [p for p in self.all() if p.category == category]

    def low_stock(self) -> List[Product]:
        """Products at or below their minimum stock."""
        return [p for p in self.all() if (p.current_stock or 0) <= (p.minimum_stock or 0)]


class CategoryRepository(TableRepository[Category]):
    table = 'categories'
    entity = Category

    def get_by_name(self, name: str) -> Optional[Category]:
        wanted = (name or '').strip().lower()
        for category in self.all():
            if category.name.lower() == wanted:
                return category
        return None

    def active(self) -> List[Category]:
        return [c for c in self.all() if c.status == RecordStatus.ACTIVE.value]


class StockLogRepository(TableRepository[StockLogEntry]):
    """
    The stock ledger. Entries are appended, never changed.
    """

    table = 'stock_logs'
    entity = StockLogEntry

    def for_product(self, product_id: str) -> List[StockLogEntry]:
        """Ledger lines of one product, oldest first."""
        entries = [e for e in self.all() if e.product_id == product_id]
        return sorted(entries, key=lambda e: e.created_at or '')

    def recent(self, limit: int = 10) -> List[StockLogEntry]:
        entries = sorted(self.all(), key=lambda e: e.created_at or '', reverse=True)
        return entries[:limit]

    def update(self, record_id: Any, patch: Any) -> bool:
        raise ProtectedTable(self.table, 'update')

    def delete(self, record_id: Any) -> bool:
        raise ProtectedTable(self.table, 'delete')
