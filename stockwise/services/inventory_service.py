# ==============================================================================
# INVENTORY SERVICE
# ==============================================================================
# Stock movements and inventory statistics.
#
# A movement writes two records: the ledger entry and the product's new
# stock. Both writes run inside store.atomic(), so a failure on the second
# one restores the first table and the ledger never disagrees with the
# product.
# ==============================================================================

import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional

from stockwise.exceptions import StorageUnavailable, ValidationError
from stockwise.models.entities import (
    Product,
    ProductPatch,
    StockLogEntry,
    StockStatus,
    TransactionType,
    enum_value,
    get_stock_status,
)
from stockwise.repositories.interfaces import IRecordStore
from stockwise.repositories.inventory_repository import ProductRepository, StockLogRepository
from stockwise.repositories.supplier_repository import SupplierRepository
from stockwise.time_utils import to_epoch_ms, utcnow

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Service for stock movements and inventory figures.

    Usage:
        entry = inventory.record_movement(product_id, 'out', 3, 'Sale')
        stats = inventory.inventory_stats()
    """

    VALID_TYPES = frozenset(t.value for t in TransactionType)

    def __init__(
        self,
        store: IRecordStore,
        product_repo: ProductRepository,
        stock_log_repo: StockLogRepository,
        supplier_repo: SupplierRepository,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.product_repo = product_repo
        self.stock_log_repo = stock_log_repo
        self.supplier_repo = supplier_repo
        self._clock = clock

    # =========================================================================
    # STOCK MOVEMENTS
    # =========================================================================

    def generate_reference(self, transaction_type: Any) -> str:
        """
        Human readable movement code: first two letters of the type plus
        the last six digits of the epoch milliseconds ("OU-482913").
        """
        prefix = str(enum_value(transaction_type)).upper()[:2]
        return f"{prefix}-{str(to_epoch_ms(self._clock()))[-6:]}"

    @staticmethod
    def compute_new_stock(transaction_type: str, current: int, quantity: int) -> int:
        """
        Stock after a movement.

        - in: current + quantity
        - out: current - quantity (may go negative)
        - adjustment: quantity is the counted level
        """
        if transaction_type == TransactionType.IN.value:
            return current + quantity
        if transaction_type == TransactionType.OUT.value:
            return current - quantity
        return quantity

    def record_movement(
        self,
        product_id: str,
        transaction_type: Any,
        quantity: int,
        reason: str = '',
        reference: Optional[str] = None,
        supplier_id: Optional[str] = None,
        notes: str = '',
        user_id: Optional[str] = None,
    ) -> StockLogEntry:
        """
        Records a stock movement: one ledger entry plus the product update.

        Args:
            product_id: Product moved
            transaction_type: in, out or adjustment
            quantity: Units moved (in/out) or counted level (adjustment)
            reason: Why the stock changed
            reference: Movement code; generated when empty
            supplier_id: Supplier for incoming stock
            notes: Free text
            user_id: Who recorded it

        Returns:
            The stored ledger entry

        Raises:
            ValidationError: Unknown product or type, bad quantity, or the
                movement could not be saved (nothing is left half written)
        """
        kind = enum_value(transaction_type)
        if kind not in self.VALID_TYPES:
            raise ValidationError(f"Invalid transaction type: {transaction_type}", field='transaction_type')
        if isinstance(quantity, bool):
            raise ValidationError('Quantity must be a whole number', field='quantity')
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError('Quantity must be a whole number', field='quantity') from None
        if quantity < 0 or (quantity == 0 and kind != TransactionType.ADJUSTMENT.value):
            raise ValidationError('Quantity must be greater than zero', field='quantity')

        if self.product_repo.get(product_id) is None:
            raise ValidationError('Product not found', field='product_id')

        try:
            with self.store.atomic('stock_logs', 'products'):
                product = self.product_repo.get(product_id)
                if product is None:
                    raise ValidationError('Product not found', field='product_id')
                try:
                    previous = int(product.current_stock or 0)
                except (TypeError, ValueError, OverflowError):
                    raise ValidationError('Product stock is not a number', field='current_stock') from None
                new_stock = self.compute_new_stock(kind, previous, quantity)
                entry = StockLogEntry(
                    product_id=product_id,
                    transaction_type=kind,
                    quantity=quantity,
                    previous_stock=previous,
                    new_stock=new_stock,
                    reference=reference or self.generate_reference(kind),
                    reason=reason or '',
                    supplier_id=supplier_id or None,
                    notes=notes or '',
                    user_id=user_id,
                )
                entry.id = self.stock_log_repo.add(entry)
                if not self.product_repo.update(product_id, ProductPatch(current_stock=new_stock)):
                    raise ValidationError('Product not found', field='product_id')
        except StorageUnavailable as exc:
            logger.error("Stock movement for %s was not saved: %s", product_id, exc)
            raise ValidationError('Failed to record the stock movement. Please try again.') from exc

        if new_stock < 0:
            logger.warning("Product %s stock is negative (%s)", product_id, new_stock)
        return self.stock_log_repo.get(entry.id) or entry

    def history(self, product_id: str) -> List[StockLogEntry]:
        return self.stock_log_repo.for_product(product_id)

    # =========================================================================
    # STATUS AND STATISTICS
    # =========================================================================

    @staticmethod
    def stock_status(product: Any) -> StockStatus:
        """Stock band of a Product or raw product record."""
        if isinstance(product, Product):
            return product.stock_status
        return get_stock_status(product.get('current_stock', 0), product.get('minimum_stock', 0))

    def low_stock_products(self) -> List[Product]:
        return self.product_repo.low_stock()

    @staticmethod
    def category_stats(products: Iterable[Product]) -> Dict[str, Dict[str, float]]:
        """
        Per-category totals.

        Returns:
            {category: {'count', 'total_stock', 'total_value'}}
        """
        stats: Dict[str, Dict[str, float]] = OrderedDict()
        for product in products:
            name = product.category or 'Uncategorized'
            bucket = stats.setdefault(name, {'count': 0, 'total_stock': 0, 'total_value': 0.0})
            bucket['count'] += 1
            bucket['total_stock'] += product.current_stock or 0
            bucket['total_value'] += product.stock_value
        return stats

    def inventory_stats(self) -> Dict[str, Any]:
        """
        Dashboard figures.

        Returns:
            Dict with total_products, active_suppliers, low_stock_count,
            total_value and categories
        """
        products = self.product_repo.all()
        return {
            'total_products': len(products),
            'active_suppliers': len(self.supplier_repo.active()),
            'low_stock_count': sum(1 for p in products if p.stock_status == StockStatus.LOW),
            'total_value': round(sum(p.stock_value for p in products), 2),
            'categories': self.category_stats(products),
        }
