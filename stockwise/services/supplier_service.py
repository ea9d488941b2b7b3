# ==============================================================================
# SUPPLIER SERVICE
# ==============================================================================
# Deleting a supplier never deletes products. Dependent products get their
# supplier_id cleared first, then the supplier is removed. The two steps are
# separate writes: if the delete fails, products stay unassigned.
# ==============================================================================

import logging
from typing import List, Tuple

from stockwise.models.entities import Product, ProductPatch
from stockwise.repositories.inventory_repository import ProductRepository
from stockwise.repositories.supplier_repository import SupplierRepository

logger = logging.getLogger(__name__)


class SupplierService:
    """Service for supplier operations that touch products."""

    def __init__(self, supplier_repo: SupplierRepository, product_repo: ProductRepository):
        self.supplier_repo = supplier_repo
        self.product_repo = product_repo

    def products_for(self, supplier_id: str) -> List[Product]:
        return self.product_repo.find_by_supplier(supplier_id)

    def delete_supplier(self, supplier_id: str) -> Tuple[bool, int]:
        """
        Unassigns dependent products, then deletes the supplier.

        Args:
            supplier_id: Supplier to delete

        Returns:
            (deleted, number of products unassigned)
        """
        if self.supplier_repo.get(supplier_id) is None:
            return False, 0

        unassigned = 0
        for product in self.products_for(supplier_id):
            if self.product_repo.update(product.id, ProductPatch(supplier_id=None)):
                unassigned += 1
            else:
                logger.error("Could not unassign product %s from supplier %s", product.id, supplier_id)

        deleted = self.supplier_repo.delete(supplier_id)
        if not deleted:
            logger.error("Supplier %s was not deleted after unassigning %d products", supplier_id, unassigned)
        return deleted, unassigned
