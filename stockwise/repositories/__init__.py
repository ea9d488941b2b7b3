# ==============================================================================
# REPOSITORY LAYER - Data access
# ==============================================================================
#
# STRUCTURE:
# ├── interfaces.py           → Protocols the services depend on
# ├── base.py                 → Key-value storage backends (memory, JSON files)
# ├── record_store.py         → Generic table access + activity log
# ├── table_repository.py     → Typed view over one table
# ├── user_repository.py      → users
# ├── inventory_repository.py → products, categories, stock_logs
# ├── supplier_repository.py  → suppliers
# └── audit_repository.py     → activity_logs (read-only)
# ==============================================================================

from .interfaces import IKeyValueStorage, IRecordStore
from .base import BaseStorage, JsonFileStorage, MemoryStorage
from .record_store import APPEND_ONLY, ChangeEvent, RecordStore
from .table_repository import TableRepository
from .user_repository import UserRepository
from .inventory_repository import CategoryRepository, ProductRepository, StockLogRepository
from .supplier_repository import SupplierRepository
from .audit_repository import ActivityLogRepository

__all__ = [
    'IKeyValueStorage',
    'IRecordStore',
    'BaseStorage',
    'JsonFileStorage',
    'MemoryStorage',
    'APPEND_ONLY',
    'ChangeEvent',
    'RecordStore',
    'TableRepository',
    'UserRepository',
    'ProductRepository',
    'CategoryRepository',
    'StockLogRepository',
    'SupplierRepository',
    'ActivityLogRepository',
]
