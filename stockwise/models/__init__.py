from stockwise.models.entities import (
    ENTITY_TYPES,
    UNSET,
    ActivityAction,
    ActivityLogEntry,
    AuthState,
    Category,
    CategoryPatch,
    Product,
    ProductPatch,
    RecordStatus,
    SessionUser,
    StockLogEntry,
    StockStatus,
    Supplier,
    SupplierPatch,
    TransactionType,
    User,
    UserPatch,
    UserRole,
    enum_value,
    get_stock_status,
)

__all__ = [
    'ENTITY_TYPES',
    'UNSET',
    'ActivityAction',
    'ActivityLogEntry',
    'AuthState',
    'Category',
    'CategoryPatch',
    'Product',
    'ProductPatch',
    'RecordStatus',
    'SessionUser',
    'StockLogEntry',
    'StockStatus',
    'Supplier',
    'SupplierPatch',
    'TransactionType',
    'User',
    'UserPatch',
    'UserRole',
    'enum_value',
    'get_stock_status',
]
