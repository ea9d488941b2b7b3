# ==============================================================================
# SERVICE LAYER - Business logic
# ==============================================================================
# Services hold the rules; repositories only persist; routes only
# orchestrate request → service → response.
# ==============================================================================

from .session_service import AuthChange, AuthCheck, SessionManager, SessionMonitor, landing_view_for
from .user_service import UserService
from .inventory_service import InventoryService
from .supplier_service import SupplierService

__all__ = [
    'AuthChange',
    'AuthCheck',
    'SessionManager',
    'SessionMonitor',
    'landing_view_for',
    'UserService',
    'InventoryService',
    'SupplierService',
]
