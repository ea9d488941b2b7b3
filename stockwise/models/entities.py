# ==============================================================================
# DOMAIN ENTITIES - Dataclass definitions
# ==============================================================================
# Each entity is a typed view over one record of a table. Records are stored
# as plain JSON objects; to_dict()/from_dict() convert between both shapes.
# Patch types carry optional fields for merge updates.
# ==============================================================================

import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional

from stockwise.exceptions import SessionCorrupt


# ==============================================================================
# ENUMERATIONS
# ==============================================================================

class UserRole(str, Enum):
    """User roles. Matching is exact, there is no hierarchy."""
    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"


class RecordStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TransactionType(str, Enum):
    """Kinds of stock ledger entries."""
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class ActivityAction(str, Enum):
    """Audit trail actions."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


class StockStatus(str, Enum):
    LOW = "Low Stock"
    MEDIUM = "Medium Stock"
    GOOD = "Good Stock"


def enum_value(value: Any) -> Any:
    """Plain value of an enum member, anything else unchanged."""
    return value.value if isinstance(value, Enum) else value


def get_stock_status(current_stock: float, minimum_stock: float) -> StockStatus:
    """
    Classify a stock level into its band.

    Args:
        current_stock: Units on hand (may be negative)
        minimum_stock: Reorder threshold

    Returns:
        LOW when current <= minimum, MEDIUM when current <= 2 * minimum,
        GOOD otherwise
    """
    current = current_stock or 0
    minimum = minimum_stock or 0
    if current <= minimum:
        return StockStatus.LOW
    if current <= minimum * 2:
        return StockStatus.MEDIUM
    return StockStatus.GOOD


class _Record:
    """Shared dict conversion for record dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        """Converts to the persisted JSON shape."""
        return {f.name: enum_value(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Builds the typed view; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# ==============================================================================
# USERS
# ==============================================================================

@dataclass
class User(_Record):
    """
    A system user.

    Attributes:
        username: Unique login name
        email: Unique e-mail address
        password: Opaque password hash, never plain text
        role: One of UserRole
        last_login: ISO timestamp of the last successful login
    """
    username: str = ''
    email: str = ''
    password: str = ''
    full_name: str = ''
    role: str = UserRole.USER.value
    status: str = RecordStatus.ACTIVE.value
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == RecordStatus.ACTIVE.value

    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


@dataclass
class SessionUser:
    """Password-free snapshot of a user kept in the auth state."""
    id: str
    username: str
    email: str = ''
    full_name: str = ''
    role: str = UserRole.USER.value

    @classmethod
    def from_user(cls, user: Any) -> 'SessionUser':
        """Snapshot from a User, a SessionUser or a raw record."""
        data = user.to_dict() if hasattr(user, 'to_dict') else dict(user)
        user_id = data.get('id')
        username = data.get('username')
        if isinstance(user_id, bool) or not isinstance(user_id, (str, int)) or user_id == '':
            raise ValueError('A session user needs an id')
        if not isinstance(username, str) or not username:
            raise ValueError('A session user needs a username')
        role = enum_value(data.get('role') or UserRole.USER.value)
        if not isinstance(role, str) or role not in {r.value for r in UserRole}:
            raise ValueError(f"Unknown role: {role!r}")
        email = data.get('email') or ''
        full_name = data.get('full_name') or ''
        return cls(
            id=str(user_id),
            username=username,
            email=email if isinstance(email, str) else str(email),
            full_name=full_name if isinstance(full_name, str) else str(full_name),
            role=role,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
        }


# ==============================================================================
# INVENTORY
# ==============================================================================

@dataclass
class Product(_Record):
    """
    A catalogue product.

    `category` references Category.name and `supplier_id` references
    Supplier.id; neither is enforced.
    """
    product_name: str = ''
    product_code: str = ''
    category: str = ''
    supplier_id: Optional[str] = None
    unit_price: float = 0.0
    current_stock: int = 0
    minimum_stock: int = 0
    maximum_stock: int = 100
    unit: str = 'pcs'
    description: str = ''
    status: str = RecordStatus.ACTIVE.value
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def stock_status(self) -> StockStatus:
        return get_stock_status(self.current_stock, self.minimum_stock)

    @property
    def stock_value(self) -> float:
        return float(self.unit_price or 0) * (self.current_stock or 0)


@dataclass
class Supplier(_Record):
    supplier_name: str = ''
    contact_person: str = ''
    email: str = ''
    phone: str = ''
    address: str = ''
    website: Optional[str] = None
    status: str = RecordStatus.ACTIVE.value
    notes: str = ''
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Category(_Record):
    name: str = ''
    description: str = ''
    status: str = RecordStatus.ACTIVE.value
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class StockLogEntry(_Record):
    """
    One stock ledger line. Append-only.

    Attributes:
        previous_stock: Product stock before the movement
        new_stock: Product stock after the movement
        reference: Human readable code, e.g. "IN-482913"
    """
    product_id: str = ''
    transaction_type: str = TransactionType.IN.value
    quantity: int = 0
    previous_stock: int = 0
    new_stock: int = 0
    reference: str = ''
    reason: str = ''
    supplier_id: Optional[str] = None
    notes: str = ''
    user_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ==============================================================================
# AUDIT
# ==============================================================================

@dataclass
class ActivityLogEntry(_Record):
    """One audit trail entry. `details` holds the logout reason."""
    action: str = ''
    table_name: str = ''
    id: str = ''
    record_id: Optional[str] = None
    user_id: Optional[str] = None
    username: str = 'anonymous'
    details: str = ''
    timestamp: Optional[str] = None


# ==============================================================================
# AUTH STATE
# ==============================================================================

def _epoch_ms(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise SessionCorrupt(f"Auth state has no valid {name}")
    return int(value)


@dataclass
class AuthState:
    """
    The single "who is logged in, until when" snapshot.

    Timestamps are epoch milliseconds. The persisted shape uses the keys
    user, createdAt, expiresAt, rememberMe and lastActivity.
    """
    user: SessionUser
    created_at: int
    expires_at: int
    remember_me: bool = False
    last_activity: int = 0

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at <= now_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user.to_dict(),
            'createdAt': self.created_at,
            'expiresAt': self.expires_at,
            'rememberMe': self.remember_me,
            'lastActivity': self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'AuthState':
        """
        Parse a persisted blob.

        Raises:
            SessionCorrupt: If the blob is not a well formed auth state
        """
        if not isinstance(data, dict) or not isinstance(data.get('user'), dict):
            raise SessionCorrupt('Auth state has no user')
        try:
            user = SessionUser.from_user(data['user'])
            expires_at = _epoch_ms(data['expiresAt'], 'expiresAt')
            created_at = _epoch_ms(data.get('createdAt', expires_at), 'createdAt')
            return cls(
                user=user,
                created_at=created_at,
                expires_at=expires_at,
                remember_me=bool(data.get('rememberMe', False)),
                last_activity=_epoch_ms(data.get('lastActivity', created_at), 'lastActivity'),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise SessionCorrupt(str(exc)) from exc


# ==============================================================================
# PATCHES - Optional-field updates
# ==============================================================================

class _Unset:
    """Marker for "field not given" in a patch."""

    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class _Patch:
    def changes(self) -> Dict[str, Any]:
        """Only the fields that were set; None is a real value."""
        return {
            f.name: enum_value(getattr(self, f.name))
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def __bool__(self) -> bool:
        return bool(self.changes())


@dataclass
class UserPatch(_Patch):
    username: Any = UNSET
    email: Any = UNSET
    password: Any = UNSET
    full_name: Any = UNSET
    role: Any = UNSET
    status: Any = UNSET
    last_login: Any = UNSET


@dataclass
class ProductPatch(_Patch):
    product_name: Any = UNSET
    product_code: Any = UNSET
    category: Any = UNSET
    supplier_id: Any = UNSET
    unit_price: Any = UNSET
    current_stock: Any = UNSET
    minimum_stock: Any = UNSET
    maximum_stock: Any = UNSET
    unit: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET


@dataclass
class SupplierPatch(_Patch):
    supplier_name: Any = UNSET
    contact_person: Any = UNSET
    email: Any = UNSET
    phone: Any = UNSET
    address: Any = UNSET
    website: Any = UNSET
    status: Any = UNSET
    notes: Any = UNSET


@dataclass
class CategoryPatch(_Patch):
    name: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET


ENTITY_TYPES = {
    'users': User,
    'products': Product,
    'suppliers': Supplier,
    'categories': Category,
    'stock_logs': StockLogEntry,
    'activity_logs': ActivityLogEntry,
}
