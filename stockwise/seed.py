# ==============================================================================
# SAMPLE DATA
# ==============================================================================
# Demonstration data loaded into empty tables on first start. Tables that
# already hold records are left untouched. Records go in through
# import_data, so seeding writes no activity log entries.
# ==============================================================================

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from stockwise import security
from stockwise.models.entities import RecordStatus
from stockwise.repositories.record_store import RecordStore
from stockwise.time_utils import to_iso_z, utcnow

logger = logging.getLogger(__name__)

SAMPLE_PASSWORD = 'password123'

# (username, email, full_name, role)
SAMPLE_USERS = [
    ('admin', 'admin@stockwise.com', 'System Administrator', 'admin'),
    ('manager', 'manager@stockwise.com', 'Store Manager', 'user'),
    ('staff', 'staff@stockwise.com', 'Staff Member', 'staff'),
    ('user', 'user@stockwise.com', 'Regular User', 'user'),
]

SAMPLE_CATEGORIES = [
    ('Electronics', 'Electronic devices and components'),
    ('Clothing', 'Apparel and fashion items'),
    ('Books', 'Books and educational materials'),
    ('Home & Garden', 'Home improvement and garden supplies'),
    ('Sports', 'Sports equipment and accessories'),
]

# (supplier_name, contact_person, email, phone, address)
SAMPLE_SUPPLIERS = [
    ('TechCorp Solutions', 'John Smith', 'john@techcorp.com', '+91-9876543210',
     '123 Tech Street, Mumbai, Maharashtra 400001'),
    ('Fashion Hub Ltd', 'Sarah Johnson', 'sarah@fashionhub.com', '+91-9876543211',
     '456 Fashion Avenue, Delhi, Delhi 110001'),
    ('BookWorld Publishers', 'Michael Brown', 'michael@bookworld.com', '+91-9876543212',
     '789 Knowledge Lane, Bangalore, Karnataka 560001'),
    ('Electronics Mart', 'David Lee', 'david@electronicsmart.com', '+91-9876543213',
     '321 Electronics Plaza, Pune, Maharashtra 411001'),
    ('Sports Equipment Co', 'Emma Wilson', 'emma@sportsequip.com', '+91-9876543214',
     '654 Sports Complex, Chennai, Tamil Nadu 600001'),
    ('Home Decor Plus', 'Robert Taylor', 'robert@homedecor.com', '+91-9876543215',
     '987 Decor Street, Hyderabad, Telangana 500001'),
]

# (product_name, product_code, category index, supplier index, unit_price,
#  current_stock, minimum_stock, unit)
SAMPLE_PRODUCTS = [
    ('Laptop Dell Inspiron 15', 'ELEC-001', 0, 0, 45000, 25, 5, 'piece'),
    ('HP Laptop ProBook 450', 'ELEC-002', 0, 0, 52000, 18, 5, 'piece'),
    ('Wireless Mouse Logitech', 'ELEC-003', 0, 0, 1500, 50, 15, 'piece'),
    ('Mechanical Keyboard RGB', 'ELEC-004', 0, 0, 3500, 8, 10, 'piece'),
    ('USB-C Hub 7-in-1', 'ELEC-005', 0, 0, 2200, 35, 10, 'piece'),
    ('Webcam HD 1080p', 'ELEC-006', 0, 0, 4500, 22, 8, 'piece'),
    ('Wireless Headphones', 'ELEC-007', 0, 0, 2800, 6, 12, 'piece'),
    ('External SSD 1TB', 'ELEC-008', 0, 0, 8500, 15, 5, 'piece'),
    ('Cotton T-Shirt Blue', 'CLTH-001', 1, 1, 500, 100, 30, 'piece'),
    ('Denim Jeans Regular Fit', 'CLTH-002', 1, 1, 1200, 65, 20, 'piece'),
    ('Formal Shirt White', 'CLTH-003', 1, 1, 800, 45, 15, 'piece'),
    ('Sports Shoes Running', 'CLTH-004', 1, 1, 2500, 7, 15, 'pair'),
    ('Winter Jacket Black', 'CLTH-005', 1, 1, 3500, 28, 10, 'piece'),
    ('JavaScript Complete Guide', 'BOOK-001', 2, 2, 800, 30, 10, 'piece'),
    ('Python for Beginners', 'BOOK-002', 2, 2, 750, 25, 8, 'piece'),
    ('Data Structures & Algorithms', 'BOOK-003', 2, 2, 950, 18, 8, 'piece'),
    ('Web Development Handbook', 'BOOK-004', 2, 2, 850, 22, 10, 'piece'),
    ('LED Desk Lamp', 'HOME-001', 3, 0, 1200, 40, 15, 'piece'),
    ('Office Chair Ergonomic', 'HOME-002', 3, 0, 8500, 12, 5, 'piece'),
    ('Standing Desk Adjustable', 'HOME-003', 3, 0, 15000, 8, 3, 'piece'),
    ('Wall Clock Digital', 'HOME-004', 3, 0, 1500, 25, 10, 'piece'),
    ('Yoga Mat Premium', 'SPRT-001', 4, 1, 1200, 35, 15, 'piece'),
    ('Dumbbell Set 20kg', 'SPRT-002', 4, 1, 3500, 5, 8, 'set'),
    ('Resistance Bands Set', 'SPRT-003', 4, 1, 800, 42, 20, 'set'),
]

# (product index, type, quantity, previous, new, reference, reason, notes,
#  days ago, username)
SAMPLE_STOCK_LOGS = [
    (0, 'in', 10, 15, 25, 'PO-2026-001', 'purchase', 'New stock arrival from supplier', 2, 'admin'),
    (1, 'in', 8, 10, 18, 'PO-2026-002', 'purchase', 'Restocking HP laptops', 3, 'admin'),
    (2, 'out', 15, 65, 50, 'SO-2026-001', 'sale', 'Sold to corporate client', 1, 'staff'),
    (3, 'out', 5, 13, 8, 'SO-2026-002', 'sale', 'Office supply order', 4, 'staff'),
    (4, 'in', 20, 15, 35, 'PO-2026-003', 'purchase', 'Bulk order received', 5, 'manager'),
    (5, 'in', 12, 10, 22, 'PO-2026-004', 'purchase', 'Webcam stock replenishment', 6, 'admin'),
    (6, 'out', 8, 14, 6, 'SO-2026-003', 'sale', 'Customer purchase', 7, 'staff'),
    (7, 'in', 10, 5, 15, 'PO-2026-005', 'purchase', 'SSD stock arrival', 8, 'admin'),
    (8, 'out', 25, 125, 100, 'SO-2026-004', 'sale', 'Bulk t-shirt order', 9, 'staff'),
    (9, 'in', 30, 35, 65, 'PO-2026-006', 'purchase', 'Jeans restock', 10, 'manager'),
    (10, 'out', 12, 57, 45, 'SO-2026-005', 'sale', 'Formal shirts sold', 11, 'staff'),
    (12, 'out', 8, 36, 28, 'SO-2026-006', 'sale', 'Winter jacket sales', 13, 'staff'),
    (13, 'in', 20, 10, 30, 'PO-2026-008', 'purchase', 'JavaScript books received', 14, 'manager'),
    (14, 'out', 10, 35, 25, 'SO-2026-007', 'sale', 'Python books sold', 15, 'staff'),
    (17, 'in', 25, 15, 40, 'PO-2026-010', 'purchase', 'LED lamps received', 18, 'manager'),
    (21, 'in', 30, 5, 35, 'PO-2026-012', 'purchase', 'Yoga mats bulk order', 22, 'manager'),
]


def _pick(records: List[Dict[str, Any]], index: int, field: str) -> Optional[Any]:
    return records[index].get(field) if 0 <= index < len(records) else None


def seed_sample_data(store: RecordStore, clock: Callable[[], datetime] = utcnow) -> List[str]:
    """
    Fill empty tables with demonstration data.

    Args:
        store: Target store
        clock: Source of the created_at timestamps

    Returns:
        Names of the tables that were seeded
    """
    now = clock()
    stamp = to_iso_z(now)
    active = RecordStatus.ACTIVE.value
    seeded = []

    def load(table: str, records: List[Dict[str, Any]]) -> None:
        seeded.extend(store.import_data({table: records}))

    if store.count('users') == 0:
        load('users', [
            {
                'id': store.generate_id(), 'username': username, 'email': email,
                'password': security.hash_password(SAMPLE_PASSWORD), 'full_name': full_name,
                'role': role, 'status': active, 'created_at': stamp, 'updated_at': stamp,
                'last_login': None,
            }
            for username, email, full_name, role in SAMPLE_USERS
        ])

    if store.count('categories') == 0:
        load('categories', [
            {'id': store.generate_id(), 'name': name, 'description': description,
             'status': active, 'created_at': stamp, 'updated_at': stamp}
            for name, description in SAMPLE_CATEGORIES
        ])

    if store.count('suppliers') == 0:
        load('suppliers', [
            {'id': store.generate_id(), 'supplier_name': name, 'contact_person': contact,
             'email': email, 'phone': phone, 'address': address, 'website': None,
             'status': active, 'notes': '', 'created_at': stamp, 'updated_at': stamp}
            for name, contact, email, phone, address in SAMPLE_SUPPLIERS
        ])

    if store.count('products') == 0:
        categories = store.get_all('categories')
        suppliers = store.get_all('suppliers')
        default_names = [name for name, _ in SAMPLE_CATEGORIES]
        load('products', [
            {
                'id': store.generate_id(), 'product_name': name, 'product_code': code,
                'category': _pick(categories, cat, 'name') or default_names[cat],
                'supplier_id': _pick(suppliers, sup, 'id'), 'unit_price': price,
                'current_stock': stock, 'minimum_stock': minimum, 'maximum_stock': 100,
                'unit': unit, 'description': '', 'status': active,
                'created_at': stamp, 'updated_at': stamp,
            }
            for name, code, cat, sup, price, stock, minimum, unit in SAMPLE_PRODUCTS
        ])

    if store.count('stock_logs') == 0:
        products = store.get_all('products')
        users = {u.get('username'): u.get('id') for u in store.get_all('users')}
        logs = []
        for index, kind, qty, previous, new, ref, reason, notes, days, username in SAMPLE_STOCK_LOGS:
            product_id = _pick(products, index, 'id')
            if product_id is None:
                continue
            created = to_iso_z(now - timedelta(days=days))
            logs.append({
                'id': store.generate_id(), 'product_id': product_id, 'transaction_type': kind,
                'quantity': qty, 'previous_stock': previous, 'new_stock': new,
                'reference': ref, 'reason': reason, 'supplier_id': None, 'notes': notes,
                'user_id': users.get(username), 'created_at': created, 'updated_at': created,
            })
        load('stock_logs', logs)

    if seeded:
        logger.info("Seeded sample data into: %s", ', '.join(seeded))
    return seeded
