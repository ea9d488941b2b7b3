import json

import pytest

from stockwise.exceptions import ProtectedTable, StorageUnavailable, UnknownTable
from stockwise.models.entities import Product, ProductPatch, SessionUser
from stockwise.repositories import MemoryStorage, RecordStore


def _product(**overrides):
    data = {
        'product_name': 'Wireless Mouse',
        'product_code': 'ELEC-003',
        'category': 'Electronics',
        'unit_price': 1500,
        'current_stock': 10,
        'minimum_stock': 5,
        'status': 'active',
    }
    data.update(overrides)
    return data


def _activity(store, action=None):
    logs = store.get_all('activity_logs')
    if action is None:
        return logs
    return [entry for entry in logs if entry['action'] == action]


# =============================================================================
# READS
# =============================================================================

def test_get_all_twice_returns_equal_sequences(store):
    store.insert('products', _product())
    store.insert('products', _product(product_code='ELEC-004'))
    assert store.get_all('products') == store.get_all('products')


def test_unknown_table_fails_loudly(store):
    with pytest.raises(UnknownTable):
        store.get_all('not_a_table')
    with pytest.raises(UnknownTable):
        store.insert('not_a_table', {'a': 1})
    with pytest.raises(UnknownTable):
        store.find('not_a_table', {'a': 'x'})


def test_get_by_id_absent_is_none(store):
    assert store.get_by_id('products', 'missing') is None


def test_find_string_criteria_is_case_insensitive_substring(store):
    store.insert('products', _product(product_name='Wireless Mouse Logitech'))
    store.insert('products', _product(product_name='Mechanical Keyboard'))

    found = store.find('products', {'product_name': 'MOUSE'})
    assert [p['product_name'] for p in found] == ['Wireless Mouse Logitech']


def test_find_non_string_criteria_uses_equality(store):
    store.insert('products', _product(current_stock=10))
    store.insert('products', _product(current_stock=100))

    assert len(store.find('products', {'current_stock': 10})) == 1
    assert len(store.find('products', {'current_stock': '10'})) == 2  # substring of "100"


def test_find_booleans_only_equal_booleans(store):
    store.insert('suppliers', {'supplier_name': 'A', 'preferred': True})
    store.insert('suppliers', {'supplier_name': 'B', 'preferred': 1})

    found = store.find('suppliers', {'preferred': True})
    assert [s['supplier_name'] for s in found] == ['A']


def test_find_with_empty_criteria_returns_whole_table(store):
    store.insert('products', _product())
    store.insert('products', _product())
    assert len(store.find('products', {})) == 2
    assert len(store.find('products')) == 2


def test_find_one_and_count(store):
    store.insert('products', _product(category='Books'))
    store.insert('products', _product(category='Books'))
    store.insert('products', _product(category='Sports'))

    assert store.find_one('products', {'category': 'sports'})['category'] == 'Sports'
    assert store.find_one('products', {'category': 'Garden'}) is None
    assert store.count('products') == 3
    assert store.count('products', {'category': 'books'}) == 2


# =============================================================================
# WRITES
# =============================================================================

def test_insert_then_get_returns_data_plus_id_and_timestamps(store):
    data = _product()
    record_id = store.insert('products', data)

    record = store.get_by_id('products', record_id)
    for key, value in data.items():
        assert record[key] == value
    assert record['id'] == record_id
    assert record['created_at'] and record['updated_at']
    assert record['created_at'].endswith('Z')


def test_insert_does_not_mutate_caller_data_and_replaces_id(store):
    data = _product(id='chosen-id', created_at='1999-01-01T00:00:00.000Z')
    original = dict(data)

    record_id = store.insert('products', data)

    assert data == original
    assert record_id != 'chosen-id'
    assert store.get_by_id('products', record_id)['created_at'] != '1999-01-01T00:00:00.000Z'


def test_insert_accepts_entities(store):
    record_id = store.insert('products', Product(product_name='Desk Lamp', current_stock=3))
    record = store.get_by_id('products', record_id)
    assert record['product_name'] == 'Desk Lamp'
    assert record['id'] == record_id


def test_update_merges_fields_and_bumps_updated_at(store, clock):
    record_id = store.insert('products', _product())
    before = store.get_by_id('products', record_id)

    # Same instant: updated_at must still move forward
    assert store.update('products', record_id, {'current_stock': 7}) is True

    after = store.get_by_id('products', record_id)
    assert after['current_stock'] == 7
    assert after['updated_at'] > before['updated_at']
    for key in before:
        if key not in ('current_stock', 'updated_at'):
            assert after[key] == before[key]


def test_update_with_patch_and_immutable_fields(store):
    record_id = store.insert('products', _product(supplier_id='s1'))
    created = store.get_by_id('products', record_id)['created_at']

    store.update('products', record_id, ProductPatch(supplier_id=None))
    store.update('products', record_id, {'id': 'other', 'created_at': 'x'})

    record = store.get_by_id('products', record_id)
    assert record['supplier_id'] is None
    assert record['id'] == record_id
    assert record['created_at'] == created


def test_update_missing_id_returns_false_without_side_effects(store):
    before = store.get_all('activity_logs')
    assert store.update('products', 'missing', {'current_stock': 1}) is False
    assert store.get_all('activity_logs') == before


def test_delete_removes_and_second_delete_returns_false(store):
    record_id = store.insert('products', _product())
    assert store.delete('products', record_id) is True
    assert store.get_by_id('products', record_id) is None
    assert store.delete('products', record_id) is False


def test_append_only_tables_refuse_generic_mutation(store):
    entry_id = store.insert('stock_logs', {'product_id': 'p1', 'quantity': 3})
    with pytest.raises(ProtectedTable):
        store.update('stock_logs', entry_id, {'quantity': 4})
    with pytest.raises(ProtectedTable):
        store.delete('stock_logs', entry_id)
    with pytest.raises(ProtectedTable):
        store.insert('activity_logs', {'action': 'INSERT'})


def test_generate_id_is_unique_with_a_stalled_clock(store):
    ids = {store.generate_id() for _ in range(2000)}
    assert len(ids) == 2000


def test_generate_id_survives_clock_going_back(store, clock):
    first = store.generate_id()
    clock.advance(seconds=-10)
    assert store.generate_id() != first


# =============================================================================
# ACTIVITY LOG
# =============================================================================

def test_each_mutation_writes_one_activity_entry(store):
    record_id = store.insert('products', _product())
    store.update('products', record_id, {'current_stock': 1})
    store.delete('products', record_id)

    actions = [(e['action'], e['table_name'], e['record_id']) for e in _activity(store)]
    assert actions == [
        ('INSERT', 'products', record_id),
        ('UPDATE', 'products', record_id),
        ('DELETE', 'products', record_id),
    ]


def test_activity_entries_are_stamped_with_the_actor(store):
    store.actor_provider = lambda: SessionUser(id='u1', username='admin', role='admin')
    store.insert('categories', {'name': 'Books'})

    entry = _activity(store)[-1]
    assert entry['user_id'] == 'u1'
    assert entry['username'] == 'admin'


def test_anonymous_actor_defaults(store):
    store.insert('categories', {'name': 'Books'})
    entry = _activity(store)[-1]
    assert entry['user_id'] is None
    assert entry['username'] == 'anonymous'


def test_activity_log_never_shrinks_except_fifo_trim(storage, clock):
    store = RecordStore(storage, clock=clock, activity_log_limit=5)
    ids = [store.insert('categories', {'name': f'c{i}'}) for i in range(8)]

    logs = store.get_all('activity_logs')
    assert len(logs) == 5
    # The three oldest entries were evicted
    assert [e['record_id'] for e in logs] == ids[3:]


def test_audit_failure_does_not_fail_the_mutation(store):
    def broken_actor():
        raise RuntimeError('session backend down')

    store.actor_provider = broken_actor
    record_id = store.insert('products', _product())

    assert record_id is not None
    assert store.get_by_id('products', record_id) is not None
    assert _activity(store) == []


# =============================================================================
# STORAGE FAILURES
# =============================================================================

def test_unavailable_storage_degrades_to_defaults(storage, store):
    record_id = store.insert('products', _product())
    storage.available = False

    assert store.get_all('products') == []
    assert store.get_by_id('products', record_id) is None
    assert store.insert('products', _product()) is None
    assert store.update('products', record_id, {'current_stock': 1}) is False
    assert store.delete('products', record_id) is False

    storage.available = True
    assert store.get_by_id('products', record_id)['current_stock'] == 10


def test_quota_exceeded_insert_returns_none(clock):
    storage = MemoryStorage(quota_bytes=400)
    store = RecordStore(storage, clock=clock)
    store.initialize()

    assert store.insert('products', _product(description='x' * 1000)) is None
    assert store.get_all('products') == []
    assert store.get_all('activity_logs') == []


def test_corrupt_table_reads_as_empty(storage, store):
    storage.set('stockwise_products', '{not json')
    assert store.get_all('products') == []
    storage.set('stockwise_products', json.dumps({'not': 'a list'}))
    assert store.get_all('products') == []


# =============================================================================
# OBSERVERS, TRANSACTIONS, EXPORT/IMPORT
# =============================================================================

def test_on_change_notifies_and_unsubscribes(store):
    events = []
    unsubscribe = store.on_change(events.append)

    record_id = store.insert('products', _product())
    store.delete('products', record_id)
    unsubscribe()
    store.insert('products', _product())

    assert [(e.table, e.action, e.record_id) for e in events] == [
        ('products', 'INSERT', record_id),
        ('products', 'DELETE', record_id),
    ]


def test_failing_observer_does_not_break_writes(store):
    def boom(event):
        raise ValueError('observer bug')

    store.on_change(boom)
    assert store.insert('products', _product()) is not None


def test_atomic_rolls_back_every_table_on_error(store):
    product_id = store.insert('products', _product(current_stock=10))

    with pytest.raises(RuntimeError):
        with store.atomic('stock_logs', 'products'):
            store.insert('stock_logs', {'product_id': product_id, 'quantity': 3})
            store.update('products', product_id, {'current_stock': 7})
            raise RuntimeError('crash between writes')

    assert store.get_all('stock_logs') == []
    assert store.get_by_id('products', product_id)['current_stock'] == 10


def test_atomic_raises_storage_failures(storage, store):
    storage.quota_bytes = 300
    with pytest.raises(StorageUnavailable):
        with store.atomic('products'):
            store.insert('products', _product(description='x' * 1000))


def test_export_then_import_replaces_known_tables_only(store, storage, clock):
    store.insert('products', _product())
    exported = store.export_data()
    assert set(exported) == set(store.tables)

    other = RecordStore(MemoryStorage(), clock=clock)
    imported = other.import_data({**exported, 'not_a_table': [{'id': 'x'}]})

    assert 'not_a_table' not in imported
    assert set(imported) == set(store.tables)
    assert other.get_all('products') == exported['products']


def test_password_hash_round_trip(store):
    stored = store.hash_password('password123')
    assert stored != 'password123'
    assert store.verify_password('password123', stored)
    assert not store.verify_password('wrong', stored)
