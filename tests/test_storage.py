import os

import pytest

from stockwise.exceptions import StorageUnavailable
from stockwise.repositories import JsonFileStorage, MemoryStorage, RecordStore
from stockwise.services import SessionManager


def test_memory_storage_basic_operations():
    storage = MemoryStorage()
    assert storage.get('k') is None
    storage.set('k', '[1]')
    assert storage.get('k') == '[1]'
    assert storage.keys() == ['k']
    storage.remove('k')
    storage.remove('k')
    assert storage.get('k') is None


def test_memory_storage_quota():
    storage = MemoryStorage(quota_bytes=10)
    storage.set('a', '12345')
    with pytest.raises(StorageUnavailable):
        storage.set('b', '123456789')
    # Replacing a value only counts the new size
    storage.set('a', '123456789')


def test_memory_storage_unavailable():
    storage = MemoryStorage()
    storage.available = False
    with pytest.raises(StorageUnavailable):
        storage.get('k')


def test_subscribers_receive_keys_and_can_unsubscribe():
    storage = MemoryStorage()
    seen = []
    unsubscribe = storage.subscribe(seen.append)
    storage.set('a', '1')
    storage.remove('a')
    unsubscribe()
    storage.set('b', '2')
    assert seen == ['a', 'a']


def test_failing_subscriber_does_not_block_others():
    storage = MemoryStorage()
    seen = []

    def broken(key):
        raise RuntimeError('listener bug')

    storage.subscribe(broken)
    storage.subscribe(seen.append)
    storage.set('a', '1')
    assert seen == ['a']


def test_json_file_storage_round_trip(tmp_path):
    storage = JsonFileStorage(str(tmp_path))
    storage.set('stockwise_products', '[{"id": "1"}]')

    assert (tmp_path / 'stockwise_products.json').read_text(encoding='utf-8') == '[{"id": "1"}]'
    assert storage.get('stockwise_products') == '[{"id": "1"}]'
    assert storage.keys() == ['stockwise_products']
    assert not (tmp_path / 'stockwise_products.json.tmp').exists()

    storage.remove('stockwise_products')
    assert storage.get('stockwise_products') is None


def test_json_file_storage_rejects_path_like_keys(tmp_path):
    storage = JsonFileStorage(str(tmp_path))
    with pytest.raises(ValueError):
        storage.set('../escape', '1')


def test_json_file_storage_reload_reports_external_changes(tmp_path):
    storage = JsonFileStorage(str(tmp_path))
    storage.set('stockwise_auth_state', '{}')
    seen = []
    storage.subscribe(seen.append)

    path = tmp_path / 'stockwise_auth_state.json'
    path.write_text('{"changed": true}', encoding='utf-8')
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
    (tmp_path / 'stockwise_users.json').write_text('[]', encoding='utf-8')

    changed = storage.reload()

    assert sorted(changed) == ['stockwise_auth_state', 'stockwise_users']
    assert sorted(seen) == ['stockwise_auth_state', 'stockwise_users']
    assert storage.reload() == []


def test_record_store_persists_across_instances(tmp_path, clock):
    first = RecordStore(JsonFileStorage(str(tmp_path)), clock=clock)
    first.initialize()
    record_id = first.insert('categories', {'name': 'Books'})

    second = RecordStore(JsonFileStorage(str(tmp_path)), clock=clock)
    assert second.get_by_id('categories', record_id)['name'] == 'Books'


def test_invalid_utf8_table_reads_as_empty(tmp_path, clock):
    store = RecordStore(JsonFileStorage(str(tmp_path)), clock=clock)
    (tmp_path / 'stockwise_products.json').write_bytes(b'\xff\xfe[]')

    assert store.get_all('products') == []
    assert store.get_by_id('products', 'x') is None


def test_invalid_utf8_auth_blob_reads_as_anonymous(tmp_path, clock):
    storage = JsonFileStorage(str(tmp_path))
    store = RecordStore(storage, clock=clock)
    sessions = SessionManager(storage, store, clock=clock)
    (tmp_path / 'stockwise_auth_state.json').write_bytes(b'\xff\xfe{bad')

    assert sessions.get_auth_state() is None
    assert sessions.current_user() is None
    assert sessions.require_auth().redirect == 'login'
    sessions.close()
