# ==============================================================================
# RECORD STORE - Generic table access over key-value storage
# ==============================================================================
# Each table is a JSON array stored under its own namespaced key. Every
# insert/update/delete appends one entry to the activity log; audit failures
# never undo or fail the primary write.
#
# FAILURE POLICY:
# - Unknown table names raise UnknownTable (programmer error).
# - Missing ids make update/delete return False.
# - StorageUnavailable is logged and turned into [] / None / False, except
#   inside atomic() where it propagates so the block can roll back.
# ==============================================================================

import copy
import json
import logging
import random
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from stockwise.config import ACTIVITY_LOG_LIMIT, TABLES
from stockwise.exceptions import ProtectedTable, StorageUnavailable, UnknownTable
from stockwise.models.entities import ActivityAction, ActivityLogEntry, SessionUser, enum_value
from stockwise.repositories.base import BaseStorage
from stockwise import security
from stockwise.time_utils import parse_iso_datetime, to_epoch_ms, to_iso_z, truncate_ms, utcnow

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Clock = Callable[[], datetime]
ActorProvider = Callable[[], Optional[SessionUser]]

# Operations the generic API refuses per table. The ledger is written through
# insert only; the activity log only as a side effect of other operations.
APPEND_ONLY = {
    'stock_logs': frozenset(['update', 'delete']),
    'activity_logs': frozenset(['insert', 'update', 'delete']),
}

_IMMUTABLE_FIELDS = ('id', 'created_at')
_ID_ALPHABET = '0123456789abcdefghijklmnopqrstuvwxyz'


@dataclass(frozen=True)
class ChangeEvent:
    """Notification sent to store observers after a successful mutation."""
    table: str
    action: str
    record_id: Optional[str] = None


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def matches(record: Mapping[str, Any], criteria: Mapping[str, Any]) -> bool:
    """
    True if every criterion matches the record.

    String criteria match by case-insensitive substring of the field's text;
    anything else must be equal (booleans only equal booleans).
    """
    for field_name, expected in criteria.items():
        expected = enum_value(expected)
        actual = record.get(field_name)
        if isinstance(expected, str):
            if actual is None:
                return False
            if expected.lower() not in _as_text(actual).lower():
                return False
        elif isinstance(expected, bool) or isinstance(actual, bool):
            if type(expected) is not type(actual) or expected != actual:
                return False
        elif actual != expected:
            return False
    return True


class RecordStore:
    """
    Keyed-collection persistence over a fixed set of tables.

    Usage:
        store = RecordStore(MemoryStorage())
        product_id = store.insert('products', {'product_name': 'Mouse'})
        store.update('products', product_id, {'current_stock': 7})

    Args:
        storage: Key-value backend
        clock: Returns the current aware UTC datetime
        activity_log_limit: Activity log entries kept (oldest dropped first)
        actor_provider: Returns the user stamped on audit entries
    """

    def __init__(
        self,
        storage: BaseStorage,
        clock: Clock = utcnow,
        activity_log_limit: int = ACTIVITY_LOG_LIMIT,
        actor_provider: Optional[ActorProvider] = None,
    ):
        self.storage = storage
        self.activity_log_limit = activity_log_limit
        self.actor_provider = actor_provider
        self._clock = clock
        self._tables: Dict[str, str] = dict(TABLES)
        self._locks = {table: threading.RLock() for table in self._tables}
        self._observers: List[Callable[[ChangeEvent], None]] = []
        self._observers_lock = threading.Lock()
        self._id_lock = threading.Lock()
        self._id_last_ms = 0
        self._id_seq = 0
        self._local = threading.local()

    # =========================================================================
    # TABLES AND IDS
    # =========================================================================

    @property
    def tables(self) -> List[str]:
        return list(self._tables)

    def key_for(self, table: str) -> str:
        """
        Storage key of a table.

        Raises:
            UnknownTable: If the table is not recognized
        """
        try:
            return self._tables[table]
        except (KeyError, TypeError):
            raise UnknownTable(table) from None

    def generate_id(self) -> str:
        """
        Fresh record id: base-36 milliseconds, a per-millisecond sequence and
        a random suffix. Unique within the process even if the clock stalls
        or goes back.
        """
        now_ms = to_epoch_ms(self._clock())
        with self._id_lock:
            if now_ms <= self._id_last_ms:
                now_ms = self._id_last_ms
                self._id_seq += 1
            else:
                self._id_last_ms = now_ms
                self._id_seq = 0
            seq = self._id_seq
        suffix = ''.join(random.choices(_ID_ALPHABET, k=5))
        return security.to_base36(now_ms).rjust(9, '0') + security.to_base36(seq).rjust(4, '0') + suffix

    def initialize(self) -> None:
        """Create an empty array for every table that has no key yet."""
        for table, key in self._tables.items():
            try:
                if self.storage.get(key) is None:
                    self.storage.set(key, '[]')
            except StorageUnavailable as exc:
                logger.error("Cannot initialize table %s: %s", table, exc)

    # =========================================================================
    # RAW ACCESS
    # =========================================================================

    def _read(self, table: str) -> List[Record]:
        key = self.key_for(table)
        raw = self.storage.get(key)
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Table %s holds invalid JSON, treating it as empty", table)
            return []
        if not isinstance(data, list):
            logger.warning("Table %s is not a JSON array, treating it as empty", table)
            return []
        return [r for r in data if isinstance(r, dict)]

    def _write(self, table: str, records: List[Record]) -> None:
        self.storage.set(self.key_for(table), json.dumps(records, ensure_ascii=False))

    def _in_atomic(self) -> bool:
        return getattr(self._local, 'depth', 0) > 0

    def _storage_failed(self, exc: StorageUnavailable, operation: str, table: str, default: Any) -> Any:
        if self._in_atomic():
            raise exc
        logger.error("Storage unavailable during %s on %s: %s", operation, table, exc)
        return default

    def _check_allowed(self, table: str, operation: str) -> None:
        self.key_for(table)
        if operation in APPEND_ONLY.get(table, ()):
            raise ProtectedTable(table, operation)

    @staticmethod
    def _to_mapping(data: Any) -> Record:
        if hasattr(data, 'changes'):
            data = data.changes()
        elif hasattr(data, 'to_dict'):
            data = data.to_dict()
        if not isinstance(data, Mapping):
            raise TypeError(f"Expected a mapping, got {type(data).__name__}")
        return {k: enum_value(v) for k, v in copy.deepcopy(dict(data)).items()}

    def _now(self) -> datetime:
        return truncate_ms(self._clock())

    # =========================================================================
    # READS
    # =========================================================================

    def get_all(self, table: str) -> List[Record]:
        """
        Full contents of a table.

        Raises:
            UnknownTable: If the table is not recognized
        """
        self.key_for(table)
        try:
            return self._read(table)
        except StorageUnavailable as exc:
            return self._storage_failed(exc, 'read', table, [])

    def get_by_id(self, table: str, record_id: Any) -> Optional[Record]:
        for record in self.get_all(table):
            if record.get('id') == record_id:
                return record
        return None

    def find(self, table: str, criteria: Optional[Mapping[str, Any]] = None) -> List[Record]:
        """
        Records matching every criterion (see `matches`).

        Args:
            table: Table name
            criteria: Field -> value; empty returns the whole table
        """
        records = self.get_all(table)
        if not criteria:
            return records
        return [r for r in records if matches(r, criteria)]

    def find_one(self, table: str, criteria: Optional[Mapping[str, Any]] = None) -> Optional[Record]:
        for record in self.get_all(table):
            if not criteria or matches(record, criteria):
                return record
        return None

    def count(self, table: str, criteria: Optional[Mapping[str, Any]] = None) -> int:
        records = self.get_all(table)
        if not criteria:
            return len(records)
        return sum(1 for r in records if matches(r, criteria))

    # =========================================================================
    # WRITES
    # =========================================================================

    def insert(self, table: str, data: Any) -> Optional[str]:
        """
        Append a new record.

        The caller's object is copied, never modified. Any id or timestamps
        in `data` are replaced.

        Args:
            table: Table name
            data: Mapping or entity dataclass

        Returns:
            The new id, or None if storage is unavailable
        """
        self._check_allowed(table, 'insert')
        fields = self._to_mapping(data)
        for name in ('id', 'created_at', 'updated_at'):
            fields.pop(name, None)

        with self._locks[table]:
            try:
                records = self._read(table)
                stamp = to_iso_z(self._now())
                record_id = self.generate_id()
                record = {'id': record_id, **fields, 'created_at': stamp, 'updated_at': stamp}
                records.append(record)
                self._write(table, records)
            except StorageUnavailable as exc:
                return self._storage_failed(exc, 'insert', table, None)

        self.log_activity(ActivityAction.INSERT, table, record_id)
        self._emit(ChangeEvent(table, ActivityAction.INSERT.value, record_id))
        return record_id

    def update(self, table: str, record_id: Any, data: Any) -> bool:
        """
        Merge fields onto an existing record.

        Fields given overwrite, the rest are kept. `id` and `created_at`
        cannot change. `updated_at` always moves forward.

        Args:
            table: Table name
            record_id: Record id
            data: Mapping or patch

        Returns:
            False if the id does not exist or storage is unavailable
        """
        self._check_allowed(table, 'update')
        changes = self._to_mapping(data)
        for name in _IMMUTABLE_FIELDS + ('updated_at',):
            changes.pop(name, None)

        with self._locks[table]:
            try:
                records = self._read(table)
                for index, record in enumerate(records):
                    if record.get('id') == record_id:
                        break
                else:
                    return False
                merged = {**record, **changes}
                merged['updated_at'] = self._next_updated_at(record.get('updated_at'))
                records[index] = merged
                self._write(table, records)
            except StorageUnavailable as exc:
                return self._storage_failed(exc, 'update', table, False)

        self.log_activity(ActivityAction.UPDATE, table, record_id)
        self._emit(ChangeEvent(table, ActivityAction.UPDATE.value, record_id))
        return True

    def delete(self, table: str, record_id: Any) -> bool:
        """
        Remove a record.

        Returns:
            False if the id does not exist or storage is unavailable
        """
        self._check_allowed(table, 'delete')
        with self._locks[table]:
            try:
                records = self._read(table)
                remaining = [r for r in records if r.get('id') != record_id]
                if len(remaining) == len(records):
                    return False
                self._write(table, remaining)
            except StorageUnavailable as exc:
                return self._storage_failed(exc, 'delete', table, False)

        self.log_activity(ActivityAction.DELETE, table, record_id)
        self._emit(ChangeEvent(table, ActivityAction.DELETE.value, record_id))
        return True

    def _next_updated_at(self, previous: Optional[str]) -> str:
        now = self._now()
        try:
            last = parse_iso_datetime(previous) if isinstance(previous, str) else None
        except ValueError:
            last = None
        if last is not None and now <= last:
            now = last + timedelta(milliseconds=1)
        return to_iso_z(now)

    # =========================================================================
    # ACTIVITY LOG
    # =========================================================================

    def log_activity(
        self,
        action: Any,
        table_name: str,
        record_id: Optional[str] = None,
        *,
        user: Optional[SessionUser] = None,
        details: str = '',
    ) -> Optional[ActivityLogEntry]:
        """
        Append one audit entry, trimming the oldest beyond the limit.

        Best effort: a failure is logged and None returned, never raised.

        Args:
            action: ActivityAction
            table_name: Table the action touched
            record_id: Affected record, if any
            user: Actor; defaults to the actor provider's current user
            details: Free text, e.g. the logout reason
        """
        try:
            actor = user if user is not None else self._current_actor()
            entry = ActivityLogEntry(
                id=self.generate_id(),
                action=enum_value(action),
                table_name=table_name,
                record_id=record_id,
                user_id=actor.id if actor else None,
                username=actor.username if actor else 'anonymous',
                details=details,
                timestamp=to_iso_z(self._now()),
            )
            with self._locks['activity_logs']:
                logs = self._read('activity_logs')
                logs.append(entry.to_dict())
                if len(logs) > self.activity_log_limit:
                    logs = logs[-self.activity_log_limit:]
                self._write('activity_logs', logs)
            return entry
        except Exception as exc:
            logger.warning("Failed to log activity %s on %s: %s", action, table_name, exc)
            return None

    def _current_actor(self) -> Optional[SessionUser]:
        if self.actor_provider is None:
            return None
        return self.actor_provider()

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def on_change(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """
        Subscribe to successful mutations.

        Returns:
            Function that removes the subscription
        """
        with self._observers_lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._observers_lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _emit(self, event: ChangeEvent) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(event)
            except Exception:
                logger.exception("Store observer failed for %s", event)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextmanager
    def atomic(self, *tables: str) -> Iterator['RecordStore']:
        """
        Group writes to several tables.

        Locks the tables, snapshots their stored values and restores them
        if the block raises. Inside the block storage failures raise
        StorageUnavailable instead of returning a default. Audit entries
        written inside the block are kept.

        Raises:
            StorageUnavailable: If the snapshot cannot be taken
        """
        names = sorted({t for t in tables})
        for table in names:
            self.key_for(table)
        with ExitStack() as stack:
            for table in names:
                stack.enter_context(self._locks[table])
            snapshots = {table: self.storage.get(self._tables[table]) for table in names}
            self._local.depth = getattr(self._local, 'depth', 0) + 1
            try:
                yield self
            except BaseException:
                self._restore(snapshots)
                raise
            finally:
                self._local.depth -= 1

    def _restore(self, snapshots: Dict[str, Optional[str]]) -> None:
        for table, raw in snapshots.items():
            key = self._tables[table]
            try:
                if raw is None:
                    self.storage.remove(key)
                else:
                    self.storage.set(key, raw)
            except StorageUnavailable as exc:
                logger.critical("Could not roll back table %s, data may be inconsistent: %s", table, exc)
                continue
            logger.warning("Rolled back table %s", table)
            self._emit(ChangeEvent(table, 'ROLLBACK'))

    # =========================================================================
    # PASSWORDS
    # =========================================================================

    hash_password = staticmethod(security.hash_password)
    verify_password = staticmethod(security.verify_password)

    # =========================================================================
    # BULK EXPORT / IMPORT
    # =========================================================================

    def export_data(self) -> Dict[str, List[Record]]:
        """Every table's records, keyed by table name."""
        return {table: self.get_all(table) for table in self._tables}

    def import_data(self, data: Mapping[str, Any]) -> List[str]:
        """
        Replace tables wholesale. Unknown names are ignored, as are values
        that are not lists. No audit entries are written.

        Returns:
            Names of the tables that were replaced
        """
        imported = []
        for table, records in data.items():
            if table not in self._tables:
                logger.debug("Ignoring unknown table %s in import", table)
                continue
            if not isinstance(records, list):
                logger.warning("Ignoring table %s in import: expected a list", table)
                continue
            with self._locks[table]:
                try:
                    self._write(table, [dict(r) for r in records if isinstance(r, Mapping)])
                except StorageUnavailable as exc:
                    self._storage_failed(exc, 'import', table, None)
                    continue
            imported.append(table)
            self._emit(ChangeEvent(table, 'IMPORT'))
        return imported

    def close(self) -> None:
        with self._observers_lock:
            self._observers.clear()
