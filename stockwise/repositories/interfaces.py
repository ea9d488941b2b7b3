# ==============================================================================
# REPOSITORY INTERFACES
# ==============================================================================
#
# Protocols the services depend on instead of concrete classes:
#
# 1. STORAGE INDEPENDENCE
#    - Services only see IRecordStore; the backend below it can be memory,
#      JSON files or anything implementing IKeyValueStorage.
#
# 2. TESTING
#    - A fake store or storage only has to satisfy these methods.
#
# ==============================================================================

from typing import Any, Callable, ContextManager, Dict, List, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class IKeyValueStorage(Protocol):
    """String key-value medium (local-storage semantics)."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """Register a change listener; returns the unsubscribe function."""
        ...


@runtime_checkable
class IRecordStore(Protocol):
    """Generic table access used by every repository and service."""

    def get_all(self, table: str) -> List[Dict[str, Any]]:
        ...

    def get_by_id(self, table: str, record_id: Any) -> Optional[Dict[str, Any]]:
        ...

    def find(self, table: str, criteria: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    def find_one(self, table: str, criteria: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        ...

    def count(self, table: str, criteria: Optional[Mapping[str, Any]] = None) -> int:
        ...

    def insert(self, table: str, data: Any) -> Optional[str]:
        ...

    def update(self, table: str, record_id: Any, data: Any) -> bool:
        ...

    def delete(self, table: str, record_id: Any) -> bool:
        ...

    def log_activity(self, action: Any, table_name: str, record_id: Optional[str] = None, **kwargs: Any) -> Any:
        ...

    def atomic(self, *tables: str) -> ContextManager[Any]:
        ...
