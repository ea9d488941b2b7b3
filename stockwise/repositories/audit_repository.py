# ==============================================================================
# AUDIT REPOSITORY
# ==============================================================================
# Read-only access to the activity log. Entries are written by the record
# store as a side effect of mutations and by the session manager on
# login/logout; the log keeps the newest ACTIVITY_LOG_LIMIT entries.
# ==============================================================================

from typing import Any, List, Optional

from stockwise.exceptions import ProtectedTable
from stockwise.models.entities import ActivityLogEntry, enum_value
from stockwise.repositories.table_repository import TableRepository


class ActivityLogRepository(TableRepository[ActivityLogEntry]):
    """
    Repository for the activity log.

    Stored entry:
    {
        "id": "...", "action": "UPDATE", "table_name": "products",
        "record_id": "...", "user_id": "...", "username": "admin",
        "details": "", "timestamp": "2026-01-05T10:00:00.000Z"
    }
    """

    table = 'activity_logs'
    entity = ActivityLogEntry

    def recent(self, limit: Optional[int] = 50) -> List[ActivityLogEntry]:
        """
        Newest entries first.

        Args:
            limit: Maximum entries returned (None for all)
        """
        entries = list(reversed(self.all()))
        return entries if limit is None else entries[:limit]

    def by_user(self, user_id: str) -> List[ActivityLogEntry]:
        return [e for e in self.all() if e.user_id == user_id]

    def by_action(self, action: Any) -> List[ActivityLogEntry]:
        wanted = enum_value(action)
        return [e for e in self.all() if e.action == wanted]

    def by_table(self, table_name: str) -> List[ActivityLogEntry]:
        return [e for e in self.all() if e.table_name == table_name]

    def add(self, entity: Any) -> Optional[str]:
        raise ProtectedTable(self.table, 'insert')

    def update(self, record_id: Any, patch: Any) -> bool:
        raise ProtectedTable(self.table, 'update')

    def delete(self, record_id: Any) -> bool:
        raise ProtectedTable(self.table, 'delete')
