"""数据库操作模块"""

from .database import Database
from .models import (
    SyncStatus, ColumnSpec, SourceField, TableSchema, SyncCursor, PendingBulkJob
)
from .state_store import (
    StateStore, DatabaseStateStore, RedisStateStore, SyncStateRepository
)

__all__ = [
    "Database", "SyncStatus", "ColumnSpec", "SourceField", "TableSchema",
    "SyncCursor", "PendingBulkJob", "StateStore", "DatabaseStateStore",
    "RedisStateStore", "SyncStateRepository"
]
