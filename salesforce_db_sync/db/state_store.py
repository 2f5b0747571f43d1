"""
同步状态存储

游标与表结构以 JSON 字符串保存在键值存储中，键名以对象名区分。
"""
import json
from abc import ABC, abstractmethod
from typing import Optional

import redis
from loguru import logger

from .database import Database, sequence_name
from .models import ColumnSpec, SyncCursor, TableSchema


CONFIG_TABLE = "_config"

CONFIG_TABLE_COLUMNS = [
    ColumnSpec(name="id", column_type="bigint", not_null=True,
               primary_key=True, default_sequence=True),
    ColumnSpec(name="key", column_type="varchar(255)", not_null=True,
               create_unique_index=True),
    ColumnSpec(name="value", column_type="longtext"),
    ColumnSpec(name="update_timestamp", column_type="timestamp", default_now=True),
]


class StateStore(ABC):
    """键值状态存储接口"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class DatabaseStateStore(StateStore):
    """保存在暂存库 _config 表中的状态"""

    def __init__(self, database: Database, table: str = CONFIG_TABLE):
        self.db = database
        self.table = table

    def ensure_table(self) -> None:
        """创建状态表"""
        for column in CONFIG_TABLE_COLUMNS:
            if column.default_sequence:
                self.db.create_sequence(sequence_name(self.table, column.name))
        self.db.create_table(self.table, CONFIG_TABLE_COLUMNS)
        for column in CONFIG_TABLE_COLUMNS:
            if column.create_unique_index:
                self.db.create_index(self.table, column, unique=True)

    def get(self, key: str) -> Optional[str]:
        rows = self.db.select(self.table, ['value'], {'key': key})
        if rows:
            return rows[0]['value']
        return None

    def set(self, key: str, value: str) -> None:
        self.db.upsert(self.table, {'key': key, 'value': value}, ['key'])

    def delete(self, key: str) -> None:
        self.db.delete(self.table, {'key': key})


class RedisStateStore(StateStore):
    """保存在 Redis 中的状态（不过期）"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "salesforce_sync:"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        value = self.redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode('utf-8')
        return value

    def set(self, key: str, value: str) -> None:
        self.redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.redis.delete(self._key(key))


class SyncStateRepository:
    """按对象读写同步游标与表结构"""

    def __init__(self, store: StateStore):
        self.store = store

    @staticmethod
    def cursor_key(object_name: str) -> str:
        return f"{object_name}-sync-cursor"

    @staticmethod
    def schema_key(object_name: str) -> str:
        return f"{object_name}-schema"

    def load_cursor(self, object_name: str) -> SyncCursor:
        raw = self.store.get(self.cursor_key(object_name))
        if not raw:
            return SyncCursor()
        return SyncCursor.from_dict(json.loads(raw))

    def save_cursor(self, object_name: str, cursor: SyncCursor) -> None:
        # 单次写入，水位线与导出任务的切换是原子的
        self.store.set(self.cursor_key(object_name), json.dumps(cursor.to_dict()))

    def reset_cursor(self, object_name: str) -> None:
        """清除游标，下次同步将重新全量导出"""
        self.store.delete(self.cursor_key(object_name))
        logger.info(f"Reset sync cursor for {object_name}")

    def load_schema(self, object_name: str) -> Optional[TableSchema]:
        raw = self.store.get(self.schema_key(object_name))
        if not raw:
            return None
        return TableSchema.from_dict(json.loads(raw))

    def save_schema(self, schema: TableSchema) -> None:
        self.store.set(self.schema_key(schema.object_name), json.dumps(schema.to_dict()))
