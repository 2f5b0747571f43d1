"""
暂存数据库操作封装（MariaDB / MySQL）
"""
import hashlib
from typing import Dict, Iterable, List, Any, Optional, Sequence, Tuple
from contextlib import contextmanager
import pymysql
from pymysql.connections import Connection
from pymysql.cursors import DictCursor
from dbutils.pooled_db import PooledDB
from loguru import logger

from ..config.config import DatabaseConfig
from .models import ColumnSpec


# 需要前缀长度才能建索引的类型
PREFIX_INDEX_TYPES = ('text', 'mediumtext', 'longtext', 'blob')
INDEX_PREFIX_LENGTH = 191
MAX_IDENTIFIER_LENGTH = 64


def quote_identifier(name: str) -> str:
    """转义标识符"""
    return "`" + name.replace("`", "``") + "`"


def shorten_identifier(name: str) -> str:
    """超长标识符截断后附加哈希，避免不同字段截断成同一个名字"""
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.md5(name.encode('utf-8')).hexdigest()[:8]
    return f"{name[:MAX_IDENTIFIER_LENGTH - len(digest) - 1]}_{digest}"


def sequence_name(table: str, column: str) -> str:
    return shorten_identifier(f"{table}_{column}_seq")


def index_name(table: str, column: str) -> str:
    return shorten_identifier(f"idx_{table}_{column}_idx")


class Database:
    """数据库操作类"""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None
        self._init_pool()

    def _init_pool(self) -> None:
        """初始化连接池"""
        try:
            self._pool = PooledDB(
                creator=pymysql,
                maxconnections=self.config.pool_size,
                mincached=1,
                maxcached=self.config.pool_size,
                blocking=True,
                host=self.config.host,
                port=self.config.port,
                user=self.config.user,
                password=self.config.password,
                database=self.config.database,
                charset=self.config.charset,
                cursorclass=DictCursor
            )
            logger.info(f"Database connection pool initialized: {self.config.host}:{self.config.port}")
        except Exception as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise

    @contextmanager
    def get_connection(self) -> Connection:
        """获取数据库连接（上下文管理器）"""
        conn = None
        try:
            conn = self._pool.connection()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database operation error: {e}")
            raise
        finally:
            if conn:
                conn.close()

    def execute(self, sql: str, params: Optional[Sequence] = None) -> int:
        """执行SQL语句"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                result = cursor.execute(sql, params)
                conn.commit()
                return result
            finally:
                cursor.close()

    def execute_many(self, sql: str, params_list: List[Sequence]) -> int:
        """批量执行SQL语句"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                result = cursor.executemany(sql, params_list)
                conn.commit()
                return result
            finally:
                cursor.close()

    def query(self, sql: str, params: Optional[Sequence] = None) -> List[Dict[str, Any]]:
        """查询数据"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
            finally:
                cursor.close()

    def query_one(self, sql: str, params: Optional[Sequence] = None) -> Optional[Dict[str, Any]]:
        """查询单条数据"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return cursor.fetchone()
            finally:
                cursor.close()

    def select(self, table: str, columns: Optional[List[str]] = None,
               where: Optional[Dict[str, Any]] = None,
               order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """按等值条件查询"""
        column_clause = ', '.join(quote_identifier(c) for c in columns) if columns else '*'
        sql = f"SELECT {column_clause} FROM {quote_identifier(table)}"
        params: List[Any] = []

        if where:
            sql += " WHERE " + ' AND '.join(f"{quote_identifier(k)} = %s" for k in where.keys())
            params = list(where.values())

        if order_by:
            sql += f" ORDER BY {quote_identifier(order_by)}"

        return self.query(sql, params)

    def update(self, table: str, data: Dict[str, Any],
               where: Dict[str, Any]) -> int:
        """更新数据"""
        set_clause = ', '.join([f"{quote_identifier(k)} = %s" for k in data.keys()])
        where_clause = ' AND '.join([f"{quote_identifier(k)} = %s" for k in where.keys()])

        sql = f"UPDATE {quote_identifier(table)} SET {set_clause} WHERE {where_clause}"
        params = list(data.values()) + list(where.values())

        return self.execute(sql, params)

    def _upsert_sql(self, table: str, columns: List[str], unique_keys: List[str]) -> str:
        placeholders = ', '.join(['%s'] * len(columns))
        update_columns = [c for c in columns if c not in unique_keys] or unique_keys[:1]
        update_clause = ', '.join(
            f"{quote_identifier(c)} = VALUES({quote_identifier(c)})" for c in update_columns
        )
        column_clause = ', '.join(quote_identifier(c) for c in columns)

        return (
            f"INSERT INTO {quote_identifier(table)} ({column_clause}) "
            f"VALUES ({placeholders}) "
            f"ON DUPLICATE KEY UPDATE {update_clause}"
        )

    def upsert(self, table: str, data: Dict[str, Any],
               unique_keys: List[str]) -> int:
        """插入或更新数据"""
        columns = list(data.keys())
        sql = self._upsert_sql(table, columns, unique_keys)
        return self.execute(sql, list(data.values()))

    def bulk_load(self, table: str, columns: List[str],
                  rows: Iterable[Sequence[Any]], batch_size: int = 1000,
                  unique_keys: Optional[List[str]] = None) -> int:
        """
        按固定列顺序批量写入

        指定 unique_keys 时重复行按键覆盖，重放同一页数据不会失败。
        """
        if unique_keys:
            sql = self._upsert_sql(table, columns, unique_keys)
        else:
            placeholders = ', '.join(['%s'] * len(columns))
            column_clause = ', '.join(quote_identifier(c) for c in columns)
            sql = f"INSERT INTO {quote_identifier(table)} ({column_clause}) VALUES ({placeholders})"

        total = 0
        batch: List[Tuple] = []
        for row in rows:
            batch.append(tuple(row))
            if len(batch) >= batch_size:
                self.execute_many(sql, batch)
                total += len(batch)
                batch = []

        if batch:
            self.execute_many(sql, batch)
            total += len(batch)

        logger.debug(f"Bulk loaded {total} rows into {table}")
        return total

    def delete(self, table: str, where: Dict[str, Any]) -> int:
        """删除数据"""
        where_clause = ' AND '.join([f"{quote_identifier(k)} = %s" for k in where.keys()])
        sql = f"DELETE FROM {quote_identifier(table)} WHERE {where_clause}"

        return self.execute(sql, list(where.values()))

    def truncate(self, table: str) -> None:
        """清空表"""
        self.execute(f"TRUNCATE TABLE {quote_identifier(table)}")
        logger.info(f"Truncated table {table}")

    def table_exists(self, table: str) -> bool:
        """检查表是否存在"""
        sql = """
            SELECT COUNT(*) as count
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s AND table_type = 'BASE TABLE'
        """
        result = self.query_one(sql, (self.config.database, table))
        return result['count'] > 0

    def sequence_exists(self, name: str) -> bool:
        """检查序列是否存在"""
        sql = """
            SELECT COUNT(*) as count
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s AND table_type = 'SEQUENCE'
        """
        result = self.query_one(sql, (self.config.database, name))
        return result['count'] > 0

    def get_table_columns(self, table: str) -> List[Dict[str, Any]]:
        """获取表字段信息"""
        sql = """
            SELECT
                COLUMN_NAME as name,
                DATA_TYPE as type,
                IS_NULLABLE as nullable,
                COLUMN_DEFAULT as default_value,
                EXTRA as extra
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ORDINAL_POSITION
        """
        return self.query(sql, (self.config.database, table))

    def get_index_names(self, table: str) -> List[str]:
        """获取表上已有的索引名"""
        sql = """
            SELECT DISTINCT INDEX_NAME as name
            FROM information_schema.statistics
            WHERE table_schema = %s AND table_name = %s
        """
        return [row['name'] for row in self.query(sql, (self.config.database, table))]

    def column_definition(self, table: str, column: ColumnSpec) -> str:
        """生成列定义"""
        parts = [quote_identifier(column.name), column.column_type]

        if column.not_null:
            parts.append("NOT NULL")
        elif column.column_type.lower() == 'timestamp' and not column.default_now:
            # 未开启 explicit_defaults_for_timestamp 时 timestamp 列默认 NOT NULL
            parts.append("NULL")
        if column.default_sequence:
            parts.append(f"DEFAULT NEXTVAL({quote_identifier(sequence_name(table, column.name))})")
        if column.default_now:
            parts.append("DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP")
        if column.primary_key:
            parts.append("PRIMARY KEY")

        return ' '.join(parts)

    def create_sequence(self, name: str) -> None:
        """创建序列"""
        self.execute(f"CREATE SEQUENCE IF NOT EXISTS {quote_identifier(name)}")
        logger.info(f"Created sequence if not exists {name}")

    def create_table(self, table: str, columns: List[ColumnSpec]) -> None:
        """创建表"""
        definitions = ', '.join(self.column_definition(table, c) for c in columns)
        self.execute(
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(table)} ({definitions}) "
            f"ENGINE=InnoDB DEFAULT CHARSET={self.config.charset}"
        )
        logger.info(f"Created table if not exists {table}")

    def add_column(self, table: str, column: ColumnSpec) -> None:
        """新增列"""
        self.execute(
            f"ALTER TABLE {quote_identifier(table)} "
            f"ADD COLUMN IF NOT EXISTS {self.column_definition(table, column)}"
        )
        logger.info(f"Added column {column.name} to table {table}")

    def create_index(self, table: str, column: ColumnSpec, unique: bool = False) -> None:
        """创建索引，TEXT 类列使用前缀索引"""
        name = index_name(table, column.name)
        target = quote_identifier(column.name)
        if column.column_type.lower() in PREFIX_INDEX_TYPES:
            target = f"{target}({INDEX_PREFIX_LENGTH})"

        kind = "UNIQUE INDEX" if unique else "INDEX"
        self.execute(
            f"CREATE {kind} IF NOT EXISTS {quote_identifier(name)} "
            f"ON {quote_identifier(table)} ({target})"
        )
        logger.info(f"Created {kind.lower()} if not exists {name}")

    def test_connection(self) -> bool:
        """测试数据库连接"""
        try:
            self.query_one("SELECT 1 as test")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False
