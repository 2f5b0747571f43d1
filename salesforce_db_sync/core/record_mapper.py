"""
记录映射器，处理 Salesforce 记录与暂存行之间的转换
"""
import json
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..db.models import ColumnSpec, TableSchema


TZ_SUFFIX = re.compile(r'([+-]\d{2})(\d{2})$')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """解析 Salesforce 时间字符串，返回 UTC 的 naive datetime"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace('Z', '+00:00')
        text = TZ_SUFFIX.sub(r'\1:\2', text)
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def later_timestamp(current: Optional[str], candidate: Optional[str]) -> Optional[str]:
    """返回两个时间字符串中较晚的一个，保留原始格式"""
    if not candidate:
        return current
    if not current:
        return candidate
    if parse_timestamp(candidate) > parse_timestamp(current):
        return candidate
    return current


def lower_keys(record: Dict[str, Any]) -> Dict[str, Any]:
    """字段名转小写并去掉 attributes 元数据"""
    return {k.lower(): v for k, v in record.items() if k != 'attributes'}


class RecordMapper:
    """按表结构转换字段值"""

    def __init__(self, schema: TableSchema):
        self.schema = schema
        self._columns = {c.name: c for c in schema.columns}

    def to_column_value(self, column: ColumnSpec, value: Any) -> Any:
        """转换 Salesforce 字段值为暂存列值"""
        if value is None or value == '':
            return None

        column_type = column.column_type.lower()

        if column_type.split('(')[0] in ('timestamp', 'datetime'):
            return parse_timestamp(value)

        if column_type == 'date' and isinstance(value, str):
            return date.fromisoformat(value[:10])

        if column_type == 'boolean' and isinstance(value, str):
            return value.strip().lower() == 'true'

        if column_type == 'integer' and isinstance(value, str):
            return int(float(value))

        if column_type == 'double precision' and isinstance(value, str):
            return float(value)

        # 关联对象等复杂类型，转为JSON字符串
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)

        return value

    def to_staging(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Salesforce 记录转换为暂存行，只保留远端列，缺失字段为 NULL"""
        lowered = lower_keys(record)
        return {
            column.name: self.to_column_value(column, lowered.get(column.name))
            for column in self.schema.remote_columns
        }

    def to_remote_value(self, column: ColumnSpec, value: Any) -> Any:
        """转换暂存列值为 Salesforce API 格式"""
        if column.column_type.lower() == 'boolean' or (
                column.source and column.source.type == 'boolean'):
            return 'true' if value in (True, 1) else 'false'

        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, Decimal):
            return float(value)

        return value

    def to_remote_payload(self, row: Dict[str, Any],
                          columns: List[ColumnSpec]) -> Dict[str, Any]:
        """
        只投影给定列中有值的字段

        属于关联对象的字段嵌套在关系名下。
        """
        allowed = {c.name: c for c in columns}
        payload: Dict[str, Any] = {}

        for key, value in row.items():
            column = allowed.get(key.lower())
            if column is None or value is None:
                continue

            remote_value = self.to_remote_value(column, value)
            source = column.source
            if source and source.targets_related_object:
                payload.setdefault(source.relationship_key, {})[source.payload_name] = remote_value
            elif source:
                payload[source.name] = remote_value
            else:
                payload[column.name] = remote_value

        return payload
