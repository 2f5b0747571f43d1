"""
同步数据模型定义
"""
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict, replace
from enum import Enum


class SyncStatus(Enum):
    """暂存行同步状态"""
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    ERROR = "ERROR"


# 暂存表中由同步流程维护的列
SYNC_ID = "_sync_id"
SYNC_STATUS = "_sync_status"
SYNC_MESSAGE = "_sync_message"
SYNC_UPDATE_TIMESTAMP = "_sync_update_timestamp"
REMOTE_ID = "id"


@dataclass
class SourceField:
    """列对应的 Salesforce 字段及解析结果"""
    object_name: str
    name: str
    type: str
    label: str = ""
    kind: str = "plain"  # plain | reference | calculated
    resolved_object: Optional[str] = None
    resolved_field: Optional[str] = None
    # 写回时嵌套使用的关系名，仅当字段属于关联对象时设置
    relationship_key: Optional[str] = None
    calculated_formula: Optional[str] = None
    reference_to: List[str] = field(default_factory=list)
    createable: bool = False
    updateable: bool = False

    @property
    def targets_related_object(self) -> bool:
        return bool(self.relationship_key)

    @property
    def payload_name(self) -> str:
        """写回 payload 中使用的字段名"""
        if self.targets_related_object and self.resolved_field:
            return self.resolved_field
        return self.name


@dataclass
class ColumnSpec:
    """暂存表列定义"""
    name: str
    column_type: str
    create_index: bool = False
    create_unique_index: bool = False
    not_null: bool = False
    primary_key: bool = False
    default_sequence: bool = False
    default_now: bool = False
    is_remote_column: bool = False
    can_create: bool = False
    can_update: bool = False
    source: Optional[SourceField] = None

    def __post_init__(self):
        self.name = self.name.lower()

    @classmethod
    def from_common_field(cls, spec: Dict[str, Any], column_type: str) -> 'ColumnSpec':
        """从配置中的本地公共字段创建列"""
        return cls(
            name=spec['name'],
            column_type=column_type,
            create_index=bool(spec.get('createIndex')),
            create_unique_index=bool(spec.get('createUniqueIndex')),
            not_null=bool(spec.get('notNull')),
            primary_key=bool(spec.get('primaryKey')),
            default_sequence=bool(spec.get('defaultSequence')),
            default_now=bool(spec.get('defaultNow'))
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'ColumnSpec':
        data = dict(data)
        source = data.pop('source', None)
        column = ColumnSpec(**data)
        if source:
            column.source = SourceField(**source)
        return column


@dataclass
class TableSchema:
    """对象对应的暂存表结构"""
    object_name: str
    columns: List[ColumnSpec] = field(default_factory=list)

    def __post_init__(self):
        # 按列名去重，保留首次出现
        unique_columns = []
        seen = set()
        for column in self.columns:
            if column.name in seen:
                continue
            seen.add(column.name)
            unique_columns.append(column)
        self.columns = unique_columns

    @property
    def table_name(self) -> str:
        return self.object_name.lower()

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def remote_columns(self) -> List[ColumnSpec]:
        return [c for c in self.columns if c.is_remote_column]

    @property
    def createable_columns(self) -> List[ColumnSpec]:
        return [c for c in self.columns if c.is_remote_column and c.can_create]

    @property
    def updateable_columns(self) -> List[ColumnSpec]:
        return [c for c in self.columns if c.is_remote_column and c.can_update]

    def get_column(self, name: str) -> Optional[ColumnSpec]:
        name = name.lower()
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'object_name': self.object_name,
            'columns': [c.to_dict() for c in self.columns]
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'TableSchema':
        return TableSchema(
            object_name=data['object_name'],
            columns=[ColumnSpec.from_dict(c) for c in data.get('columns', [])]
        )


@dataclass
class PendingBulkJob:
    """进行中的全量导出任务"""
    job_id: str
    locator: Optional[str] = None
    max_modstamp: Optional[str] = None
    records_loaded: int = 0
    # 提交时间，导出为空时作为水位线
    submitted_at: Optional[str] = None

    @property
    def has_loaded_pages(self) -> bool:
        return self.locator is not None


@dataclass
class SyncCursor:
    """对象的同步游标：水位线与进行中的导出任务二者至多其一"""
    last_modified_watermark: Optional[str] = None
    pending_bulk_job: Optional[PendingBulkJob] = None

    def __post_init__(self):
        if self.last_modified_watermark and self.pending_bulk_job:
            raise ValueError("SyncCursor cannot hold both a watermark and a pending bulk job")

    @property
    def full_load_complete(self) -> bool:
        return bool(self.last_modified_watermark)

    def with_watermark(self, watermark: str) -> 'SyncCursor':
        return SyncCursor(last_modified_watermark=watermark)

    def with_pending_job(self, job: PendingBulkJob) -> 'SyncCursor':
        return replace(self, last_modified_watermark=None, pending_bulk_job=job)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'last_modified_watermark': self.last_modified_watermark,
            'pending_bulk_job': asdict(self.pending_bulk_job) if self.pending_bulk_job else None
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'SyncCursor':
        job = data.get('pending_bulk_job')
        return SyncCursor(
            last_modified_watermark=data.get('last_modified_watermark'),
            pending_bulk_job=PendingBulkJob(**job) if job else None
        )
