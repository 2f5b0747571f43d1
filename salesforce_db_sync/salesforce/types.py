"""Salesforce 类型定义"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field


class BulkJobState(Enum):
    """批量导出任务状态"""
    NOT_SUBMITTED = "NotSubmitted"
    QUEUED = "UploadComplete"
    IN_PROGRESS = "InProgress"
    JOB_COMPLETE = "JobComplete"
    FAILED = "Failed"

    @classmethod
    def from_remote(cls, state: str) -> 'BulkJobState':
        """将 Bulk API 2.0 返回的 state 转换为状态枚举"""
        if state in ('UploadComplete', 'Open'):
            return cls.QUEUED
        if state == 'InProgress':
            return cls.IN_PROGRESS
        if state == 'JobComplete':
            return cls.JOB_COMPLETE
        if state in ('Failed', 'Aborted'):
            return cls.FAILED
        raise ValueError(f"Unknown bulk job state: {state}")

    @property
    def is_terminal(self) -> bool:
        return self in (BulkJobState.JOB_COMPLETE, BulkJobState.FAILED)


@dataclass(frozen=True)
class ObjectFieldDescriptor:
    """describe 接口返回的单个字段"""
    name: str
    type: str
    label: str = ""
    unique: bool = False
    id_lookup: bool = False
    filterable: bool = False
    sortable: bool = False
    createable: bool = False
    updateable: bool = False
    calculated: bool = False
    calculated_formula: Optional[str] = None
    reference_to: Tuple[str, ...] = ()
    relationship_name: Optional[str] = None

    @classmethod
    def from_describe(cls, data: Dict[str, Any]) -> 'ObjectFieldDescriptor':
        return cls(
            name=data['name'],
            type=data.get('type', ''),
            label=data.get('label') or '',
            unique=bool(data.get('unique')),
            id_lookup=bool(data.get('idLookup')),
            filterable=bool(data.get('filterable')),
            sortable=bool(data.get('sortable')),
            createable=bool(data.get('createable')),
            updateable=bool(data.get('updateable')),
            calculated=bool(data.get('calculated')),
            calculated_formula=data.get('calculatedFormula'),
            reference_to=tuple(data.get('referenceTo') or ()),
            relationship_name=data.get('relationshipName')
        )


@dataclass
class QueryPage:
    """一页 SOQL 查询结果"""
    records: List[Dict[str, Any]]
    total_size: int
    done: bool
    next_records_url: Optional[str] = None


@dataclass
class ResultPage:
    """一页批量导出结果"""
    rows: List[Dict[str, str]]
    next_locator: Optional[str]
    record_count: int
    columns: List[str] = field(default_factory=list)
