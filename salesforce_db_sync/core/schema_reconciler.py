"""
表结构同步

根据 Salesforce 对象的 describe 结果推导暂存表结构，并以只增不删的方式
应用到暂存库。
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from ..db.database import Database, index_name, sequence_name
from ..db.models import ColumnSpec, SourceField, TableSchema, REMOTE_ID, SYNC_STATUS
from ..errors import ConfigurationError
from ..salesforce.base import SalesforceAPI
from ..salesforce.types import ObjectFieldDescriptor
from .type_mapper import map_type


FORMULA_PATTERN = re.compile(r'^\s*(\w+)\.(\w+)\s*$')

# InnoDB 每表最多 64 个二级索引
MAX_TABLE_INDEXES = 60


@dataclass(frozen=True)
class PlainField:
    """普通字段，类型与读写能力取自字段本身"""
    object_name: str
    field: ObjectFieldDescriptor

    kind = "plain"

    @property
    def effective_type(self) -> str:
        return self.field.type

    @property
    def can_create(self) -> bool:
        return self.field.createable

    @property
    def can_update(self) -> bool:
        return self.field.updateable


@dataclass(frozen=True)
class ReferenceField:
    """关联字段，列中保存的是目标对象的 Id"""
    object_name: str
    field: ObjectFieldDescriptor
    target_object: str
    target_field: ObjectFieldDescriptor

    kind = "reference"

    @property
    def effective_type(self) -> str:
        return self.target_field.type

    @property
    def can_create(self) -> bool:
        return self.target_field.createable

    @property
    def can_update(self) -> bool:
        return self.target_field.updateable


@dataclass(frozen=True)
class CalculatedField:
    """公式字段 <关系>.<字段>，公式本身不可写"""
    object_name: str
    field: ObjectFieldDescriptor
    relationship_key: str
    target_object: str
    target_field: ObjectFieldDescriptor

    kind = "calculated"

    @property
    def effective_type(self) -> str:
        return self.target_field.type

    @property
    def can_create(self) -> bool:
        return False

    @property
    def can_update(self) -> bool:
        return False


FieldResolution = Union[PlainField, ReferenceField, CalculatedField]


class SchemaReconciler:
    """表结构推导与应用"""

    def __init__(self, salesforce: SalesforceAPI, database: Database,
                 field_exclusions: Optional[Dict[str, List[str]]] = None,
                 read_only_fields: Optional[Dict[str, List[str]]] = None,
                 watermark_field: str = "SystemModstamp",
                 max_indexes: int = MAX_TABLE_INDEXES):
        self.salesforce = salesforce
        self.db = database
        self.field_exclusions = field_exclusions or {}
        self.read_only_fields = read_only_fields or {}
        self.watermark_column = watermark_field.lower()
        self.max_indexes = max_indexes
        self._lookup_cache: Dict[str, Dict[str, ObjectFieldDescriptor]] = {}

    def clear_cache(self) -> None:
        """开始新一轮同步前清空 describe 缓存"""
        self._lookup_cache.clear()

    def _field_lookup(self, object_name: str) -> Dict[str, ObjectFieldDescriptor]:
        """按小写字段名索引的 describe 结果，同一轮内缓存"""
        if object_name not in self._lookup_cache:
            descriptors = self.salesforce.describe(object_name)
            self._lookup_cache[object_name] = {d.name.lower(): d for d in descriptors}
        return self._lookup_cache[object_name]

    def _relationship_target(self, object_name: str, relationship: str) -> str:
        """通过 relationshipName 找到关联对象名"""
        for descriptor in self._field_lookup(object_name).values():
            if (descriptor.relationship_name
                    and descriptor.relationship_name.lower() == relationship.lower()
                    and descriptor.reference_to):
                return descriptor.reference_to[0]
        return relationship.replace('__r', '')

    def resolve_field(self, object_name: str,
                      descriptor: ObjectFieldDescriptor) -> FieldResolution:
        """解析字段的实际类型与读写能力来源"""
        match = None
        if descriptor.calculated and descriptor.calculated_formula:
            match = FORMULA_PATTERN.match(descriptor.calculated_formula)

        if match:
            relationship, related_name = match.groups()
            target_object = self._relationship_target(object_name, relationship)
            target_field = self._field_lookup(target_object).get(related_name.lower())
            if target_field is None:
                logger.error(
                    f"Field {related_name} referenced by {object_name}.{descriptor.name} "
                    f"not found in {target_object}"
                )
                raise ConfigurationError(f"Field {related_name} not found in {target_object}")
            return CalculatedField(object_name, descriptor, relationship, target_object, target_field)

        if descriptor.type == 'reference' and descriptor.reference_to:
            target_object = descriptor.reference_to[0]
            target_field = self._field_lookup(target_object).get('id')
            if target_field is None:
                raise ConfigurationError(f"Field Id not found in {target_object}")
            return ReferenceField(object_name, descriptor, target_object, target_field)

        return PlainField(object_name, descriptor)

    def _build_column(self, resolution: FieldResolution) -> ColumnSpec:
        field = resolution.field
        object_name = resolution.object_name
        is_unique = field.unique or field.name.lower() == 'id'
        read_only = field.name.lower() in {
            n.lower() for n in self.read_only_fields.get(object_name, [])
        }

        source = SourceField(
            object_name=object_name,
            name=field.name,
            type=field.type,
            label=field.label,
            kind=resolution.kind,
            calculated_formula=field.calculated_formula,
            reference_to=list(field.reference_to),
            createable=field.createable,
            updateable=field.updateable
        )
        if not isinstance(resolution, PlainField):
            source.resolved_object = resolution.target_object
            source.resolved_field = resolution.target_field.name
        if isinstance(resolution, CalculatedField):
            source.relationship_key = resolution.relationship_key

        return ColumnSpec(
            name=field.name,
            column_type=map_type(resolution.effective_type),
            create_index=not is_unique and (field.filterable or field.sortable),
            create_unique_index=is_unique,
            is_remote_column=True,
            can_create=resolution.can_create and not read_only,
            can_update=resolution.can_update and not read_only,
            source=source
        )

    def reconcile(self, object_name: str, configured_field_names: List[str],
                  common_field_specs: List[Dict[str, Any]]) -> TableSchema:
        """
        推导对象的暂存表结构

        Args:
            object_name: Salesforce 对象名
            configured_field_names: 配置的字段名（大小写不敏感）
            common_field_specs: 所有对象共有的字段配置

        Returns:
            去重后的表结构

        Raises:
            ConfigurationError: 配置的字段在对象中不存在
        """
        excluded = {n.lower() for n in self.field_exclusions.get(object_name, [])}

        store_columns: List[ColumnSpec] = []
        remote_names: List[str] = []
        for spec in common_field_specs:
            if spec['name'].lower() in excluded:
                continue
            if spec.get('isSalesforceColumn'):
                remote_names.append(spec['name'])
            else:
                store_columns.append(
                    ColumnSpec.from_common_field(spec, map_type(spec.get('type', 'text')))
                )

        remote_names.extend(n for n in configured_field_names if n.lower() not in excluded)

        lookup = self._field_lookup(object_name)
        remote_columns: List[ColumnSpec] = []
        seen = set()
        for field_name in remote_names:
            key = field_name.lower()
            if key in seen:
                continue
            seen.add(key)

            descriptor = lookup.get(key)
            if descriptor is None:
                logger.error(f"Field {field_name} not found in {object_name}")
                raise ConfigurationError(f"Field {field_name} not found in {object_name}")

            remote_columns.append(self._build_column(self.resolve_field(object_name, descriptor)))

        schema = TableSchema(object_name=object_name, columns=store_columns + remote_columns)
        logger.info(f"Table columns for {object_name}: {schema.column_names}")
        return schema

    def apply_schema(self, schema: TableSchema) -> List[str]:
        """
        将表结构应用到暂存库，只新增不删除

        Returns:
            本次执行的 DDL 操作描述，结构已一致时为空
        """
        table = schema.table_name
        actions: List[str] = []

        for column in schema.columns:
            if column.default_sequence:
                name = sequence_name(table, column.name)
                if not self.db.sequence_exists(name):
                    self.db.create_sequence(name)
                    actions.append(f"create sequence {name}")

        if not self.db.table_exists(table):
            self.db.create_table(table, schema.columns)
            actions.append(f"create table {table}")
        else:
            existing = {row['name'].lower() for row in self.db.get_table_columns(table)}
            new_columns = [c for c in schema.columns if c.name not in existing]
            if new_columns:
                logger.info(f"New columns found for {table}: {[c.name for c in new_columns]}")
            for column in new_columns:
                self.db.add_column(table, column)
                actions.append(f"add column {table}.{column.name}")

        actions.extend(self._apply_indexes(schema))

        if actions:
            logger.info(f"Updated schema for {table}: {actions}")
        else:
            logger.info(f"No schema changes for {table}")
        return actions

    def _is_key_column(self, column: ColumnSpec) -> bool:
        """唯一键、Id、水位线与同步状态列的索引不受数量上限限制"""
        return (column.create_unique_index
                or column.name in (REMOTE_ID, SYNC_STATUS, self.watermark_column))

    def _apply_indexes(self, schema: TableSchema) -> List[str]:
        """按优先级建索引，普通列的索引总数不超过 max_indexes"""
        table = schema.table_name
        existing = set(self.db.get_index_names(table))
        index_count = len(existing - {'PRIMARY'})

        wanted = [c for c in schema.columns if c.create_unique_index or c.create_index]
        wanted.sort(key=lambda c: not self._is_key_column(c))

        actions: List[str] = []
        skipped: List[str] = []
        for column in wanted:
            name = index_name(table, column.name)
            if name in existing:
                continue
            if not self._is_key_column(column) and index_count >= self.max_indexes:
                skipped.append(column.name)
                continue
            self.db.create_index(table, column, unique=column.create_unique_index)
            index_count += 1
            actions.append(f"create {'unique ' if column.create_unique_index else ''}index {name}")

        if skipped:
            logger.warning(
                f"Index limit {self.max_indexes} reached for {table}, "
                f"columns left unindexed: {skipped}"
            )
        return actions
