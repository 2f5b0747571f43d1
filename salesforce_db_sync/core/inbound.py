"""
Salesforce 到暂存库的同步
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from ..config.config import SyncConfig
from ..db.database import Database
from ..db.models import (
    SyncCursor, SyncStatus, TableSchema,
    REMOTE_ID, SYNC_MESSAGE, SYNC_STATUS
)
from ..db.state_store import SyncStateRepository
from ..errors import ConfigurationError
from ..salesforce.base import SalesforceAPI
from .bulk_export import BulkExport
from .record_mapper import RecordMapper, later_timestamp, lower_keys


@dataclass
class InboundResult:
    """单个对象的拉取结果"""
    object_name: str
    mode: str  # skipped | full_load | incremental
    records: int = 0
    pages: int = 0
    watermark: Optional[str] = None


class InboundSyncEngine:
    """全量导出或按水位线增量拉取，逐条幂等写入暂存表"""

    def __init__(self, salesforce: SalesforceAPI, database: Database,
                 repository: SyncStateRepository, config: SyncConfig):
        self.salesforce = salesforce
        self.db = database
        self.repository = repository
        self.config = config

    def _load_schema(self, object_name: str) -> TableSchema:
        schema = self.repository.load_schema(object_name)
        if schema is None:
            raise ConfigurationError(f"Table schema for {object_name} has not been synced")

        watermark_column = self.config.watermark_field.lower()
        for required in (REMOTE_ID, SYNC_STATUS, watermark_column):
            if schema.get_column(required) is None:
                raise ConfigurationError(f"Column {required} missing from {object_name} schema")
        return schema

    def _select_clause(self, object_name: str, schema: TableSchema) -> str:
        fields = [c.source.name if c.source else c.name for c in schema.remote_columns]
        return f"SELECT {', '.join(fields)} FROM {object_name}"

    def sync_object(self, object_name: str) -> InboundResult:
        """同步单个对象"""
        if not self.config.get_object_fields(object_name):
            logger.info(f"No fields configured for object {object_name}")
            return InboundResult(object_name, 'skipped')

        schema = self._load_schema(object_name)
        cursor = self.repository.load_cursor(object_name)

        if cursor.full_load_complete:
            return self._incremental(object_name, schema, cursor)
        return self._full_load(object_name, schema)

    def _full_load(self, object_name: str, schema: TableSchema) -> InboundResult:
        """通过批量导出全量加载"""
        logger.info(f"Starting full load for {object_name}")
        table = schema.table_name
        mapper = RecordMapper(schema)

        export = BulkExport(
            self.salesforce, self.repository, object_name,
            watermark_field=self.config.watermark_field,
            poll_interval=self.config.bulk_poll_interval,
            max_wait=self.config.bulk_max_wait,
            timeout_action=self.config.bulk_timeout_action
        )
        export.submit(self._select_clause(object_name, schema))
        export.wait()

        # 从中途的 locator 继续时保留已写入的数据
        if not export.job.has_loaded_pages:
            self.db.truncate(table)

        meta_columns = [c for c in (SYNC_STATUS, SYNC_MESSAGE) if schema.get_column(c)]
        remote_columns = schema.remote_columns
        columns = meta_columns + [c.name for c in remote_columns]

        result = InboundResult(object_name, 'full_load')
        for page in export.pages():
            values = (
                [row.get(c) for c in meta_columns]
                + [mapper.to_column_value(c, row.get(c.name)) for c in remote_columns]
                for row in page.rows
            )
            self.db.bulk_load(
                table, columns, values,
                batch_size=self.config.bulk_load_batch_size,
                unique_keys=[REMOTE_ID]
            )
            result.pages += 1
            result.records += len(page.rows)

        result.watermark = self.repository.load_cursor(object_name).last_modified_watermark
        return result

    def _incremental(self, object_name: str, schema: TableSchema,
                     cursor: SyncCursor) -> InboundResult:
        """拉取修改时间晚于水位线的记录，按修改时间升序"""
        watermark = cursor.last_modified_watermark
        watermark_field = self.config.watermark_field
        watermark_column = watermark_field.lower()
        table = schema.table_name
        mapper = RecordMapper(schema)
        message = json.dumps({'command': 'incrementalUpdate'})

        soql = (
            f"{self._select_clause(object_name, schema)} "
            f"WHERE {watermark_field} > {watermark} "
            f"ORDER BY {watermark_field} ASC"
        )
        logger.info(f"Querying Salesforce: {soql}")

        result = InboundResult(object_name, 'incremental', watermark=watermark)
        for page in self.salesforce.query(soql):
            page_watermark = watermark
            for record in page.records:
                data: Dict[str, Any] = {SYNC_STATUS: SyncStatus.SYNCED.value}
                if schema.get_column(SYNC_MESSAGE):
                    data[SYNC_MESSAGE] = message
                data.update(mapper.to_staging(record))
                self.db.upsert(table, data, [REMOTE_ID])
                page_watermark = later_timestamp(
                    page_watermark, lower_keys(record).get(watermark_column)
                )

            result.pages += 1
            result.records += len(page.records)

            # 每页提交一次水位线
            if page_watermark != watermark:
                watermark = page_watermark
                self.repository.save_cursor(object_name, SyncCursor(last_modified_watermark=watermark))
                logger.debug(f"Advanced watermark for {object_name} to {watermark}")

        result.watermark = watermark
        logger.info(
            f"Incremental update for {object_name}: {result.records} records, watermark {watermark}"
        )
        return result
