"""
暂存库到 Salesforce 的同步
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger

from ..db.database import Database
from ..db.models import (
    ColumnSpec, SyncStatus, TableSchema,
    REMOTE_ID, SYNC_ID, SYNC_MESSAGE, SYNC_STATUS
)
from ..db.state_store import SyncStateRepository
from ..errors import ConfigurationError, RemoteRejection
from ..salesforce.base import SalesforceAPI
from .record_mapper import RecordMapper


@dataclass
class OutboundResult:
    """单个对象的写回结果"""
    object_name: str
    created: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.failed


class OutboundSyncEngine:
    """按顺序把 PENDING 行写回 Salesforce"""

    def __init__(self, salesforce: SalesforceAPI, database: Database,
                 repository: SyncStateRepository):
        self.salesforce = salesforce
        self.db = database
        self.repository = repository

    def sync_object(self, object_name: str) -> OutboundResult:
        schema = self.repository.load_schema(object_name)
        if schema is None:
            raise ConfigurationError(f"Table schema for {object_name} has not been synced")
        if schema.get_column(SYNC_ID) is None:
            raise ConfigurationError(f"Column {SYNC_ID} missing from {object_name} schema")

        table = schema.table_name
        mapper = RecordMapper(schema)
        createable = schema.createable_columns
        updateable = schema.updateable_columns

        rows = self.db.select(
            table,
            where={SYNC_STATUS: SyncStatus.PENDING.value},
            order_by=SYNC_ID
        )
        logger.info(f"Found {len(rows)} pending rows in {table}")

        result = OutboundResult(object_name)
        for row in rows:
            remote_id = row.get(REMOTE_ID)
            if remote_id:
                self._push_row(schema, mapper, row, updateable, result, remote_id)
            else:
                self._push_row(schema, mapper, row, createable, result)

        logger.info(
            f"Outbound sync for {object_name}: created {result.created}, "
            f"updated {result.updated}, failed {result.failed}"
        )
        return result

    def _push_row(self, schema: TableSchema, mapper: RecordMapper, row: Dict[str, Any],
                  columns: List[ColumnSpec], result: OutboundResult,
                  remote_id: Optional[str] = None) -> None:
        object_name = schema.object_name
        action = 'update' if remote_id else 'create'

        payload = mapper.to_remote_payload(row, columns)
        if not payload:
            raise ConfigurationError(
                f"No {action}able field for {object_name} row {row.get(SYNC_ID)}"
            )

        try:
            if remote_id:
                self.salesforce.update_record(object_name, remote_id, payload)
            else:
                remote_id = self.salesforce.create_record(object_name, payload)
        except RemoteRejection as e:
            logger.warning(f"Failed to {action} {object_name} row {row.get(SYNC_ID)}: {e}")
            self._mark(schema, row, {
                SYNC_STATUS: SyncStatus.ERROR.value,
                SYNC_MESSAGE: str(e)
            })
            result.failed += 1
            return

        data = {SYNC_STATUS: SyncStatus.SYNCED.value}
        if schema.get_column(SYNC_MESSAGE):
            data[SYNC_MESSAGE] = json.dumps({'command': action, 'id': remote_id})
        if action == 'create':
            data[REMOTE_ID] = remote_id
            result.created += 1
        else:
            result.updated += 1

        self._mark(schema, row, data)
        logger.debug(f"{action.capitalize()}d {object_name} {remote_id}")

    def _mark(self, schema: TableSchema, row: Dict[str, Any], data: Dict[str, Any]) -> None:
        """按本地主键更新同步状态，写完再处理下一行"""
        if SYNC_MESSAGE in data and not schema.get_column(SYNC_MESSAGE):
            data = {k: v for k, v in data.items() if k != SYNC_MESSAGE}
        self.db.update(schema.table_name, data, {SYNC_ID: row[SYNC_ID]})
