"""
写回同步测试
"""
import unittest
import json
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import Mock, call

from salesforce_db_sync.config.config import DEFAULT_COMMON_FIELDS
from salesforce_db_sync.core.outbound import OutboundSyncEngine
from salesforce_db_sync.core.record_mapper import (
    RecordMapper, later_timestamp, lower_keys, parse_timestamp
)
from salesforce_db_sync.core.schema_reconciler import SchemaReconciler
from salesforce_db_sync.db.models import ColumnSpec, SourceField, TableSchema
from salesforce_db_sync.db.state_store import SyncStateRepository
from salesforce_db_sync.errors import ConfigurationError, RemoteRejection, TransportError
from salesforce_db_sync.salesforce.base import SalesforceAPI
from salesforce_db_sync.salesforce.types import ObjectFieldDescriptor
from salesforce_db_sync.tests.fakes import FakeDatabase, MemoryStateStore


WIDGET_FIELDS = [
    ObjectFieldDescriptor(name="Id", type="id"),
    ObjectFieldDescriptor(name="SystemModstamp", type="datetime"),
    ObjectFieldDescriptor(name="Name", type="string", createable=True, updateable=True),
    ObjectFieldDescriptor(name="Price", type="currency", createable=True, updateable=True),
    ObjectFieldDescriptor(name="Serial__c", type="string", createable=True, updateable=False),
    ObjectFieldDescriptor(name="Active__c", type="boolean", createable=True, updateable=True),
]


class TestOutboundSync(unittest.TestCase):
    """写回同步测试"""

    def setUp(self):
        self.salesforce = Mock(spec=SalesforceAPI)
        self.salesforce.describe.return_value = WIDGET_FIELDS
        self.db = FakeDatabase()
        self.repository = SyncStateRepository(MemoryStateStore())

        common = [f for f in DEFAULT_COMMON_FIELDS if f["name"] not in ("IsDeleted", "CreatedDate")]
        reconciler = SchemaReconciler(self.salesforce, self.db)
        schema = reconciler.reconcile(
            "Widget", ["Name", "Price", "Serial__c", "Active__c"], common
        )
        reconciler.apply_schema(schema)
        self.repository.save_schema(schema)

        self.engine = OutboundSyncEngine(self.salesforce, self.db, self.repository)

    def add_row(self, sync_id, status="PENDING", **values):
        row = {"_sync_id": sync_id, "_sync_status": status, "_sync_message": None, "id": None}
        row.update(values)
        self.db.tables["widget"].append(row)
        return row

    def row(self, sync_id):
        return [r for r in self.db.tables["widget"] if r["_sync_id"] == sync_id][0]

    def test_create_success(self):
        """测试创建成功后记录远端 ID 并标记为 SYNCED"""
        self.add_row(1, name="Sprocket", price=Decimal("9.50"), serial__c="S-1")
        self.salesforce.create_record.return_value = "a01000000000001"

        result = self.engine.sync_object("Widget")

        self.salesforce.create_record.assert_called_once_with(
            "Widget", {"Name": "Sprocket", "Price": 9.5, "Serial__c": "S-1"}
        )
        row = self.row(1)
        self.assertEqual(row["_sync_status"], "SYNCED")
        self.assertEqual(row["id"], "a01000000000001")
        self.assertEqual(json.loads(row["_sync_message"]),
                         {"command": "create", "id": "a01000000000001"})
        self.assertEqual(result.created, 1)

    def test_failure_does_not_abort_batch(self):
        """测试单行失败记为 ERROR 并继续处理下一行"""
        self.add_row(1, name="Bad")
        self.add_row(2, name="Good")
        self.salesforce.create_record.side_effect = [
            RemoteRejection("Required fields are missing: [Price]",
                            error_code="REQUIRED_FIELD_MISSING", status_code=400),
            "a01000000000002",
        ]

        result = self.engine.sync_object("Widget")

        failed = self.row(1)
        self.assertEqual(failed["_sync_status"], "ERROR")
        self.assertEqual(failed["_sync_message"],
                         "REQUIRED_FIELD_MISSING: Required fields are missing: [Price]")
        self.assertIsNone(failed["id"])
        self.assertEqual(self.row(2)["_sync_status"], "SYNCED")
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.created, 1)

    def test_update_uses_updateable_fields(self):
        """测试已有 ID 的行只写回可更新字段"""
        self.add_row(1, id="a01000000000003", name="Renamed", serial__c="S-9", active__c=1)

        result = self.engine.sync_object("Widget")

        self.salesforce.update_record.assert_called_once_with(
            "Widget", "a01000000000003", {"Name": "Renamed", "Active__c": "true"}
        )
        self.salesforce.create_record.assert_not_called()
        self.assertEqual(self.row(1)["_sync_status"], "SYNCED")
        self.assertEqual(self.row(1)["id"], "a01000000000003")
        self.assertEqual(result.updated, 1)

    def test_rows_processed_in_sync_id_order(self):
        self.add_row(5, id="a05", name="Five")
        self.add_row(2, id="a02", name="Two")
        self.add_row(3, status="SYNCED", id="a03", name="Done")

        self.engine.sync_object("Widget")

        self.assertEqual(self.salesforce.update_record.call_args_list, [
            call("Widget", "a02", {"Name": "Two"}),
            call("Widget", "a05", {"Name": "Five"}),
        ])

    def test_empty_projection_is_configuration_error(self):
        """测试没有可写字段时视为配置错误"""
        self.add_row(1, id="a01000000000004", serial__c="S-1")

        with self.assertRaises(ConfigurationError):
            self.engine.sync_object("Widget")

        self.salesforce.update_record.assert_not_called()

    def test_transport_error_propagates(self):
        self.add_row(1, name="Sprocket")
        self.salesforce.create_record.side_effect = TransportError("timed out")

        with self.assertRaises(TransportError):
            self.engine.sync_object("Widget")

        self.assertEqual(self.row(1)["_sync_status"], "PENDING")

    def test_missing_schema(self):
        with self.assertRaises(ConfigurationError):
            self.engine.sync_object("Gadget")


class TestRecordMapper(unittest.TestCase):
    """记录转换测试"""

    def setUp(self):
        self.schema = TableSchema("Contact", [
            ColumnSpec("_sync_id", "bigint"),
            ColumnSpec("Id", "varchar(20)", is_remote_column=True,
                       source=SourceField("Contact", "Id", "id")),
            ColumnSpec("LastName", "text", is_remote_column=True, can_create=True,
                       source=SourceField("Contact", "LastName", "string")),
            ColumnSpec("DoNotCall", "boolean", is_remote_column=True, can_create=True,
                       source=SourceField("Contact", "DoNotCall", "boolean")),
            ColumnSpec("Birthdate", "date", is_remote_column=True, can_create=True,
                       source=SourceField("Contact", "Birthdate", "date")),
            ColumnSpec("Account_Name__c", "text", is_remote_column=True, can_create=True,
                       source=SourceField("Contact", "Account_Name__c", "string",
                                          kind="calculated", resolved_object="Account",
                                          resolved_field="Name", relationship_key="Account")),
        ])
        self.mapper = RecordMapper(self.schema)

    def test_payload_nests_related_fields(self):
        """测试关联对象字段嵌套在关系名下，布尔值转为字符串"""
        row = {
            "_sync_id": 1, "id": None, "lastname": "Smith", "donotcall": 0,
            "birthdate": date(1990, 5, 17), "account_name__c": "Acme"
        }

        payload = self.mapper.to_remote_payload(row, self.schema.createable_columns)

        self.assertEqual(payload, {
            "LastName": "Smith",
            "DoNotCall": "false",
            "Birthdate": "1990-05-17",
            "Account": {"Name": "Acme"},
        })

    def test_payload_skips_none_and_unlisted(self):
        row = {"_sync_id": 1, "id": "003X", "lastname": None, "donotcall": True}

        payload = self.mapper.to_remote_payload(row, self.schema.createable_columns)

        self.assertEqual(payload, {"DoNotCall": "true"})

    def test_to_staging_keeps_remote_columns(self):
        record = {"attributes": {"type": "Contact"}, "Id": "003X", "LastName": "Smith",
                  "DoNotCall": "true", "Birthdate": "1990-05-17", "Extra": "ignored"}

        staged = self.mapper.to_staging(record)

        self.assertEqual(staged, {
            "id": "003X", "lastname": "Smith", "donotcall": True,
            "birthdate": date(1990, 5, 17), "account_name__c": None
        })

    def test_parse_timestamp_formats(self):
        expected = datetime(2024, 1, 2, 3, 4, 5)
        self.assertEqual(parse_timestamp("2024-01-02T03:04:05.000Z"), expected)
        self.assertEqual(parse_timestamp("2024-01-02T03:04:05.000+0000"), expected)
        self.assertEqual(parse_timestamp("2024-01-02T05:04:05.000+02:00"), expected)
        self.assertIsNone(parse_timestamp(""))

    def test_later_timestamp(self):
        self.assertEqual(later_timestamp(None, "2024-01-01T00:00:00.000Z"), "2024-01-01T00:00:00.000Z")
        self.assertEqual(
            later_timestamp("2024-01-02T00:00:00.000+0000", "2024-01-01T23:00:00.000Z"),
            "2024-01-02T00:00:00.000+0000"
        )
        self.assertEqual(later_timestamp("2024-01-02T00:00:00.000Z", None), "2024-01-02T00:00:00.000Z")

    def test_lower_keys_drops_attributes(self):
        self.assertEqual(lower_keys({"attributes": {}, "Name": "x"}), {"name": "x"})


if __name__ == '__main__':
    unittest.main()
