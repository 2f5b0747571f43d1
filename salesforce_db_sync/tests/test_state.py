"""
状态存储与配置测试
"""
import unittest
import json
import os
import tempfile
from unittest.mock import Mock

import redis

from salesforce_db_sync.config.config import Config
from salesforce_db_sync.db.database import Database
from salesforce_db_sync.db.models import ColumnSpec, PendingBulkJob, SyncCursor, TableSchema
from salesforce_db_sync.db.state_store import (
    CONFIG_TABLE, DatabaseStateStore, RedisStateStore, SyncStateRepository
)
from salesforce_db_sync.errors import ConfigurationError
from salesforce_db_sync.tests.fakes import MemoryStateStore


class TestSyncCursor(unittest.TestCase):
    """同步游标测试"""

    def test_watermark_and_job_are_exclusive(self):
        with self.assertRaises(ValueError):
            SyncCursor(last_modified_watermark="2024-01-01T00:00:00Z",
                       pending_bulk_job=PendingBulkJob(job_id="750A"))

    def test_with_pending_job_clears_watermark(self):
        cursor = SyncCursor().with_pending_job(PendingBulkJob(job_id="750A"))

        self.assertFalse(cursor.full_load_complete)
        self.assertEqual(cursor.pending_bulk_job.job_id, "750A")
        self.assertFalse(cursor.pending_bulk_job.has_loaded_pages)

    def test_round_trip(self):
        cursor = SyncCursor(pending_bulk_job=PendingBulkJob(
            job_id="750A", locator="L2", max_modstamp="2024-01-01T00:00:00Z", records_loaded=2000
        ))

        self.assertEqual(SyncCursor.from_dict(json.loads(json.dumps(cursor.to_dict()))), cursor)


class TestSyncStateRepository(unittest.TestCase):
    """游标与表结构持久化测试"""

    def setUp(self):
        self.store = MemoryStateStore()
        self.repository = SyncStateRepository(self.store)

    def test_missing_cursor_means_full_load(self):
        cursor = self.repository.load_cursor("Account")

        self.assertIsNone(cursor.last_modified_watermark)
        self.assertIsNone(cursor.pending_bulk_job)

    def test_keys_are_namespaced_by_object(self):
        self.repository.save_cursor("Account", SyncCursor(last_modified_watermark="W"))
        self.repository.save_schema(TableSchema("Account", [ColumnSpec("Name", "text")]))

        self.assertIn("Account-sync-cursor", self.store.data)
        self.assertIn("Account-schema", self.store.data)

    def test_schema_round_trip(self):
        schema = TableSchema("Account", [
            ColumnSpec("_sync_id", "bigint", default_sequence=True, not_null=True),
            ColumnSpec("Name", "text", is_remote_column=True, can_create=True),
        ])
        self.repository.save_schema(schema)

        loaded = self.repository.load_schema("Account")

        self.assertEqual(loaded.column_names, ["_sync_id", "name"])
        self.assertTrue(loaded.get_column("_sync_id").default_sequence)
        self.assertEqual([c.name for c in loaded.createable_columns], ["name"])
        self.assertIsNone(self.repository.load_schema("Contact"))

    def test_reset_cursor(self):
        self.repository.save_cursor("Account", SyncCursor(last_modified_watermark="W"))
        self.repository.reset_cursor("Account")

        self.assertFalse(self.repository.load_cursor("Account").full_load_complete)


class TestStateStores(unittest.TestCase):
    """状态存储后端测试"""

    def test_database_store(self):
        db = Mock(spec=Database)
        db.select.return_value = [{"value": "{}"}]
        store = DatabaseStateStore(db)

        self.assertEqual(store.get("Account-schema"), "{}")
        db.select.assert_called_once_with(CONFIG_TABLE, ["value"], {"key": "Account-schema"})

        store.set("Account-schema", "{\"a\": 1}")
        db.upsert.assert_called_once_with(
            CONFIG_TABLE, {"key": "Account-schema", "value": "{\"a\": 1}"}, ["key"]
        )

        db.select.return_value = []
        self.assertIsNone(store.get("missing"))

    def test_database_store_ensure_table(self):
        db = Mock(spec=Database)
        DatabaseStateStore(db).ensure_table()

        db.create_sequence.assert_called_once_with("_config_id_seq")
        db.create_table.assert_called_once()
        self.assertEqual(db.create_index.call_args.args[1].name, "key")

    def test_redis_store(self):
        client = Mock(spec=redis.Redis)
        client.get.return_value = b"value"
        store = RedisStateStore(client, key_prefix="sf:")

        self.assertEqual(store.get("Account-sync-cursor"), "value")
        client.get.assert_called_once_with("sf:Account-sync-cursor")

        store.set("Account-sync-cursor", "x")
        client.set.assert_called_once_with("sf:Account-sync-cursor", "x")

        store.delete("Account-sync-cursor")
        client.delete.assert_called_once_with("sf:Account-sync-cursor")


class TestConfig(unittest.TestCase):
    """配置测试"""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = os.path.join(self.tmpdir.name, "config.json")

    def test_default_config_created(self):
        config = Config(self.path)

        self.assertTrue(os.path.exists(self.path))
        self.assertTrue(config.validate())
        self.assertEqual(config.sync.get_object_fields("Account"), ["Name", "Industry", "OwnerId"])
        self.assertEqual(config.sync.bulk_timeout_action, "fail")
        self.assertEqual(config.get("database.port"), 3306)
        self.assertEqual(config.get("database.missing", "x"), "x")

    def test_set_reparses(self):
        config = Config(self.path)
        config.set("sync.objects", {"Widget": {"fields": ["Name"]}})

        self.assertEqual(list(config.sync.objects.keys()), ["Widget"])
        self.assertEqual(config.sync.get_object_fields("Gadget"), [])

    def test_invalid_timeout_action(self):
        config = Config(self.path)
        config.set("sync.bulk_timeout_action", "ignore")

        with self.assertRaises(ConfigurationError):
            config.validate()

    def test_unknown_option(self):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"database": {"host": "localhost", "colour": "blue"}}, f)

        with self.assertRaises(ConfigurationError):
            Config(self.path)

    def test_missing_objects(self):
        config = Config(self.path)
        config.set("sync.objects", {})

        with self.assertRaises(ConfigurationError):
            config.validate()

    def test_save_round_trip(self):
        config = Config(self.path)
        config.sync.poll_interval = 60
        config.save()

        self.assertEqual(Config(self.path).sync.poll_interval, 60)


if __name__ == '__main__':
    unittest.main()
