"""
批量导出状态机测试
"""
import unittest
import json
from unittest.mock import Mock, patch

from salesforce_db_sync.core.bulk_export import BulkExport
from salesforce_db_sync.db.models import PendingBulkJob, SyncCursor
from salesforce_db_sync.db.state_store import SyncStateRepository
from salesforce_db_sync.errors import (
    BulkJobFailedError, BulkJobTimeoutError, TransientRemoteError, TransportError
)
from salesforce_db_sync.salesforce.base import SalesforceAPI
from salesforce_db_sync.salesforce.types import BulkJobState, ResultPage
from salesforce_db_sync.tests.fakes import MemoryStateStore


MAX_MODSTAMP = "2024-03-01T12:00:00.000Z"


def widget_rows(start, count, peak=None):
    rows = []
    for i in range(start, start + count):
        modstamp = f"2024-01-{(i % 28) + 1:02d}T08:00:00.000Z"
        if i == peak:
            modstamp = MAX_MODSTAMP
        rows.append({"Id": f"a00{i:012d}", "Name": f"Widget {i}", "SystemModstamp": modstamp})
    return rows


def two_pages():
    return [
        ResultPage(rows=widget_rows(0, 100, peak=42), next_locator="L1", record_count=100),
        ResultPage(rows=widget_rows(100, 37), next_locator=None, record_count=37),
    ]


class TestBulkExport(unittest.TestCase):
    """批量导出测试"""

    def setUp(self):
        self.salesforce = Mock(spec=SalesforceAPI)
        self.salesforce.submit_export.return_value = "750JOB"
        self.salesforce.poll_status.return_value = BulkJobState.JOB_COMPLETE
        self.store = MemoryStateStore()
        self.repository = SyncStateRepository(self.store)

        patcher = patch('salesforce_db_sync.core.bulk_export.time')
        self.time = patcher.start()
        self.time.monotonic.return_value = 0
        self.addCleanup(patcher.stop)

    def _export(self, **kwargs):
        return BulkExport(self.salesforce, self.repository, "Widget", **kwargs)

    def test_two_page_full_load(self):
        """测试两页导出后水位线为所有行的最大修改时间，并清除任务"""
        self.salesforce.fetch_result_page.side_effect = two_pages()
        export = self._export()

        pages = list(export.run("SELECT Id, Name, SystemModstamp FROM Widget"))

        self.assertEqual([p.record_count for p in pages], [100, 37])
        self.assertEqual(sum(len(p.rows) for p in pages), 137)
        self.assertEqual(export.total_records, 137)

        cursor = self.repository.load_cursor("Widget")
        self.assertEqual(cursor.last_modified_watermark, MAX_MODSTAMP)
        self.assertIsNone(cursor.pending_bulk_job)
        self.assertIsNone(export.job)

        self.salesforce.fetch_result_page.assert_any_call("750JOB", None)
        self.salesforce.fetch_result_page.assert_any_call("750JOB", "L1")

    def test_job_id_persisted_before_polling(self):
        """测试提交后立即保存任务 ID"""
        def poll(job_id):
            cursor = self.repository.load_cursor("Widget")
            self.assertEqual(cursor.pending_bulk_job.job_id, job_id)
            return BulkJobState.JOB_COMPLETE

        self.salesforce.poll_status.side_effect = poll
        export = self._export()
        export.submit("SELECT Id FROM Widget")
        export.wait()

        self.salesforce.poll_status.assert_called_once_with("750JOB")

    def test_locator_persisted_after_page_consumed(self):
        """测试每页处理完后才记录下一页的 locator"""
        self.salesforce.fetch_result_page.side_effect = two_pages()
        export = self._export()
        export.submit("SELECT Id FROM Widget")
        export.wait()

        pages = export.pages()
        first = next(pages)
        self.assertEqual(first.next_locator, "L1")
        self.assertIsNone(self.repository.load_cursor("Widget").pending_bulk_job.locator)

        next(pages)
        job = self.repository.load_cursor("Widget").pending_bulk_job
        self.assertEqual(job.locator, "L1")
        self.assertEqual(job.records_loaded, 100)
        self.assertEqual(job.max_modstamp, MAX_MODSTAMP)

    def test_resume_pending_job(self):
        """测试重启后继续使用已有任务和 locator"""
        self.repository.save_cursor("Widget", SyncCursor(pending_bulk_job=PendingBulkJob(
            job_id="750OLD", locator="L1", max_modstamp=MAX_MODSTAMP, records_loaded=100
        )))
        self.salesforce.fetch_result_page.side_effect = [two_pages()[1]]
        export = self._export()

        pages = list(export.run("SELECT Id FROM Widget"))

        self.salesforce.submit_export.assert_not_called()
        self.salesforce.fetch_result_page.assert_called_once_with("750OLD", "L1")
        self.assertEqual(len(pages), 1)
        self.assertEqual(export.total_records, 137)
        self.assertEqual(self.repository.load_cursor("Widget").last_modified_watermark, MAX_MODSTAMP)

    def test_rows_are_lowercased_with_sync_columns(self):
        self.salesforce.fetch_result_page.side_effect = two_pages()
        export = self._export()

        first = next(export.run("SELECT Id FROM Widget"))
        row = first.rows[0]

        self.assertEqual(list(row.keys())[:2], ["_sync_status", "_sync_message"])
        self.assertEqual(row["_sync_status"], "SYNCED")
        self.assertEqual(json.loads(row["_sync_message"]), {"command": "fullLoad", "jobId": "750JOB"})
        self.assertIn("systemmodstamp", row)
        self.assertNotIn("Id", row)

    def test_transient_status_error_is_retried(self):
        """测试状态暂不可查时继续轮询"""
        self.salesforce.poll_status.side_effect = [
            TransientRemoteError("not found"),
            BulkJobState.IN_PROGRESS,
            BulkJobState.JOB_COMPLETE,
        ]
        export = self._export(poll_interval=2)
        export.submit("SELECT Id FROM Widget")

        self.assertEqual(export.wait(), BulkJobState.JOB_COMPLETE)
        self.assertEqual(self.salesforce.poll_status.call_count, 3)
        self.assertEqual(self.time.sleep.call_count, 2)
        self.time.sleep.assert_called_with(2)

    def test_other_status_error_is_fatal(self):
        self.salesforce.poll_status.side_effect = TransportError("connection reset")
        export = self._export()
        export.submit("SELECT Id FROM Widget")

        with self.assertRaises(TransportError):
            export.wait()

        # 任务保留，下次继续
        self.assertEqual(self.repository.load_cursor("Widget").pending_bulk_job.job_id, "750JOB")

    def test_failed_job_clears_cursor(self):
        self.salesforce.poll_status.return_value = BulkJobState.FAILED
        export = self._export()
        export.submit("SELECT Id FROM Widget")

        with self.assertRaises(BulkJobFailedError):
            export.wait()

        cursor = self.repository.load_cursor("Widget")
        self.assertIsNone(cursor.pending_bulk_job)
        self.assertIsNone(cursor.last_modified_watermark)

    def test_timeout_fails_by_default(self):
        """测试超过最长等待时间时报错并保留任务"""
        self.salesforce.poll_status.return_value = BulkJobState.IN_PROGRESS
        self.time.monotonic.side_effect = [0, 10, 6000]
        export = self._export(max_wait=5400)
        export.submit("SELECT Id FROM Widget")

        with self.assertRaises(BulkJobTimeoutError):
            export.wait()

        self.assertEqual(self.repository.load_cursor("Widget").pending_bulk_job.job_id, "750JOB")

    def test_timeout_proceed(self):
        self.salesforce.poll_status.return_value = BulkJobState.IN_PROGRESS
        self.time.monotonic.side_effect = [0, 6000]
        export = self._export(max_wait=5400, timeout_action="proceed")
        export.submit("SELECT Id FROM Widget")

        self.assertEqual(export.wait(), BulkJobState.IN_PROGRESS)
        self.time.sleep.assert_not_called()

    def test_empty_export_uses_submission_time_as_watermark(self):
        """测试对象没有数据时以任务提交时间为水位线，不再重复全量导出"""
        self.salesforce.fetch_result_page.return_value = ResultPage(
            rows=[], next_locator=None, record_count=0
        )
        export = self._export()
        export.submit("SELECT Id FROM Widget")
        submitted_at = self.repository.load_cursor("Widget").pending_bulk_job.submitted_at
        export.wait()

        pages = list(export.pages())

        self.assertEqual(len(pages), 1)
        self.assertRegex(submitted_at, r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$')
        cursor = self.repository.load_cursor("Widget")
        self.assertTrue(cursor.full_load_complete)
        self.assertEqual(cursor.last_modified_watermark, submitted_at)
        self.assertIsNone(cursor.pending_bulk_job)

    def test_empty_export_without_submission_time(self):
        self.repository.save_cursor("Widget", SyncCursor(pending_bulk_job=PendingBulkJob(job_id="750OLD")))
        self.salesforce.fetch_result_page.return_value = ResultPage(
            rows=[], next_locator=None, record_count=0
        )

        list(self._export().run("SELECT Id FROM Widget"))

        cursor = self.repository.load_cursor("Widget")
        self.assertFalse(cursor.full_load_complete)
        self.assertIsNone(cursor.pending_bulk_job)

    def test_submission_time_kept_across_pages(self):
        self.salesforce.fetch_result_page.side_effect = two_pages()
        export = self._export()
        export.submit("SELECT Id FROM Widget")
        submitted_at = export.job.submitted_at
        export.wait()

        pages = export.pages()
        next(pages)
        next(pages)

        self.assertEqual(self.repository.load_cursor("Widget").pending_bulk_job.submitted_at, submitted_at)

    def test_wait_before_submit(self):
        with self.assertRaises(RuntimeError):
            self._export().wait()


if __name__ == '__main__':
    unittest.main()
