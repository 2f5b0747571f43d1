"""
批量导出状态机

NOT_SUBMITTED -> QUEUED -> IN_PROGRESS -> JOB_COMPLETE | FAILED

任务 ID 在提交后立即写入同步游标，进程重启后继续轮询同一任务；每页数据
写入完成后记录下一页的 locator，重启后从该页继续。
"""
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger

from ..db.models import PendingBulkJob, SyncCursor, SyncStatus, SYNC_MESSAGE, SYNC_STATUS
from ..db.state_store import SyncStateRepository
from ..errors import BulkJobFailedError, BulkJobTimeoutError, TransientRemoteError
from ..salesforce.base import SalesforceAPI
from ..salesforce.types import BulkJobState
from .record_mapper import later_timestamp, lower_keys


# 本地时钟与 Salesforce 之间的误差余量
CLOCK_SKEW_MARGIN = timedelta(minutes=5)
SOQL_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass
class ExportPage:
    """一页导出结果，行已转小写并附加同步列"""
    job_id: str
    number: int
    rows: List[Dict[str, Any]] = field(default_factory=list)
    record_count: int = 0
    next_locator: Optional[str] = None


class BulkExport:
    """单个对象的一次全量导出"""

    def __init__(self, salesforce: SalesforceAPI, repository: SyncStateRepository,
                 object_name: str, watermark_field: str = "SystemModstamp",
                 poll_interval: float = 2, max_wait: float = 5400,
                 timeout_action: str = "fail"):
        self.salesforce = salesforce
        self.repository = repository
        self.object_name = object_name
        self.watermark_column = watermark_field.lower()
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.timeout_action = timeout_action

        self.state = BulkJobState.NOT_SUBMITTED
        self.job: Optional[PendingBulkJob] = None
        self.total_records = 0

    def submit(self, soql: str) -> PendingBulkJob:
        """提交导出任务；已有未完成任务时继续使用"""
        cursor = self.repository.load_cursor(self.object_name)
        if cursor.pending_bulk_job:
            self.job = cursor.pending_bulk_job
            self.state = BulkJobState.QUEUED
            logger.info(
                f"Resuming bulk export for {self.object_name}: job {self.job.job_id}, "
                f"locator {self.job.locator}"
            )
            return self.job

        logger.info(f"Creating bulk export job for {self.object_name}: {soql}")
        submitted_at = datetime.now(timezone.utc) - CLOCK_SKEW_MARGIN
        job_id = self.salesforce.submit_export(self.object_name, soql)
        self.job = PendingBulkJob(job_id=job_id, submitted_at=submitted_at.strftime(SOQL_DATETIME_FORMAT))
        self.state = BulkJobState.QUEUED
        # 先落盘再轮询
        self.repository.save_cursor(self.object_name, cursor.with_pending_job(self.job))
        return self.job

    def wait(self) -> BulkJobState:
        """轮询直到任务完成、失败或超时"""
        if self.job is None:
            raise RuntimeError("Bulk export has not been submitted")

        job_id = self.job.job_id
        started = time.monotonic()

        while True:
            try:
                self.state = self.salesforce.poll_status(job_id)
            except TransientRemoteError as e:
                logger.info(f"Bulk job {job_id} status not ready, try again: {e}")
            else:
                logger.debug(f"Bulk job {job_id} state: {self.state.name}")
                if self.state == BulkJobState.JOB_COMPLETE:
                    logger.info(f"Bulk job {job_id} completed")
                    return self.state
                if self.state == BulkJobState.FAILED:
                    # 失败的任务无法继续，下次重新提交
                    self.repository.save_cursor(self.object_name, SyncCursor())
                    raise BulkJobFailedError(f"Bulk job {job_id} for {self.object_name} failed")

            elapsed = time.monotonic() - started
            if elapsed > self.max_wait:
                if self.timeout_action == 'proceed':
                    logger.warning(
                        f"Bulk job {job_id} still {self.state.name} after {elapsed:.0f}s, "
                        f"reading available results"
                    )
                    return self.state
                raise BulkJobTimeoutError(
                    f"Bulk job {job_id} for {self.object_name} not complete after {elapsed:.0f}s"
                )

            time.sleep(self.poll_interval)

    def _convert_row(self, row: Dict[str, Any], message: str) -> Dict[str, Any]:
        converted = {
            SYNC_STATUS: SyncStatus.SYNCED.value,
            SYNC_MESSAGE: message,
        }
        converted.update(lower_keys(row))
        return converted

    def pages(self) -> Iterator[ExportPage]:
        """
        逐页读取导出结果

        调用方处理完一页后才会记录下一页的 locator；最后一页处理完后，
        游标一次性替换为水位线。
        """
        if self.job is None:
            raise RuntimeError("Bulk export has not been submitted")

        job = self.job
        message = json.dumps({'command': 'fullLoad', 'jobId': job.job_id})
        locator = job.locator
        max_modstamp = job.max_modstamp
        loaded = job.records_loaded
        number = 0

        while True:
            result = self.salesforce.fetch_result_page(job.job_id, locator)
            number += 1

            rows = []
            for raw in result.rows:
                row = self._convert_row(raw, message)
                max_modstamp = later_timestamp(max_modstamp, row.get(self.watermark_column))
                rows.append(row)

            loaded += result.record_count
            logger.info(
                f"Got bulk results page {number} for {self.object_name}: "
                f"{result.record_count} records, {loaded} total"
            )

            yield ExportPage(
                job_id=job.job_id,
                number=number,
                rows=rows,
                record_count=result.record_count,
                next_locator=result.next_locator
            )

            if result.next_locator is None:
                break

            self.job = PendingBulkJob(
                job_id=job.job_id,
                locator=result.next_locator,
                max_modstamp=max_modstamp,
                records_loaded=loaded,
                submitted_at=job.submitted_at
            )
            self.repository.save_cursor(self.object_name, SyncCursor(pending_bulk_job=self.job))
            locator = result.next_locator

        self.total_records = loaded
        # 没有数据时以提交时间为水位线，之后的变更走增量同步
        watermark = max_modstamp or job.submitted_at
        if watermark:
            self.repository.save_cursor(self.object_name, SyncCursor(last_modified_watermark=watermark))
        else:
            self.repository.save_cursor(self.object_name, SyncCursor())
            logger.warning(f"Bulk export for {self.object_name} returned no rows, full load will run again")
        self.job = None
        logger.info(f"Full load complete for {self.object_name}: {loaded} records, watermark {watermark}")

    def run(self, soql: str) -> Iterator[ExportPage]:
        """提交、等待并逐页返回结果"""
        self.submit(soql)
        self.wait()
        yield from self.pages()
