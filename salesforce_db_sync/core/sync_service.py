"""
同步服务主类
"""
import time
import threading
from dataclasses import asdict, is_dataclass
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
from loguru import logger
import redis

from ..config.config import Config
from ..db.database import Database
from ..db.state_store import (
    DatabaseStateStore, RedisStateStore, StateStore, SyncStateRepository
)
from ..errors import ConfigurationError
from ..monitor.metrics import MetricsCollector
from ..salesforce.base import SalesforceAPI
from ..salesforce.client import SalesforceClient
from .inbound import InboundSyncEngine
from .outbound import OutboundSyncEngine
from .schema_reconciler import SchemaReconciler


class SyncService:
    """Salesforce 与暂存库之间的同步服务"""

    def __init__(self, config: Config,
                 salesforce: Optional[SalesforceAPI] = None,
                 database: Optional[Database] = None,
                 state_store: Optional[StateStore] = None):
        self.config = config
        self.running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._init_components(salesforce, database, state_store)

        self.stats = {
            'cycles': 0,
            'last_cycle': None,
            'start_time': None
        }

    def _init_components(self, salesforce: Optional[SalesforceAPI],
                         database: Optional[Database],
                         state_store: Optional[StateStore]) -> None:
        """初始化组件"""
        self.config.validate()

        self.salesforce = salesforce or SalesforceClient(self.config.salesforce)
        self.database = database or Database(self.config.database)
        self.state_store = state_store or self._create_state_store()
        self.repository = SyncStateRepository(self.state_store)

        sync = self.config.sync
        self.reconciler = SchemaReconciler(
            self.salesforce,
            self.database,
            field_exclusions=sync.field_exclusions,
            read_only_fields=sync.read_only_fields,
            watermark_field=sync.watermark_field
        )
        self.inbound = InboundSyncEngine(self.salesforce, self.database, self.repository, sync)
        self.outbound = OutboundSyncEngine(self.salesforce, self.database, self.repository)

        if self.config.monitor.enable_metrics:
            self.metrics = MetricsCollector(self.config.monitor)
        else:
            self.metrics = None

        logger.info("All components initialized successfully")

    def _create_state_store(self) -> StateStore:
        """按配置创建状态存储"""
        state = self.config.state
        if state.backend == 'redis':
            client = redis.Redis(
                host=state.redis_host,
                port=state.redis_port,
                db=state.redis_db,
                password=state.redis_password,
                decode_responses=True
            )
            client.ping()
            logger.info("Redis connected successfully")
            return RedisStateStore(client, state.key_prefix)

        store = DatabaseStateStore(self.database)
        store.ensure_table()
        return store

    @property
    def object_names(self) -> List[str]:
        return list(self.config.sync.objects.keys())

    def test_connections(self) -> bool:
        """测试连接"""
        if not self.salesforce.test_connection():
            logger.error("Salesforce connection test failed")
            return False

        if not self.database.test_connection():
            logger.error("Database connection test failed")
            return False

        logger.info("All connections tested successfully")
        return True

    def sync_table_schema(self, object_name: str) -> List[str]:
        """推导并应用对象的表结构，成功后保存供写回使用"""
        schema = self.reconciler.reconcile(
            object_name,
            self.config.sync.get_object_fields(object_name),
            self.config.sync.common_fields
        )
        actions = self.reconciler.apply_schema(schema)
        self.repository.save_schema(schema)
        return actions

    def _run_object(self, direction: str, object_name: str,
                    action: Callable[[str], Any]) -> Optional[Any]:
        """执行单个对象的一个阶段，失败不影响其他对象"""
        started = time.monotonic()
        try:
            result = action(object_name)
        except ConfigurationError as e:
            logger.error(f"Configuration error during {direction} sync of {object_name}: {e}")
            self._record_failure(direction, object_name, e, started)
            if self.metrics:
                self.metrics.send_alert(
                    'CONFIGURATION',
                    f"{direction} sync of {object_name} aborted",
                    {'error': str(e)}
                )
            return None
        except Exception as e:
            logger.exception(f"Error during {direction} sync of {object_name}: {e}")
            self._record_failure(direction, object_name, e, started)
            return None

        if self.metrics:
            self.metrics.record_sync(
                direction, object_name, 'success',
                records=_record_count(result),
                duration_seconds=time.monotonic() - started,
                details=_describe(result)
            )
        return result

    def _record_failure(self, direction: str, object_name: str,
                        error: Exception, started: float) -> None:
        if not self.metrics:
            return
        self.metrics.record_sync(
            direction, object_name, 'failed',
            duration_seconds=time.monotonic() - started,
            details={'error': str(error)}
        )
        self.metrics.record_error(type(error).__name__, object_name, str(error))

    def sync_tables(self) -> Dict[str, Optional[List[str]]]:
        """同步所有对象的表结构"""
        self.reconciler.clear_cache()
        return {
            name: self._run_object('schema', name, self.sync_table_schema)
            for name in self.object_names
        }

    def pull(self) -> Dict[str, Any]:
        """从 Salesforce 拉取所有对象"""
        return {
            name: self._run_object('inbound', name, self.inbound.sync_object)
            for name in self.object_names
        }

    def push(self) -> Dict[str, Any]:
        """把所有对象的待写回行推送到 Salesforce"""
        return {
            name: self._run_object('outbound', name, self.outbound.sync_object)
            for name in self.object_names
        }

    def _cycle_object(self, object_name: str) -> Dict[str, Any]:
        """单个对象的完整周期：表结构、拉取、写回"""
        result = {'schema': self._run_object('schema', object_name, self.sync_table_schema)}
        if result['schema'] is None:
            logger.warning(f"Skipping pull and push for {object_name}, schema sync failed")
            return result

        result['inbound'] = self._run_object('inbound', object_name, self.inbound.sync_object)
        result['outbound'] = self._run_object('outbound', object_name, self.outbound.sync_object)
        return result

    def run_cycle(self) -> Dict[str, Dict[str, Any]]:
        """
        运行一轮同步

        每个对象由一个任务独占处理；max_workers 大于 1 时对象之间并行。
        """
        self.reconciler.clear_cache()
        names = self.object_names
        workers = max(1, min(self.config.sync.max_workers, len(names) or 1))

        if workers == 1:
            results = {name: self._cycle_object(name) for name in names}
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ObjectSync") as executor:
                results = dict(zip(names, executor.map(self._cycle_object, names)))

        self.stats['cycles'] += 1
        self.stats['last_cycle'] = datetime.now()
        logger.info(f"Sync cycle {self.stats['cycles']} completed for {len(names)} objects")

        if self.metrics:
            self.metrics.check_and_alert()
        return results

    def start(self) -> None:
        """启动同步服务"""
        if self.running:
            logger.warning("Sync service is already running")
            return

        logger.info("Starting sync service...")

        if not self.test_connections():
            raise ConnectionError("Connection test failed")

        self.running = True
        self.stats['start_time'] = datetime.now()
        self._stop_event.clear()

        self._thread = threading.Thread(target=self._sync_loop, name="SalesforceSyncThread")
        self._thread.daemon = True
        self._thread.start()

        logger.info("Sync service started successfully")

    def stop(self) -> None:
        """停止同步服务"""
        logger.info("Stopping sync service...")
        self.running = False
        self._stop_event.set()

        if self._thread:
            self._thread.join(timeout=5)

        logger.info("Sync service stopped")

    def _sync_loop(self) -> None:
        """同步循环"""
        logger.info("Sync loop started")

        while self.running:
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception(f"Error in sync loop: {e}")
                if self.metrics:
                    self.metrics.record_error('sync_loop', '*', str(e))

            # 等待下次轮询，stop() 可立即唤醒
            self._stop_event.wait(self.config.sync.poll_interval)

    def get_status(self) -> Dict[str, Any]:
        """获取服务状态"""
        uptime = None
        if self.stats['start_time']:
            uptime = (datetime.now() - self.stats['start_time']).total_seconds()

        objects = {}
        for name in self.object_names:
            cursor = self.repository.load_cursor(name)
            objects[name] = {
                'watermark': cursor.last_modified_watermark,
                'pending_bulk_job': cursor.pending_bulk_job.job_id if cursor.pending_bulk_job else None,
                'schema_synced': self.repository.load_schema(name) is not None
            }

        return {
            'running': self.running,
            'uptime_seconds': uptime,
            'sync_stats': self.stats,
            'objects': objects,
            'thread_alive': bool(self._thread and self._thread.is_alive())
        }

    def reload_config(self) -> None:
        """重新加载配置"""
        logger.info("Reloading configuration...")
        self.config.reload()
        self.config.validate()

        sync = self.config.sync
        self.reconciler.field_exclusions = sync.field_exclusions
        self.reconciler.read_only_fields = sync.read_only_fields
        self.inbound.config = sync

        logger.info("Configuration reloaded")

    def reset_cursor(self, object_name: str) -> None:
        """重置对象的同步游标，下次同步重新全量导出"""
        self.repository.reset_cursor(object_name)


def _record_count(result: Any) -> int:
    if result is None:
        return 0
    if hasattr(result, 'records'):
        return result.records
    if hasattr(result, 'processed'):
        return result.processed
    if isinstance(result, list):
        return len(result)
    return 0


def _describe(result: Any) -> Dict[str, Any]:
    if is_dataclass(result):
        return asdict(result)
    if isinstance(result, list):
        return {'actions': result}
    return {}
