"""
监控指标收集器
"""
import json
import threading
from typing import Dict, Any, Optional
from datetime import datetime
from collections import defaultdict, deque
from loguru import logger
import requests

from ..config.config import MonitorConfig


DIRECTIONS = ('schema', 'inbound', 'outbound')


class MetricsCollector:
    """监控指标收集器"""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self._lock = threading.Lock()

        # 同步计数器 direction -> status -> count
        self.sync_counters = defaultdict(lambda: defaultdict(int))

        # 记录处理数 direction -> count
        self.record_counters = defaultdict(int)

        self.errors = deque(maxlen=1000)
        self.sync_durations = deque(maxlen=1000)

        # 每个对象最近一次的结果
        self.object_stats: Dict[str, Dict[str, Any]] = {}

        self.start_time = datetime.now()

    def record_sync(self, direction: str, object_name: str, status: str,
                    records: int = 0, duration_seconds: Optional[float] = None,
                    details: Optional[Dict[str, Any]] = None) -> None:
        """记录一次对象同步"""
        with self._lock:
            self.sync_counters[direction][status] += 1
            self.sync_counters[direction]['total'] += 1
            self.record_counters[direction] += records

            if duration_seconds is not None:
                self.sync_durations.append({
                    'direction': direction,
                    'duration': duration_seconds,
                    'timestamp': datetime.now()
                })

            self.object_stats.setdefault(object_name, {})[direction] = {
                'status': status,
                'records': records,
                'details': details or {},
                'timestamp': datetime.now().isoformat()
            }

    def record_error(self, error_type: str, object_name: str, error_message: str) -> None:
        """记录错误"""
        with self._lock:
            self.errors.append({
                'type': error_type,
                'object': object_name,
                'message': error_message,
                'timestamp': datetime.now()
            })

    def get_metrics(self) -> Dict[str, Any]:
        """获取所有指标"""
        with self._lock:
            uptime = (datetime.now() - self.start_time).total_seconds()

            success_rates = {}
            for direction, counters in self.sync_counters.items():
                total = counters.get('total', 0)
                success = counters.get('success', 0)
                success_rates[direction] = round(success / total * 100, 2) if total else 0

            avg_durations = {}
            recent_durations = list(self.sync_durations)[-100:]
            for direction in DIRECTIONS:
                values = [d['duration'] for d in recent_durations if d['direction'] == direction]
                if values:
                    avg_durations[direction] = round(sum(values) / len(values), 3)

            return {
                'uptime_seconds': uptime,
                'sync_counters': {k: dict(v) for k, v in self.sync_counters.items()},
                'record_counters': dict(self.record_counters),
                'success_rates': success_rates,
                'average_sync_duration': avg_durations,
                'objects': dict(self.object_stats),
                'recent_errors': list(self.errors)[-10:],
                'timestamp': datetime.now().isoformat()
            }

    def get_health_status(self) -> Dict[str, Any]:
        """获取健康状态"""
        metrics = self.get_metrics()

        health_status = "healthy"
        issues = []

        for direction, rate in metrics['success_rates'].items():
            if rate < 90:
                health_status = "degraded"
                issues.append(f"Low success rate for {direction}: {rate}%")

        recent_errors = len(list(self.errors)[-100:])
        if recent_errors > 50:
            health_status = "unhealthy"
            issues.append(f"High error rate: {recent_errors} errors in recent 100 operations")

        return {
            'status': health_status,
            'issues': issues,
            'metrics_summary': {
                'uptime_hours': round(metrics['uptime_seconds'] / 3600, 2),
                'success_rates': metrics['success_rates'],
                'recent_errors': recent_errors
            }
        }

    def send_alert(self, alert_type: str, message: str, details: Optional[Dict] = None) -> None:
        """发送告警到 webhook，失败只记录日志"""
        if not self.config.alert_webhook:
            return

        payload = {
            'type': alert_type,
            'message': message,
            'details': details or {},
            'timestamp': datetime.now().isoformat(),
            'service': 'salesforce_db_sync'
        }

        try:
            response = requests.post(
                self.config.alert_webhook,
                data=json.dumps(payload, ensure_ascii=False, default=str),
                headers={'Content-Type': 'application/json'},
                timeout=5
            )
            if response.status_code != 200:
                logger.error(f"Failed to send alert: {response.text}")
        except requests.RequestException as e:
            logger.error(f"Error sending alert: {e}")

    def check_and_alert(self) -> None:
        """检查指标并发送告警"""
        health = self.get_health_status()

        if health['status'] == 'unhealthy':
            self.send_alert('CRITICAL', 'Sync service is unhealthy', health)
        elif health['status'] == 'degraded':
            self.send_alert('WARNING', 'Sync service is degraded', health)

    def export_metrics(self, format: str = 'json') -> str:
        """导出指标"""
        metrics = self.get_metrics()

        if format == 'json':
            return json.dumps(metrics, ensure_ascii=False, indent=2, default=str)
        elif format == 'prometheus':
            lines = [
                '# HELP sync_uptime_seconds Sync service uptime in seconds',
                '# TYPE sync_uptime_seconds gauge',
                f'sync_uptime_seconds {metrics["uptime_seconds"]}',
            ]

            for direction, counters in metrics['sync_counters'].items():
                for status, count in counters.items():
                    lines.append(f'sync_total{{direction="{direction}",status="{status}"}} {count}')

            for direction, count in metrics['record_counters'].items():
                lines.append(f'sync_records_total{{direction="{direction}"}} {count}')

            for direction, rate in metrics['success_rates'].items():
                lines.append(f'sync_success_rate{{direction="{direction}"}} {rate}')

            return '\n'.join(lines)
        else:
            raise ValueError(f"Unsupported format: {format}")
