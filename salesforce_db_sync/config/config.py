"""
配置管理模块
"""
import json
import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path

from ..errors import ConfigurationError


# 所有对象共有的字段；isSalesforceColumn 为 False 的由本地维护
DEFAULT_COMMON_FIELDS: List[Dict[str, Any]] = [
    {
        "name": "_sync_id",
        "type": "bigint",
        "notNull": True,
        "defaultSequence": True,
        "createUniqueIndex": True
    },
    {"name": "_sync_status", "type": "varchar(10)", "createIndex": True},
    {"name": "_sync_update_timestamp", "type": "timestamp", "defaultNow": True},
    {"name": "_sync_message", "type": "text"},
    {"name": "Id", "isSalesforceColumn": True},
    {"name": "IsDeleted", "isSalesforceColumn": True},
    {"name": "CreatedDate", "isSalesforceColumn": True},
    {"name": "SystemModstamp", "isSalesforceColumn": True}
]

# 部分对象上不存在的公共字段
DEFAULT_FIELD_EXCLUSIONS: Dict[str, List[str]] = {
    "User": ["IsDeleted"],
    "RecordType": ["IsDeleted"],
    "UserRole": ["IsDeleted", "CreatedDate"]
}


@dataclass
class DatabaseConfig:
    """暂存数据库配置（MariaDB / MySQL）"""
    host: str
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = ""
    charset: str = "utf8mb4"
    pool_size: int = 5

    def to_dict(self) -> Dict[str, Any]:
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'charset': self.charset
        }


@dataclass
class SalesforceConfig:
    """Salesforce 配置"""
    login_url: str = "https://login.salesforce.com"
    username: str = ""
    password: str = ""
    security_token: str = ""
    # 已有会话时可直接配置，跳过登录
    instance_url: str = ""
    access_token: str = ""
    api_version: str = "59.0"
    timeout: int = 60


@dataclass
class SyncConfig:
    """同步配置"""
    poll_interval: int = 300  # 同步周期（秒）
    max_workers: int = 1  # 并行处理的对象数

    # 对象配置: {"Account": {"fields": ["Name", "Industry"]}}
    objects: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    common_fields: List[Dict[str, Any]] = field(
        default_factory=lambda: [dict(f) for f in DEFAULT_COMMON_FIELDS]
    )
    field_exclusions: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_FIELD_EXCLUSIONS.items()}
    )
    # 强制只读的字段: {"Account": ["Name"]}
    read_only_fields: Dict[str, List[str]] = field(default_factory=dict)

    watermark_field: str = "SystemModstamp"
    bulk_poll_interval: int = 2  # 批量任务轮询间隔（秒）
    bulk_max_wait: int = 5400  # 批量任务最长等待（秒）
    bulk_timeout_action: str = "fail"  # fail | proceed
    bulk_load_batch_size: int = 1000

    def get_object_fields(self, object_name: str) -> List[str]:
        """获取对象配置的字段列表"""
        object_config = self.objects.get(object_name) or {}
        return list(object_config.get('fields') or [])


@dataclass
class StateConfig:
    """同步状态存储配置"""
    backend: str = "database"  # database | redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    key_prefix: str = "salesforce_sync:"


@dataclass
class MonitorConfig:
    """监控配置"""
    enable_metrics: bool = True
    alert_webhook: Optional[str] = None
    log_level: str = "INFO"
    log_file: str = "sync.log"
    log_max_size: str = "100MB"
    log_backup_count: int = 10


class Config:
    """配置管理器"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config_file()
        self._data: Dict[str, Any] = {}

        self.database: Optional[DatabaseConfig] = None
        self.salesforce: Optional[SalesforceConfig] = None
        self.sync: Optional[SyncConfig] = None
        self.state: Optional[StateConfig] = None
        self.monitor: Optional[MonitorConfig] = None

        self.load()

    def _find_config_file(self) -> str:
        """查找配置文件"""
        search_paths = [
            Path.cwd() / "config.json",
            Path.cwd() / "config" / "config.json",
            Path.home() / ".salesforce_sync" / "config.json",
            Path("/etc/salesforce_sync/config.json")
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        return str(Path.cwd() / "config.json")

    def load(self) -> None:
        """加载配置文件"""
        if not os.path.exists(self.config_path):
            self._create_default_config()

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._data = json.load(f)

        self._parse_config()

    def _parse_config(self) -> None:
        """解析配置"""
        try:
            self.database = DatabaseConfig(**self._data.get('database', {'host': 'localhost'}))
            self.salesforce = SalesforceConfig(**self._data.get('salesforce', {}))
            self.sync = SyncConfig(**self._data.get('sync', {}))
            self.state = StateConfig(**self._data.get('state', {}))
            self.monitor = MonitorConfig(**self._data.get('monitor', {}))
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration in {self.config_path}: {e}") from e

    def _create_default_config(self) -> None:
        """创建默认配置文件"""
        default_config = {
            "database": {
                "host": "localhost",
                "port": 3306,
                "user": "root",
                "password": "",
                "database": "salesforce_sync"
            },
            "salesforce": {
                "login_url": "https://login.salesforce.com",
                "username": "your_username",
                "password": "your_password",
                "security_token": "your_security_token"
            },
            "sync": {
                "poll_interval": 300,
                "objects": {
                    "Account": {"fields": ["Name", "Industry", "OwnerId"]},
                    "Contact": {"fields": ["FirstName", "LastName", "Email", "AccountId"]}
                }
            },
            "state": {
                "backend": "database"
            },
            "monitor": {
                "enable_metrics": True,
                "log_level": "INFO",
                "log_file": "sync.log"
            }
        }

        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(default_config, f, indent=4, ensure_ascii=False)

        self._data = default_config

    def save(self) -> None:
        """保存配置"""
        config_dict = {
            "database": asdict(self.database) if self.database else {},
            "salesforce": asdict(self.salesforce) if self.salesforce else {},
            "sync": asdict(self.sync) if self.sync else {},
            "state": asdict(self.state) if self.state else {},
            "monitor": asdict(self.monitor) if self.monitor else {}
        }

        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(config_dict, f, indent=4, ensure_ascii=False)

    def validate(self) -> bool:
        """验证配置是否有效"""
        sf = self.salesforce
        if not sf or not ((sf.instance_url and sf.access_token) or (sf.username and sf.password)):
            raise ConfigurationError("Salesforce 配置缺少 access_token 或 username/password")

        if not self.database or not self.database.host or not self.database.database:
            raise ConfigurationError("数据库配置缺少必要信息")

        if not self.sync or not self.sync.objects:
            raise ConfigurationError("同步配置缺少对象列表")

        if self.sync.bulk_timeout_action not in ('fail', 'proceed'):
            raise ConfigurationError(
                f"bulk_timeout_action 只能是 fail 或 proceed: {self.sync.bulk_timeout_action}"
            )

        if self.state and self.state.backend not in ('database', 'redis'):
            raise ConfigurationError(f"未知的状态存储类型: {self.state.backend}")

        return True

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置值"""
        keys = key.split('.')
        value = self._data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """设置配置值"""
        keys = key.split('.')
        data = self._data

        for k in keys[:-1]:
            if k not in data:
                data[k] = {}
            data = data[k]

        data[keys[-1]] = value
        self._parse_config()

    def reload(self) -> None:
        """重新加载配置"""
        self.load()
