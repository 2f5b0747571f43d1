"""配置模块"""

from .config import (
    Config, DatabaseConfig, SalesforceConfig, SyncConfig,
    StateConfig, MonitorConfig
)

__all__ = [
    "Config", "DatabaseConfig", "SalesforceConfig", "SyncConfig",
    "StateConfig", "MonitorConfig"
]
