"""
同步异常定义
"""
from typing import Optional


class SyncError(Exception):
    """同步异常基类"""


class ConfigurationError(SyncError):
    """配置错误：字段缺失、无可写字段等，不自动重试"""


class TransientRemoteError(SyncError):
    """临时性远端错误（如批量任务状态暂不可查），仅在轮询内重试"""


class TransportError(SyncError):
    """网络、超时、会话失效等传输层错误，直接向上抛出"""


class RemoteRejection(SyncError):
    """远端拒绝了创建/更新请求（如校验失败），按行记录为 ERROR"""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code

    def __str__(self) -> str:
        if self.error_code:
            return f"{self.error_code}: {self.message}"
        return self.message


class BulkJobFailedError(SyncError):
    """批量导出任务在远端失败或被中止"""


class BulkJobTimeoutError(SyncError):
    """批量导出任务超过最长等待时间仍未完成"""
