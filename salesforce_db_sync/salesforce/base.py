"""Salesforce 接口定义"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

from .types import BulkJobState, ObjectFieldDescriptor, QueryPage, ResultPage


class SalesforceAPI(ABC):
    """同步核心依赖的 Salesforce 接口"""

    @abstractmethod
    def describe(self, object_name: str) -> List[ObjectFieldDescriptor]:
        """
        获取对象的字段描述

        Args:
            object_name: 对象 API 名称

        Returns:
            字段描述列表

        Raises:
            TransportError: 网络或会话错误
        """
        pass

    @abstractmethod
    def query(self, soql: str) -> Iterator[QueryPage]:
        """
        执行 SOQL 查询，逐页返回结果（惰性，不可重复迭代）

        Args:
            soql: 查询语句

        Returns:
            QueryPage 迭代器
        """
        pass

    @abstractmethod
    def submit_export(self, object_name: str, soql: str) -> str:
        """
        提交批量导出任务

        Returns:
            任务 ID
        """
        pass

    @abstractmethod
    def poll_status(self, job_id: str) -> BulkJobState:
        """
        查询批量导出任务状态

        Raises:
            TransientRemoteError: 任务暂时不可查询，可继续轮询
        """
        pass

    @abstractmethod
    def fetch_result_page(self, job_id: str,
                          locator: Optional[str] = None) -> ResultPage:
        """
        获取一页批量导出结果

        Args:
            job_id: 任务 ID
            locator: 分页定位符，首页为 None
        """
        pass

    @abstractmethod
    def create_record(self, object_name: str, payload: Dict[str, Any]) -> str:
        """
        创建记录

        Returns:
            新记录 ID

        Raises:
            RemoteRejection: 远端拒绝
            TransportError: 传输失败
        """
        pass

    @abstractmethod
    def update_record(self, object_name: str, record_id: str,
                      payload: Dict[str, Any]) -> None:
        """
        更新记录

        Raises:
            RemoteRejection: 远端拒绝
            TransportError: 传输失败
        """
        pass

    def test_connection(self) -> bool:
        """测试连接"""
        return True
