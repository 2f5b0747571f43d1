"""Salesforce 客户端模块"""

from .base import SalesforceAPI
from .client import SalesforceClient
from .types import BulkJobState, ObjectFieldDescriptor, QueryPage, ResultPage

__all__ = [
    "SalesforceAPI", "SalesforceClient", "BulkJobState",
    "ObjectFieldDescriptor", "QueryPage", "ResultPage"
]
