"""
Salesforce 客户端封装
"""
import csv
import io
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple
from xml.sax.saxutils import escape

import requests
from loguru import logger

from ..config.config import SalesforceConfig
from ..errors import RemoteRejection, TransientRemoteError, TransportError
from .base import SalesforceAPI
from .types import BulkJobState, ObjectFieldDescriptor, QueryPage, ResultPage


LOGIN_ENVELOPE = """<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/">
    <soapenv:Header/>
    <soapenv:Body>
        <login xmlns="urn:partner.soap.sforce.com">
            <username>{username}</username>
            <password>{password}</password>
        </login>
    </soapenv:Body>
</soapenv:Envelope>"""


def parse_salesforce_error(response: requests.Response) -> Tuple[str, str]:
    """解析 Salesforce 错误响应，返回 (errorCode, message)"""
    fallback_code = "salesforce_request_failed"
    fallback_message = f"Salesforce API request failed with status {response.status_code}"

    try:
        payload = response.json()
    except ValueError:
        body = response.text.strip()
        return fallback_code, body or fallback_message

    if isinstance(payload, list) and payload:
        first = payload[0]
        if isinstance(first, dict):
            return (
                str(first.get("errorCode") or fallback_code),
                str(first.get("message") or fallback_message),
            )

    if isinstance(payload, dict):
        return (
            str(payload.get("errorCode") or payload.get("error") or fallback_code),
            str(payload.get("message") or payload.get("error_description") or fallback_message),
        )

    return fallback_code, fallback_message


class SalesforceClient(SalesforceAPI):
    """基于 REST API 与 Bulk API 2.0 的 Salesforce 客户端"""

    def __init__(self, config: SalesforceConfig,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.instance_url = config.instance_url.rstrip('/')
        self.access_token = config.access_token

    @property
    def rest_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.config.api_version}"

    def login(self) -> None:
        """通过 SOAP partner 接口登录获取会话"""
        soap_url = f"{self.config.login_url.rstrip('/')}/services/Soap/u/{self.config.api_version}"
        envelope = LOGIN_ENVELOPE.format(
            username=escape(self.config.username),
            password=escape(self.config.password + self.config.security_token)
        )

        try:
            response = self.session.post(
                soap_url,
                data=envelope.encode('utf-8'),
                headers={'Content-Type': 'text/xml', 'SOAPAction': '""'},
                timeout=self.config.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"Salesforce login failed: {e}") from e

        if response.status_code != 200:
            fault = re.search(r'<faultstring>(.*?)</faultstring>', response.text)
            raise TransportError(
                f"Salesforce login failed: {fault.group(1) if fault else response.status_code}"
            )

        session_id = re.search(r'<sessionId>(.*?)</sessionId>', response.text)
        server_url = re.search(r'<serverUrl>(.*?)</serverUrl>', response.text)
        if not session_id or not server_url:
            raise TransportError("Salesforce login response missing sessionId or serverUrl")

        self.access_token = session_id.group(1)
        match = re.match(r'(https://[^/]+)', server_url.group(1))
        self.instance_url = match.group(1) if match else server_url.group(1)
        logger.info(f"Logged in to Salesforce: {self.instance_url}")

    def _ensure_session(self) -> None:
        if not self.access_token or not self.instance_url:
            self.login()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """发送请求并将失败映射为同步异常"""
        self._ensure_session()
        headers = kwargs.pop('headers', {})
        headers['Authorization'] = f"Bearer {self.access_token}"

        try:
            response = self.session.request(
                method, url, headers=headers,
                timeout=self.config.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"Salesforce request {method} {url} failed: {e}")
            raise TransportError(str(e)) from e

        if response.status_code == 401 or response.status_code >= 500:
            error_code, message = parse_salesforce_error(response)
            raise TransportError(f"{error_code}: {message}")

        if response.status_code >= 400:
            error_code, message = parse_salesforce_error(response)
            raise RemoteRejection(message, error_code=error_code,
                                  status_code=response.status_code)

        return response

    def describe(self, object_name: str) -> List[ObjectFieldDescriptor]:
        """获取对象字段描述"""
        response = self._request('GET', f"{self.rest_url}/sobjects/{object_name}/describe/")
        fields = response.json().get('fields') or []
        logger.debug(f"Described {object_name}: {len(fields)} fields")
        return [ObjectFieldDescriptor.from_describe(f) for f in fields]

    def query(self, soql: str) -> Iterator[QueryPage]:
        """执行 SOQL 查询，按 nextRecordsUrl 逐页获取"""
        url = f"{self.rest_url}/query"
        params: Optional[Dict[str, str]] = {'q': soql}

        while True:
            response = self._request('GET', url, params=params)
            data = response.json()
            page = QueryPage(
                records=data.get('records') or [],
                total_size=int(data.get('totalSize') or 0),
                done=bool(data.get('done', True)),
                next_records_url=data.get('nextRecordsUrl')
            )
            logger.debug(
                f"Query page: {len(page.records)} records, total {page.total_size}, done {page.done}"
            )
            yield page

            if page.done or not page.next_records_url:
                break
            url = f"{self.instance_url}{page.next_records_url}"
            params = None

    def submit_export(self, object_name: str, soql: str) -> str:
        """创建 Bulk API 2.0 查询任务"""
        response = self._request(
            'POST', f"{self.rest_url}/jobs/query",
            json={'operation': 'query', 'query': soql, 'contentType': 'CSV'}
        )
        job_id = response.json()['id']
        logger.info(f"Submitted bulk export for {object_name}: {job_id}")
        return job_id

    def poll_status(self, job_id: str) -> BulkJobState:
        """查询批量任务状态；400 视为暂时不可查"""
        try:
            response = self._request('GET', f"{self.rest_url}/jobs/query/{job_id}")
        except RemoteRejection as e:
            if e.status_code == 400:
                raise TransientRemoteError(f"Bulk job {job_id} status not available yet: {e}") from e
            raise
        return BulkJobState.from_remote(response.json().get('state', ''))

    def fetch_result_page(self, job_id: str,
                          locator: Optional[str] = None) -> ResultPage:
        """获取一页批量导出结果（CSV）"""
        params = {'locator': locator} if locator else None
        response = self._request(
            'GET', f"{self.rest_url}/jobs/query/{job_id}/results",
            params=params, headers={'Accept': 'text/csv'}
        )

        reader = csv.DictReader(io.StringIO(response.text))
        rows = list(reader)

        next_locator = response.headers.get('Sforce-Locator')
        if not next_locator or next_locator == 'null':
            next_locator = None

        record_count = response.headers.get('Sforce-NumberOfRecords')
        return ResultPage(
            rows=rows,
            next_locator=next_locator,
            record_count=int(record_count) if record_count else len(rows),
            columns=list(reader.fieldnames or [])
        )

    def create_record(self, object_name: str, payload: Dict[str, Any]) -> str:
        """创建记录"""
        response = self._request('POST', f"{self.rest_url}/sobjects/{object_name}/", json=payload)
        result = response.json()
        if not result.get('success', True) or not result.get('id'):
            errors = result.get('errors') or []
            message = errors[0].get('message') if errors else "Create returned no id"
            raise RemoteRejection(message, status_code=response.status_code)
        logger.debug(f"Created {object_name} record: {result['id']}")
        return result['id']

    def update_record(self, object_name: str, record_id: str,
                      payload: Dict[str, Any]) -> None:
        """更新记录"""
        self._request('PATCH', f"{self.rest_url}/sobjects/{object_name}/{record_id}", json=payload)
        logger.debug(f"Updated {object_name} record: {record_id}")

    def test_connection(self) -> bool:
        """测试连接"""
        try:
            self._request('GET', f"{self.rest_url}/limits")
            return True
        except Exception as e:
            logger.error(f"Salesforce connection test failed: {e}")
            return False
