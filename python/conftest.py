"""テスト共通のフィクスチャ"""
import io
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, urlsplit

import pytest
import urllib3

from s3_objstore.core.builder import ClientBuilder
from s3_objstore.utils.logger import LoggerManager

XML_HEADERS = {"Content-Type": "application/xml"}


@dataclass
class RecordedRequest:
    """FakeHttp に送られたリクエスト"""
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[bytes]
    kwargs: Dict = field(default_factory=dict)

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def netloc(self) -> str:
        return urlsplit(self.url).netloc

    @property
    def query(self) -> Dict[str, str]:
        return dict(parse_qsl(urlsplit(self.url).query, keep_blank_values=True))

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None


class FakeHttp(urllib3.PoolManager):
    """送信内容を記録し、登録順にレスポンスを返す PoolManager"""

    def __init__(self):
        super().__init__()
        self.requests: List[RecordedRequest] = []
        self._responses = []

    def add(self, status: int = 200, body: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self._responses.append((status, body, headers or {}))
        return self

    def add_xml(self, body: str, status: int = 200, headers: Optional[Dict[str, str]] = None):
        merged = dict(XML_HEADERS)
        merged.update(headers or {})
        return self.add(status, body.encode("utf-8"), merged)

    def add_error(self, error: Exception):
        self._responses.append(error)
        return self

    @property
    def pending(self) -> int:
        return len(self._responses)

    def urlopen(self, method, url, redirect=True, **kw):
        self.requests.append(RecordedRequest(
            method, url, dict(kw.get("headers") or {}), kw.get("body"),
            {"redirect": redirect, **{k: v for k, v in kw.items() if k not in ("headers", "body")}},
        ))
        if not self._responses:
            raise AssertionError(f"unexpected request: {method} {url}")

        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body, headers = item
        return urllib3.HTTPResponse(
            body=io.BytesIO(body),
            headers=headers,
            status=status,
            preload_content=kw.get("preload_content", True),
            request_method=method,
        )


def error_xml(code: str, message: str = "error", resource: str = "/",
              request_id: str = "REQ1") -> str:
    return (
        "<Error>"
        f"<Code>{code}</Code><Message>{message}</Message>"
        f"<Resource>{resource}</Resource><RequestId>{request_id}</RequestId>"
        "<HostId>HOST1</HostId>"
        "</Error>"
    )


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    LoggerManager.reset()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def client(http):
    """リージョン固定・平文接続・認証ありのクライアント"""
    return (
        ClientBuilder()
        .endpoint("localhost:9000", secure=False)
        .region("us-east-1")
        .credentials("minio", "minio123")
        .http_client(http)
        .build()
    )


@pytest.fixture
def secure_client(http):
    return (
        ClientBuilder()
        .endpoint("localhost:9000", secure=True)
        .region("us-east-1")
        .credentials("minio", "minio123")
        .http_client(http)
        .build()
    )


@pytest.fixture
def anonymous_client(http):
    return (
        ClientBuilder()
        .endpoint("localhost:9000", secure=False)
        .http_client(http)
        .build()
    )
