"""HTTPリクエストの組み立て・署名・実行とレスポンスの分類"""
import base64
import hashlib
import os
import platform
import threading
from typing import Optional, Tuple
from urllib.parse import urlunsplit

import certifi
import urllib3
from urllib3.util import Retry, Timeout

from ..utils.logger import LoggerManager, TraceSink, redact
from ..utils.params import Headers, PairsLike, QueryParams, set_default
from .constants import (
    DEFAULT_REGION,
    LIBRARY_NAME,
    LIBRARY_VERSION,
    NO_SUCH_BUCKET,
    NO_SUCH_BUCKET_MESSAGE,
    RETRY_HEAD,
    UNSIGNED_PAYLOAD,
)
from .credentials import Credentials, Provider
from .endpoint import BaseURL
from .errors import ErrorInfo, ErrorKind, StorageError, argument_error, internal_error, invalid_response, server_failure
from .region import RegionCache
from .signer import sign_v4_s3
from .xml_codec import find_text, unmarshal, validate

START_HTTP = "---------START-HTTP---------"
END_HTTP = "----------END-HTTP----------"

_REDIRECT_CODES = {
    301: ("PermanentRedirect", "Moved Permanently"),
    307: ("Redirect", "Temporary redirect"),
    400: ("BadRequest", "Bad request"),
}
_METHOD_NOT_ALLOWED = ("MethodNotAllowed", "The specified method is not allowed against this resource")


def create_http_client(timeout_seconds: int = 300, max_pool_size: int = 10,
                       cert_check: bool = True) -> urllib3.PoolManager:
    """既定のコネクションプールを作成

    SSL_CERT_FILE が設定されていればそれを、無ければ certifi のCAバンドルを使う。
    """
    return urllib3.PoolManager(
        timeout=Timeout(connect=timeout_seconds, read=timeout_seconds),
        maxsize=max_pool_size,
        cert_reqs="CERT_REQUIRED" if cert_check else "CERT_NONE",
        ca_certs=os.environ.get("SSL_CERT_FILE") or certifi.where(),
        retries=Retry(
            total=5,
            backoff_factor=0.2,
            status_forcelist=[500, 502, 503, 504],
            raise_on_status=False,
        ),
    )


def response_headers(response) -> Headers:
    return Headers(response.headers.items())


def parse_error_info(root, bucket_name: Optional[str] = None,
                     object_name: Optional[str] = None,
                     resource: Optional[str] = None) -> ErrorInfo:
    """<Error> 文書から ErrorInfo を作成"""
    return ErrorInfo(
        code=find_text(root, "Code"),
        message=find_text(root, "Message"),
        bucket=find_text(root, "BucketName", bucket_name),
        object_name=find_text(root, "Key", object_name),
        resource=find_text(root, "Resource", resource),
        request_id=find_text(root, "RequestId"),
        host_id=find_text(root, "HostId"),
    )


def md5_base64(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class RequestExecutor:
    """リクエストの実行とリージョン解決"""

    def __init__(
        self,
        base_url: BaseURL,
        provider: Optional[Provider] = None,
        http: Optional[urllib3.PoolManager] = None,
        region_cache: Optional[RegionCache] = None,
    ):
        self.base_url = base_url
        self.provider = provider
        self.http = http or create_http_client()
        self.region_cache = region_cache or RegionCache()
        self.logger = LoggerManager.get_logger()
        self._user_agent = (
            f"{LIBRARY_NAME}/{LIBRARY_VERSION} ({platform.system()}; {platform.machine()}) "
            f"python/{platform.python_version()}"
        )
        self._trace_lock = threading.Lock()
        self._trace_sink: Optional[TraceSink] = None

    @property
    def user_agent(self) -> str:
        return self._user_agent

    def set_app_info(self, app_name: str, app_version: str) -> None:
        """User-Agent にアプリケーション名とバージョンを追加"""
        if not app_name or not app_version:
            raise argument_error("app name and app version must not be empty")
        self._user_agent = f"{self._user_agent} {app_name}/{app_version}"

    def trace_on(self, sink: TraceSink) -> None:
        if sink is None:
            raise argument_error("trace sink must not be None")
        with self._trace_lock:
            self._trace_sink = sink

    def trace_off(self) -> None:
        with self._trace_lock:
            self._trace_sink = None

    def _trace(self, *lines: str) -> None:
        with self._trace_lock:
            sink = self._trace_sink
        if sink is None:
            return
        for line in lines:
            sink.write_line(line)

    @property
    def tracing(self) -> bool:
        with self._trace_lock:
            return self._trace_sink is not None

    def credentials(self) -> Optional[Credentials]:
        return self.provider.retrieve() if self.provider is not None else None

    def _payload_hashes(self, body: Optional[bytes],
                        credentials: Optional[Credentials]) -> Tuple[Optional[str], Optional[str]]:
        """(x-amz-content-sha256, Content-MD5) を決める"""
        if credentials is None:
            # 匿名アクセスでは空でないボディのMD5だけを送る
            return None, md5_base64(body) if body else None
        if self.base_url.is_https:
            return UNSIGNED_PAYLOAD, md5_base64(body) if body is not None else None
        data = body if body is not None else b""
        return sha256_hex(data), md5_base64(data)

    def _redirect_code(self, method: str, response, bucket_name: Optional[str],
                       retry: bool) -> Tuple[str, Optional[str]]:
        code, message = _REDIRECT_CODES[response.status]
        region = response.headers.get("x-amz-bucket-region")
        if region:
            message += "; use region " + region

        if (
            retry and region and method == "HEAD" and bucket_name
            and self.region_cache.get(bucket_name) is not None
        ):
            return RETRY_HEAD, None
        return code, message

    def url_open(
        self,
        method: str,
        region: str,
        bucket_name: Optional[str] = None,
        object_name: Optional[str] = None,
        headers: PairsLike = None,
        query_params: PairsLike = None,
        body: Optional[bytes] = None,
        preload_content: bool = True,
        trace_body: bool = False,
    ):
        """リクエストを1回だけ送信し、2xx 以外は StorageError にして送出する"""
        query = QueryParams(query_params)
        url = self.base_url.build(method, region, bucket_name, object_name, query)

        if method in ("PUT", "POST") and body is None:
            body = b""

        request_headers = Headers(headers)
        request_headers.set("Host", url.netloc)
        request_headers.set("Accept-Encoding", "identity")
        request_headers.set("User-Agent", self._user_agent)
        if method in ("PUT", "POST"):
            request_headers.set("Content-Length", str(len(body)))
            request_headers = set_default(request_headers, "Content-Type", "application/octet-stream")

        credentials = self.credentials()
        content_sha256, content_md5 = self._payload_hashes(body, credentials)
        if content_md5 is not None:
            request_headers = set_default(request_headers, "Content-MD5", content_md5)
        if content_sha256 is not None:
            request_headers.set("x-amz-content-sha256", content_sha256)

        request_url = urlunsplit(url)
        signed_headers = request_headers.to_dict()
        if credentials is not None:
            if credentials.session_token:
                signed_headers["X-Amz-Security-Token"] = credentials.session_token
            signed_headers = sign_v4_s3(
                method, request_url, region, signed_headers, credentials, content_sha256,
            )

        if self.tracing:
            path = url.path + ("?" + url.query if url.query else "")
            lines = [START_HTTP, f"{method} {path} HTTP/1.1"]
            lines += [redact(f"{key}: {value}") for key, value in signed_headers.items()]
            if trace_body and body:
                lines.append(body.decode("utf-8", "replace"))
            self._trace(*lines)

        self.logger.debug(f"{method} {url.netloc}{url.path} (region={region})")
        kwargs = {}
        if method in ("PUT", "POST"):
            # ボディを消費したリクエストは接続レベルで再送しない
            kwargs["retries"] = False
        try:
            response = self.http.urlopen(
                method,
                request_url,
                body=body,
                headers=signed_headers,
                preload_content=preload_content,
                redirect=False,
                **kwargs,
            )
        except urllib3.exceptions.HTTPError as e:
            self._trace(END_HTTP)
            raise StorageError(ErrorKind.TRANSPORT, f"{method} {url.netloc}{url.path} failed: {e}") from e

        if self.tracing:
            lines = [f"HTTP/1.1 {response.status}"]
            lines += [f"{key}: {value}" for key, value in response.headers.items()]
            self._trace(*lines)

        if 200 <= response.status < 300:
            if self.tracing:
                if preload_content and trace_body and response.data:
                    self._trace(response.data.decode("utf-8", "replace"))
                self._trace(END_HTTP)
            return response

        self._raise_error(method, url.path, bucket_name, object_name, response, preload_content)

    def _raise_error(self, method: str, resource: str, bucket_name: Optional[str],
                     object_name: Optional[str], response, preload_content: bool) -> None:
        data = response.data or b""
        if not preload_content:
            response.release_conn()
        text = data.decode("utf-8", "replace")

        if self.tracing and not (method == "HEAD" and not text):
            self._trace(text)
        self._trace(END_HTTP)

        content_type = response.headers.get("content-type")
        if method != "HEAD" and (
            content_type is None
            or "application/xml" not in [t.strip() for t in content_type.split(";")]
        ):
            raise invalid_response(response.status, content_type, text)

        info = None
        if text:
            if not validate(data, "Error"):
                raise invalid_response(response.status, content_type, text)
            info = parse_error_info(unmarshal(data), bucket_name, object_name, resource)
        elif method != "HEAD":
            raise invalid_response(response.status, content_type, text)

        if info is None:
            code, message = self._synthesize_code(method, bucket_name, object_name, response)
            info = ErrorInfo(
                code=code,
                message=message,
                bucket=bucket_name,
                object_name=object_name,
                resource=resource,
                request_id=response.headers.get("x-amz-request-id"),
                host_id=response.headers.get("x-amz-id-2"),
            )

        if info.code in (NO_SUCH_BUCKET, RETRY_HEAD) and bucket_name is not None:
            self.region_cache.remove(bucket_name)

        raise StorageError.from_info(info, status=response.status, response=response)

    def _synthesize_code(self, method: str, bucket_name: Optional[str],
                         object_name: Optional[str], response) -> Tuple[str, Optional[str]]:
        status = response.status
        if status in _REDIRECT_CODES:
            return self._redirect_code(method, response, bucket_name, True)
        if status == 404:
            if object_name is not None:
                return "NoSuchKey", "Object does not exist"
            if bucket_name is not None:
                return NO_SUCH_BUCKET, NO_SUCH_BUCKET_MESSAGE
            return "ResourceNotFound", "Request resource not found"
        if status in (405, 501):
            return _METHOD_NOT_ALLOWED
        if status == 409:
            if bucket_name is not None:
                return NO_SUCH_BUCKET, NO_SUCH_BUCKET_MESSAGE
            return "ResourceConflict", "Request resource conflicts"
        if status == 403:
            return "AccessDenied", "Access denied"
        if status >= 500:
            raise server_failure(status)
        raise internal_error(f"unhandled HTTP code {status}")

    def execute(
        self,
        method: str,
        bucket_name: Optional[str] = None,
        object_name: Optional[str] = None,
        region: Optional[str] = None,
        headers: PairsLike = None,
        query_params: PairsLike = None,
        body: Optional[bytes] = None,
        preload_content: bool = True,
        trace_body: bool = False,
    ):
        """バケットのリージョンを解決してからリクエストを実行"""
        region = self.get_region(bucket_name, region)
        return self.url_open(
            method,
            region,
            bucket_name=bucket_name,
            object_name=object_name,
            headers=headers,
            query_params=query_params,
            body=body,
            preload_content=preload_content,
            trace_body=trace_body,
        )

    def execute_head(
        self,
        bucket_name: Optional[str] = None,
        object_name: Optional[str] = None,
        region: Optional[str] = None,
        headers: PairsLike = None,
        query_params: PairsLike = None,
    ):
        """HEAD を実行し、RetryHead の場合だけリージョンを引き直して1回再試行する"""
        try:
            return self.execute("HEAD", bucket_name, object_name, region, headers, query_params)
        except StorageError as e:
            if e.code != RETRY_HEAD:
                raise

        self.logger.debug(f"Retrying HEAD for bucket {bucket_name} after region redirect")
        try:
            return self.execute("HEAD", bucket_name, object_name, region, headers, query_params)
        except StorageError as e:
            if e.code != RETRY_HEAD:
                raise
            code, message = self._redirect_code("HEAD", e.response, bucket_name, False)
            raise e.with_code(code, message) from e

    def get_region(self, bucket_name: Optional[str] = None, region: Optional[str] = None) -> str:
        """リクエストに使うリージョンを決める"""
        if region is not None:
            if self.base_url.region is not None and region != self.base_url.region:
                raise argument_error(
                    f"region must be {self.base_url.region}, but passed {region}"
                )
            return region

        if self.base_url.region:
            return self.base_url.region

        if not bucket_name or self.credentials() is None:
            return DEFAULT_REGION

        cached = self.region_cache.get(bucket_name)
        if cached:
            return cached

        response = self.url_open(
            "GET", DEFAULT_REGION, bucket_name=bucket_name, query_params={"location": ""},
        )
        location = unmarshal(response.data).text
        if not location:
            region = DEFAULT_REGION
        elif location == "EU":
            region = "eu-west-1"
        else:
            region = location

        self.region_cache.set(bucket_name, region)
        self.logger.debug(f"Resolved region of bucket {bucket_name}: {region}")
        return region
