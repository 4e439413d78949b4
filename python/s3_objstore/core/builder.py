"""クライアントの組み立て"""
from typing import Optional

import urllib3

from ..models.config import Config, UploadOptions
from .credentials import Provider, StaticProvider, provider_from_config
from .endpoint import BaseURL
from .errors import argument_error
from .executor import create_http_client


class ClientBuilder:
    """ObjectStorageClient を組み立てるビルダー

    各セッターは個別に値を検証し、フィールド間の整合性は build() で1回だけ確認する。
    """

    def __init__(self):
        self._base_url: Optional[BaseURL] = None
        self._region: Optional[str] = None
        self._provider: Optional[Provider] = None
        self._http: Optional[urllib3.PoolManager] = None
        self._app_info = None
        self._virtual_style: Optional[bool] = None
        self._accelerate: Optional[bool] = None
        self._dualstack: Optional[bool] = None
        self._timeout_seconds = 300
        self._max_pool_size = 10
        self._cert_check = True
        self._options = UploadOptions()

    def endpoint(self, endpoint: str, secure: bool = True) -> "ClientBuilder":
        """host, host:port, または http(s)://host[:port] 形式のエンドポイント"""
        self._base_url = BaseURL(endpoint, secure)
        return self

    def region(self, region: str) -> "ClientBuilder":
        if not region:
            raise argument_error("region must be a non-empty string")
        self._region = region
        return self

    def credentials(self, access_key: str, secret_key: str,
                    session_token: Optional[str] = None) -> "ClientBuilder":
        try:
            self._provider = StaticProvider(access_key, secret_key, session_token)
        except ValueError as e:
            raise argument_error(str(e)) from e
        return self

    def credentials_provider(self, provider: Optional[Provider]) -> "ClientBuilder":
        self._provider = provider
        return self

    def http_client(self, http: urllib3.PoolManager) -> "ClientBuilder":
        if http is None:
            raise argument_error("http client must not be None")
        self._http = http
        return self

    def app_info(self, app_name: str, app_version: str) -> "ClientBuilder":
        if not app_name or not app_version:
            raise argument_error("app name and app version must not be empty")
        self._app_info = (app_name, app_version)
        return self

    def virtual_style(self, enabled: bool) -> "ClientBuilder":
        self._virtual_style = enabled
        return self

    def accelerate(self, enabled: bool) -> "ClientBuilder":
        self._accelerate = enabled
        return self

    def dualstack(self, enabled: bool) -> "ClientBuilder":
        self._dualstack = enabled
        return self

    def timeout(self, seconds: int) -> "ClientBuilder":
        if seconds <= 0:
            raise argument_error(f"timeout must be positive, got {seconds}")
        self._timeout_seconds = seconds
        return self

    def max_pool_size(self, size: int) -> "ClientBuilder":
        if size < 1:
            raise argument_error(f"pool size must be positive, got {size}")
        self._max_pool_size = size
        return self

    def cert_check(self, enabled: bool) -> "ClientBuilder":
        self._cert_check = enabled
        return self

    def upload_options(self, options: UploadOptions) -> "ClientBuilder":
        self._options = options
        return self

    def build(self):
        """設定を検証してクライアントを作成"""
        from .client import ObjectStorageClient

        base_url = self._base_url
        if base_url is None:
            raise argument_error("endpoint must be provided")

        region = self._region or base_url.region
        if base_url.is_aws_china_host and not region:
            raise argument_error("region must be provided for Amazon S3 China endpoint")
        base_url.region = region

        if self._virtual_style is not None:
            base_url.virtual_style_flag = self._virtual_style
        if base_url.is_aws_host:
            if self._accelerate is not None:
                base_url.accelerate_host_flag = self._accelerate
            if self._dualstack is not None:
                base_url.dualstack_host_flag = self._dualstack

        http = self._http or create_http_client(
            self._timeout_seconds, self._max_pool_size, self._cert_check,
        )
        client = ObjectStorageClient(base_url, self._provider, http, self._options)
        if self._app_info:
            client.set_app_info(*self._app_info)
        return client

    @classmethod
    def from_config(cls, config: Config) -> "ClientBuilder":
        """設定ファイルの内容からビルダーを作成"""
        client = config.client
        builder = cls().endpoint(client.endpoint, client.secure)
        if client.region:
            builder.region(client.region)
        if client.virtual_style is not None:
            builder.virtual_style(client.virtual_style)
        if client.accelerate is not None:
            builder.accelerate(client.accelerate)
        if client.dualstack is not None:
            builder.dualstack(client.dualstack)
        if client.app_name:
            builder.app_info(client.app_name, client.app_version)
        builder.timeout(client.timeout_seconds)
        builder.max_pool_size(client.max_pool_size)
        builder.cert_check(client.cert_check)
        builder.credentials_provider(provider_from_config(config.credentials, client.region))
        builder.upload_options(config.options)
        return builder
