"""認証情報プロバイダー"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..models.config import AssumeRoleConfig, CredentialsConfig
from ..utils.logger import LoggerManager
from .errors import ErrorInfo, StorageError

# 有効期限の直前で期限切れとみなす猶予
EXPIRY_SKEW = timedelta(seconds=10)


@dataclass(frozen=True)
class Credentials:
    """アクセスキー・シークレットキー・セッショントークン"""
    access_key: str
    secret_key: str
    session_token: Optional[str] = None
    expiration: Optional[datetime] = None

    def __post_init__(self):
        if not self.access_key:
            raise ValueError("access key must not be empty")
        if not self.secret_key:
            raise ValueError("secret key must not be empty")

    def is_expired(self) -> bool:
        if self.expiration is None:
            return False
        expiration = self.expiration
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) + EXPIRY_SKEW >= expiration


def credentials_error(message: str) -> StorageError:
    return StorageError.from_info(ErrorInfo(code="CredentialsError", message=message))


class Provider:
    """認証情報プロバイダーの基底クラス"""

    def retrieve(self) -> Credentials:
        raise NotImplementedError


class StaticProvider(Provider):
    """固定の認証情報を返すプロバイダー"""

    def __init__(self, access_key: str, secret_key: str, session_token: Optional[str] = None):
        self._credentials = Credentials(access_key, secret_key, session_token)

    def retrieve(self) -> Credentials:
        return self._credentials


class CachingProvider(Provider):
    """有効期限までキャッシュするプロバイダー

    同時に呼ばれても取得処理は1回だけ実行される。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._credentials: Optional[Credentials] = None

    def retrieve(self) -> Credentials:
        with self._lock:
            if self._credentials is None or self._credentials.is_expired():
                self._credentials = self._fetch()
            return self._credentials

    def _fetch(self) -> Credentials:
        raise NotImplementedError


class AssumeRoleProvider(CachingProvider):
    """STS AssumeRole で一時的な認証情報を取得するプロバイダー"""

    def __init__(self, config: AssumeRoleConfig, region: str,
                 profile: Optional[str] = None, sts_client=None):
        super().__init__()
        self.config = config
        self.region = region
        self.profile = profile
        self.logger = LoggerManager.get_logger()
        self._sts_client = sts_client

    def _get_sts_client(self):
        """STSクライアントを取得（必要に応じて作成）"""
        if self._sts_client is None:
            endpoint_url = self.config.sts_endpoint or f"https://sts.{self.region}.amazonaws.com"
            session = boto3.Session(profile_name=self.profile) if self.profile else boto3
            self._sts_client = session.client(
                'sts',
                region_name=self.region,
                endpoint_url=endpoint_url
            )
        return self._sts_client

    def _fetch(self) -> Credentials:
        assume_role_params = {
            'RoleArn': self.config.role_arn,
            'RoleSessionName': self.config.session_name,
            'DurationSeconds': self.config.duration_seconds,
        }
        if self.config.external_id:
            assume_role_params['ExternalId'] = self.config.external_id

        try:
            response = self._get_sts_client().assume_role(**assume_role_params)
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error assuming role: {e}")
            raise credentials_error(f"unable to assume role {self.config.role_arn}: {e}") from e

        credentials = response['Credentials']
        self.logger.info(f"Assumed role successfully: {self.config.role_arn}")
        return Credentials(
            access_key=credentials['AccessKeyId'],
            secret_key=credentials['SecretAccessKey'],
            session_token=credentials.get('SessionToken'),
            expiration=credentials.get('Expiration'),
        )


class SessionProvider(Provider):
    """boto3セッション（プロファイル・環境変数など）の認証情報チェーンを使うプロバイダー

    更新が必要な認証情報は botocore 側でスレッドセーフに更新される。
    """

    def __init__(self, profile: Optional[str] = None, session: Optional[boto3.Session] = None):
        self.logger = LoggerManager.get_logger()
        self.session = session or boto3.Session(profile_name=profile)

    def retrieve(self) -> Credentials:
        try:
            credentials = self.session.get_credentials()
        except BotoCoreError as e:
            self.logger.error(f"Error loading session credentials: {e}")
            raise credentials_error(f"unable to load session credentials: {e}") from e
        if credentials is None:
            self.logger.error("AWS credentials not available.")
            raise credentials_error("no credentials found in boto3 session")
        frozen = credentials.get_frozen_credentials()
        return Credentials(frozen.access_key, frozen.secret_key, frozen.token)


def provider_from_config(config: CredentialsConfig, region: Optional[str]) -> Optional[Provider]:
    """設定から認証情報プロバイダーを作成（None は匿名アクセス）"""
    if config.assume_role:
        return AssumeRoleProvider(config.assume_role, region or "us-east-1", config.profile)
    if config.profile:
        return SessionProvider(profile=config.profile)
    if config.access_key:
        return StaticProvider(config.access_key, config.secret_key, config.session_token)
    return None
