"""設定管理用のデータクラス"""
from dataclasses import dataclass, field
from typing import Optional
import json
import os
import re


@dataclass
class LoggingConfig:
    """ロギング設定"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class AssumeRoleConfig:
    """AssumeRole設定"""
    role_arn: str
    session_name: str
    external_id: Optional[str] = None
    duration_seconds: int = 3600
    sts_endpoint: Optional[str] = None

    def __post_init__(self):
        """AssumeRole設定のバリデーション"""
        arn_pattern = r'^arn:aws(-cn|-us-gov)?:iam::[0-9]{12}:role\/[a-zA-Z0-9+=,.@_/-]+$'
        if not re.match(arn_pattern, self.role_arn):
            raise ValueError(
                f"Invalid role_arn format: {self.role_arn}. "
                "Expected format: arn:aws:iam::ACCOUNT_ID:role/ROLE_NAME"
            )

        if not self.session_name or not self.session_name.strip():
            raise ValueError("session_name cannot be empty")

        # セッション名は2-64文字の英数字、アンダースコア、ハイフン、ピリオドのみ許可
        if not re.match(r'^[a-zA-Z0-9_.@=,-]{2,64}$', self.session_name):
            raise ValueError(
                f"Invalid session_name: {self.session_name}. "
                "Must be 2-64 characters long and contain only alphanumeric characters "
                "or any of _.@=,-"
            )

        # 900秒から43200秒の範囲
        if not (900 <= self.duration_seconds <= 43200):
            raise ValueError(
                f"Invalid duration_seconds: {self.duration_seconds}. "
                "Must be between 900 and 43200 seconds (15 minutes to 12 hours)"
            )


@dataclass
class CredentialsConfig:
    """認証情報の設定

    assume_role > profile > access_key の優先順で使用する。
    どれも無い場合は匿名アクセス。
    """
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    session_token: Optional[str] = None
    profile: Optional[str] = None
    assume_role: Optional[AssumeRoleConfig] = None

    def __post_init__(self):
        if self.assume_role:
            if isinstance(self.assume_role, dict):
                self.assume_role = AssumeRoleConfig(**self.assume_role)
            elif not isinstance(self.assume_role, AssumeRoleConfig):
                raise TypeError(
                    f"assume_role must be dict or AssumeRoleConfig, got {type(self.assume_role)}"
                )
        if self.access_key and self.secret_key is None:
            raise ValueError("secret_key must be provided with access_key")


@dataclass
class UploadOptions:
    """アップロードオプション"""
    part_size: int = 0  # 0 = オブジェクトサイズから自動決定


@dataclass
class ClientConfig:
    """S3クライアントの接続設定"""
    endpoint: str
    secure: bool = True
    region: Optional[str] = None
    # None の場合はエンドポイントから推定する
    virtual_style: Optional[bool] = None
    accelerate: Optional[bool] = None
    dualstack: Optional[bool] = None
    cert_check: bool = True
    timeout_seconds: int = 300
    max_pool_size: int = 10
    app_name: Optional[str] = None
    app_version: Optional[str] = None

    def __post_init__(self):
        if not self.endpoint or not self.endpoint.strip():
            raise ValueError("endpoint must be a non-empty string")
        if self.region is not None and not self.region:
            raise ValueError("region must be a non-empty string")
        if self.timeout_seconds <= 0:
            raise ValueError(f"Invalid timeout_seconds: {self.timeout_seconds}")
        if self.max_pool_size < 1:
            raise ValueError(f"Invalid max_pool_size: {self.max_pool_size}")
        if bool(self.app_name) != bool(self.app_version):
            raise ValueError("app_name and app_version must be given together")


@dataclass
class Config:
    """メイン設定クラス"""
    client: ClientConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    options: UploadOptions = field(default_factory=UploadOptions)

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """設定ファイルから読み込み"""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file {config_path} not found.")

        try:
            with open(config_path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except json.JSONDecodeError as e:
            raise ValueError(f"Error decoding JSON from {config_path}: {e}")

        if "client" not in data:
            raise ValueError(f"Missing 'client' section in {config_path}")

        try:
            return cls(
                client=ClientConfig(**data["client"]),
                logging=LoggingConfig(**data.get("logging", {})),
                credentials=CredentialsConfig(**data.get("credentials", {})),
                options=UploadOptions(**data.get("options", {})),
            )
        except TypeError as e:
            raise ValueError(f"Invalid configuration in {config_path}: {e}")
