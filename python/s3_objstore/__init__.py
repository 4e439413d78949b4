"""S3互換オブジェクトストレージのクライアントライブラリ"""
from .core.builder import ClientBuilder
from .core.client import ObjectStorageClient
from .core.errors import ErrorKind, StorageError
from .models.config import Config
from .models.commonconfig import ComposeSource, CopySource, Directive, Retention, Tags
from .models.datatypes import DeleteObject, ObjectInfo, ObjectStat, ObjectWriteResult
from .models.post_policy import PostPolicy
from .models.sse import SseCustomerKey, SseKms, SseS3
from .utils.logger import LoggerManager, LoggerTraceSink, StreamTraceSink


def client_from_config(config_path: str = "config.json") -> ObjectStorageClient:
    """設定ファイルからクライアントを作成"""
    # 設定を読み込み
    config = Config.from_file(config_path)

    # ロガーをセットアップ
    logger = LoggerManager.setup(config.logging)

    client = ClientBuilder.from_config(config).build()
    logger.info(f"Object storage client initialized for {config.client.endpoint}")
    return client


__all__ = [
    'ClientBuilder',
    'ObjectStorageClient',
    'Config',
    'StorageError',
    'ErrorKind',
    'CopySource',
    'ComposeSource',
    'Directive',
    'Retention',
    'Tags',
    'DeleteObject',
    'ObjectInfo',
    'ObjectStat',
    'ObjectWriteResult',
    'PostPolicy',
    'SseCustomerKey',
    'SseKms',
    'SseS3',
    'LoggerTraceSink',
    'StreamTraceSink',
    'client_from_config',
]
