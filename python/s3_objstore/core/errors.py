"""エラー種別と例外クラス"""
import enum
from dataclasses import dataclass, replace
from typing import Any, Optional

MAX_ERROR_SNIPPET = 1024


class ErrorKind(enum.Enum):
    """エラーの種別"""
    ARGUMENT = "argument"
    SERVICE = "service"
    INVALID_RESPONSE = "invalid_response"
    SERVER_FAILURE = "server_failure"
    TRANSPORT = "transport"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ErrorInfo:
    """サービスから返された（または合成された）構造化エラー"""
    code: str
    message: Optional[str] = None
    bucket: Optional[str] = None
    object_name: Optional[str] = None
    resource: Optional[str] = None
    request_id: Optional[str] = None
    host_id: Optional[str] = None


class StorageError(Exception):
    """ライブラリが送出する唯一の例外クラス

    呼び出し側は ``kind`` と ``code`` で分岐する。
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        info: Optional[ErrorInfo] = None,
        status: Optional[int] = None,
        content_type: Optional[str] = None,
        body: Optional[str] = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.info = info
        self.status = status
        self.content_type = content_type
        self.body = body
        self.response = response

    @property
    def code(self) -> Optional[str]:
        return self.info.code if self.info else None

    @classmethod
    def from_info(cls, info: ErrorInfo, status: Optional[int] = None,
                  response: Any = None) -> "StorageError":
        """ErrorInfoからサービスエラーを作成"""
        return cls(
            ErrorKind.SERVICE,
            f"S3 operation failed; code: {info.code}, message: {info.message}, "
            f"resource: {info.resource}, request_id: {info.request_id}, "
            f"host_id: {info.host_id}, bucket_name: {info.bucket}, "
            f"object_name: {info.object_name}",
            info=info,
            status=status,
            response=response,
        )

    def with_code(self, code: str, message: Optional[str]) -> "StorageError":
        """コードとメッセージだけを差し替えたサービスエラーを返す"""
        if self.info is None:
            raise internal_error("only service errors carry an error code")
        return StorageError.from_info(
            replace(self.info, code=code, message=message),
            status=self.status,
            response=self.response,
        )


def argument_error(message: str) -> StorageError:
    return StorageError(ErrorKind.ARGUMENT, message)


def invalid_response(status: int, content_type: Optional[str],
                     body: Optional[str]) -> StorageError:
    """不正なレスポンスボディのエラー（ボディは先頭1KiBまで保持）"""
    snippet = body[:MAX_ERROR_SNIPPET] if body else body
    return StorageError(
        ErrorKind.INVALID_RESPONSE,
        f"non-XML response from server; response code: {status}, "
        f"content-type: {content_type}, body: {snippet}",
        status=status,
        content_type=content_type,
        body=snippet,
    )


def server_failure(status: int) -> StorageError:
    return StorageError(
        ErrorKind.SERVER_FAILURE,
        f"server failed with HTTP status code {status}",
        status=status,
    )


def internal_error(message: str) -> StorageError:
    return StorageError(ErrorKind.INTERNAL, message)
