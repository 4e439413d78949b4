"""サーバーサイド暗号化の指定"""
import base64
import hashlib
import json
from typing import Dict, Optional

from ..core.errors import argument_error


class Sse:
    """サーバーサイド暗号化の基底クラス"""

    def headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def tls_required(self) -> bool:
        return True

    def copy_headers(self) -> Dict[str, str]:
        return {}


class SseCustomerKey(Sse):
    """SSE-C（利用者が指定する256bit鍵）"""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise argument_error("SSE-C keys need to be 256 bit base64 encoded")
        b64key = base64.b64encode(key).decode()
        md5key = base64.b64encode(hashlib.md5(key).digest()).decode()
        self._headers = {
            "X-Amz-Server-Side-Encryption-Customer-Algorithm": "AES256",
            "X-Amz-Server-Side-Encryption-Customer-Key": b64key,
            "X-Amz-Server-Side-Encryption-Customer-Key-MD5": md5key,
        }
        self._copy_headers = {
            "X-Amz-Copy-Source-Server-Side-Encryption-Customer-Algorithm": "AES256",
            "X-Amz-Copy-Source-Server-Side-Encryption-Customer-Key": b64key,
            "X-Amz-Copy-Source-Server-Side-Encryption-Customer-Key-MD5": md5key,
        }

    def headers(self) -> Dict[str, str]:
        return self._headers.copy()

    def copy_headers(self) -> Dict[str, str]:
        return self._copy_headers.copy()


class SseKms(Sse):
    """SSE-KMS"""

    def __init__(self, key: str, context: Optional[Dict[str, str]] = None):
        self._headers = {
            "X-Amz-Server-Side-Encryption-Aws-Kms-Key-Id": key,
            "X-Amz-Server-Side-Encryption": "aws:kms",
        }
        if context:
            data = json.dumps(context).encode()
            self._headers["X-Amz-Server-Side-Encryption-Context"] = base64.b64encode(data).decode()

    def headers(self) -> Dict[str, str]:
        return self._headers.copy()


class SseS3(Sse):
    """SSE-S3（サービス管理鍵）"""

    def headers(self) -> Dict[str, str]:
        return {"X-Amz-Server-Side-Encryption": "AES256"}

    def tls_required(self) -> bool:
        return False


def check_sse(sse: Optional[Sse], is_https: bool) -> None:
    """HTTPS が必要な暗号化指定を平文接続で使っていないか確認"""
    if sse is not None and sse.tls_required() and not is_https:
        raise argument_error(
            f"{type(sse).__name__} operations must be performed over a secure connection"
        )
