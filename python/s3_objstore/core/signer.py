"""AWS Signature Version 4 による署名

署名処理そのものは botocore.auth に委譲する。
"""
from typing import Any, Dict, Mapping

from botocore.auth import S3SigV4Auth, S3SigV4PostAuth, S3SigV4QueryAuth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials as BotoCredentials

from .constants import MAX_PRESIGN_EXPIRY, MIN_PRESIGN_EXPIRY
from .credentials import Credentials
from .errors import argument_error

SERVICE_NAME = "s3"


def _to_boto(credentials: Credentials) -> BotoCredentials:
    return BotoCredentials(
        credentials.access_key,
        credentials.secret_key,
        credentials.session_token,
    )


class _PayloadHashAuth(S3SigV4Auth):
    """呼び出し側が決めたペイロードハッシュで署名する S3SigV4Auth"""

    def __init__(self, credentials: BotoCredentials, region: str, content_sha256: str):
        super().__init__(credentials, SERVICE_NAME, region)
        self._content_sha256 = content_sha256

    def payload(self, request):
        return self._content_sha256


def sign_v4_s3(
    method: str,
    url: str,
    region: str,
    headers: Mapping[str, str],
    credentials: Credentials,
    content_sha256: str,
) -> Dict[str, str]:
    """リクエストヘッダーに Authorization などを付与して返す

    X-Amz-Date は署名した時点の時刻で上書きされる。
    """
    request = AWSRequest(method=method, url=url, headers=dict(headers))
    _PayloadHashAuth(_to_boto(credentials), region, content_sha256).add_auth(request)
    return dict(request.headers.items())


def check_expiry(expires: int) -> None:
    if not isinstance(expires, int) or isinstance(expires, bool):
        raise argument_error("expires must be an integer number of seconds")
    if not MIN_PRESIGN_EXPIRY <= expires <= MAX_PRESIGN_EXPIRY:
        raise argument_error(
            f"expires must be between {MIN_PRESIGN_EXPIRY} and "
            f"{MAX_PRESIGN_EXPIRY} seconds, got {expires}"
        )


def presign_v4(
    method: str,
    url: str,
    region: str,
    host: str,
    credentials: Credentials,
    expires: int,
) -> str:
    """署名をクエリ文字列に埋め込んだURLを返す"""
    check_expiry(expires)
    request = AWSRequest(method=method, url=url, headers={"Host": host})
    S3SigV4QueryAuth(_to_boto(credentials), SERVICE_NAME, region, expires=expires).add_auth(request)
    return request.url


def post_presign_v4(
    policy: Dict[str, Any],
    credentials: Credentials,
    region: str,
) -> Dict[str, str]:
    """POSTポリシーに署名し、フォームデータ用のフィールドを返す

    policy は ``expiration`` と ``conditions`` を持つ辞書。
    x-amz-algorithm / x-amz-credential / x-amz-date（と
    x-amz-security-token）の条件は署名時に追加される。
    """
    request = AWSRequest(method="POST")
    request.context["s3-presign-post-fields"] = {}
    request.context["s3-presign-post-policy"] = policy
    S3SigV4PostAuth(_to_boto(credentials), SERVICE_NAME, region).add_auth(request)
    return dict(request.context["s3-presign-post-fields"])
