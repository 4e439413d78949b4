"""エンドポイントURLの解決（バーチャルホスト形式／パス形式）"""
import ipaddress
import re
from typing import Optional
from urllib.parse import SplitResult, quote, urlsplit

from ..utils.params import ParamList
from .errors import argument_error

_HOST_LABEL = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


def s3_quote(value: str, safe: str = "") -> str:
    """S3の予約文字規則でパーセントエンコード

    英数字と ``-_.~`` 以外は全てエンコードする。``safe`` に含めた文字は残す。
    """
    return quote(value, safe=safe)


def _validate_host(host: str) -> None:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return
    except ValueError:
        pass

    if not 1 <= len(host) <= 253:
        raise argument_error(f"invalid hostname {host}")
    for label in host.split("."):
        if not 1 <= len(label) <= 63 or not _HOST_LABEL.match(label):
            raise argument_error(f"invalid hostname {host}")


def _is_aws_accelerate_host(host: str) -> bool:
    return host.startswith("s3-accelerate.")


def _is_aws_host(host: str) -> bool:
    return (
        (host.startswith("s3.") or _is_aws_accelerate_host(host))
        and (host.endswith(".amazonaws.com") or host.endswith(".amazonaws.com.cn"))
    )


def _extract_region(host: str) -> Optional[str]:
    """AWSホスト名からリージョンを取り出す

    s3.[us-east-2].amazonaws.com, s3.dualstack.[ca-central-1].amazonaws.com
    """
    tokens = host.split(".")
    token = tokens[1]
    if token == "dualstack":
        token = tokens[2]
    if token == "amazonaws":
        return None
    return token


class BaseURL:
    """クライアントのベースURLとアドレッシング設定"""

    def __init__(self, endpoint: str, secure: bool = True, region: Optional[str] = None):
        if not endpoint:
            raise argument_error("endpoint must be a non-empty string")

        if "://" in endpoint:
            url = urlsplit(endpoint)
            if url.scheme not in _DEFAULT_PORTS:
                raise argument_error(f"scheme in endpoint {endpoint} must be http or https")
            if url.path not in ("", "/") or url.query or url.fragment:
                raise argument_error(f"no path allowed in endpoint {endpoint}")
        else:
            url = urlsplit(("https://" if secure else "http://") + endpoint)

        host = url.hostname
        if not host:
            raise argument_error(f"invalid endpoint {endpoint}")
        _validate_host(host)
        try:
            port = url.port
        except ValueError:
            raise argument_error(f"port in endpoint {endpoint} must be in range of 1 to 65535")

        self.scheme = url.scheme
        self.port = port
        self.is_aws_host = _is_aws_host(host)
        self.is_aws_china_host = False
        self.accelerate_host_flag = False
        self.dualstack_host_flag = False
        region_in_url = None
        if self.is_aws_host:
            self.is_aws_china_host = host.endswith(".cn")
            self.accelerate_host_flag = _is_aws_accelerate_host(host)
            self.dualstack_host_flag = ".dualstack." in host
            region_in_url = _extract_region(host)
            host = "amazonaws.com.cn" if self.is_aws_china_host else "amazonaws.com"
            self.virtual_style_flag = True
        else:
            self.virtual_style_flag = host.endswith("aliyuncs.com")

        if ":" in host:
            host = f"[{host}]"
        self.host = host
        self.region = region or region_in_url

    @property
    def is_https(self) -> bool:
        return self.scheme == "https"

    def _netloc(self, host: str) -> str:
        if self.port is None or self.port == _DEFAULT_PORTS[self.scheme]:
            return host
        return f"{host}:{self.port}"

    def build(
        self,
        method: str,
        region: str,
        bucket_name: Optional[str] = None,
        object_name: Optional[str] = None,
        query_params: Optional[ParamList] = None,
    ) -> SplitResult:
        """リクエストURLを組み立てる"""
        if bucket_name is None and object_name is not None:
            raise argument_error(f"empty bucket name for object name {object_name}")

        host = self.host
        segments = []
        if bucket_name is not None:
            enforce_path_style = (
                # バケット作成は s3.amazonaws.com でパス形式が必要
                (method == "PUT" and object_name is None and not query_params)
                or (query_params is not None and "location" in query_params)
                # '.' を含むバケット名は証明書の検証に失敗する
                or ("." in bucket_name and self.is_https)
            )

            if self.is_aws_host:
                s3_domain = "s3."
                if self.accelerate_host_flag:
                    if "." in bucket_name:
                        raise argument_error(
                            f"bucket name '{bucket_name}' with '.' is not allowed "
                            "for accelerate endpoint"
                        )
                    if not enforce_path_style:
                        s3_domain = "s3-accelerate."
                domain = s3_domain + ("dualstack." if self.dualstack_host_flag else "")
                if enforce_path_style or not self.accelerate_host_flag:
                    domain += region + "."
                host = domain + host

            if enforce_path_style or not self.virtual_style_flag:
                segments.append(s3_quote(bucket_name))
            else:
                host = f"{bucket_name}.{host}"

            if object_name is not None:
                for token in object_name.split("/"):
                    if token in (".", ".."):
                        raise argument_error(
                            "object name with '.' or '..' path segment is not supported"
                        )
                segments.append(s3_quote(object_name, safe="/"))
        elif self.is_aws_host:
            host = f"s3.{region}.{host}"

        query = ""
        if query_params:
            query = "&".join(
                f"{s3_quote(key)}={s3_quote(value)}" for key, value in query_params
            )

        return SplitResult(self.scheme, self._netloc(host), "/" + "/".join(segments), query, "")
