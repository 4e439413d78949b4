"""ブラウザからのPOSTアップロード用ポリシー"""
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..core.credentials import Credentials
from ..core.errors import argument_error
from ..core.signer import post_presign_v4
from .datatypes import to_iso8601

_RESERVED_ELEMENTS = (
    "bucket",
    "x-amz-algorithm",
    "x-amz-credential",
    "x-amz-date",
    "policy",
    "x-amz-signature",
)
_EQ = "eq"
_STARTS_WITH = "starts-with"


def _trim_dollar(element: str) -> str:
    return element[1:] if element.startswith("$") else element


class PostPolicy:
    """POSTポリシーの条件を組み立てる

    条件は追加順を保ち、同じ要素を再度追加すると値を置き換える。
    """

    def __init__(self, bucket_name: str, expiration: datetime):
        if not bucket_name:
            raise argument_error("bucket name cannot be empty")
        if not isinstance(expiration, datetime):
            raise argument_error("expiration must be datetime type")
        self.bucket_name = bucket_name
        self.expiration = expiration
        self._conditions: Dict[str, Dict[str, str]] = {_EQ: {}, _STARTS_WITH: {}}
        self._content_length_range: Optional[Tuple[int, int]] = None

    def add_equals_condition(self, element: str, value: str) -> None:
        if not element:
            raise argument_error("condition element cannot be empty")
        element = _trim_dollar(element)
        if element in ("success_action_redirect", "redirect", "content-length-range"):
            raise argument_error(f"{element} is unsupported for equals condition")
        if element in _RESERVED_ELEMENTS:
            raise argument_error(f"{element} cannot be set")
        self._conditions[_EQ][element] = value

    def remove_equals_condition(self, element: str) -> None:
        if not element:
            raise argument_error("condition element cannot be empty")
        self._conditions[_EQ].pop(_trim_dollar(element), None)

    def add_starts_with_condition(self, element: str, value: str) -> None:
        """値が空文字列の場合は任意の内容に一致する"""
        if not element:
            raise argument_error("condition element cannot be empty")
        element = _trim_dollar(element)
        if (
            element in ("success_action_status", "content-length-range")
            or (element.startswith("x-amz-") and not element.startswith("x-amz-meta-"))
        ):
            raise argument_error(f"{element} is unsupported for starts-with condition")
        if element in _RESERVED_ELEMENTS:
            raise argument_error(f"{element} cannot be set")
        self._conditions[_STARTS_WITH][element] = value

    def remove_starts_with_condition(self, element: str) -> None:
        if not element:
            raise argument_error("condition element cannot be empty")
        self._conditions[_STARTS_WITH].pop(_trim_dollar(element), None)

    def add_content_length_range_condition(self, lower_limit: int, upper_limit: int) -> None:
        if lower_limit < 0:
            raise argument_error("lower limit cannot be negative number")
        if upper_limit < 0:
            raise argument_error("upper limit cannot be negative number")
        if lower_limit > upper_limit:
            raise argument_error("lower limit cannot be greater than upper limit")
        self._content_length_range = (lower_limit, upper_limit)

    def remove_content_length_range_condition(self) -> None:
        self._content_length_range = None

    def policy(self) -> Dict:
        """署名前のポリシー文書"""
        conditions = [[_EQ, "$bucket", self.bucket_name]]
        for condition, elements in self._conditions.items():
            for element, value in elements.items():
                conditions.append([condition, "$" + element, value])
        if self._content_length_range is not None:
            lower, upper = self._content_length_range
            conditions.append(["content-length-range", lower, upper])
        return {"expiration": to_iso8601(self.expiration), "conditions": conditions}

    def form_data(self, credentials: Credentials, region: str) -> Dict[str, str]:
        """フォームに埋め込むフィールド（policy と x-amz-signature など）を返す"""
        if credentials is None:
            raise argument_error("credentials cannot be None")
        if not region:
            raise argument_error("region cannot be empty")
        if "key" not in self._conditions[_EQ] and "key" not in self._conditions[_STARTS_WITH]:
            raise argument_error("key condition must be set")
        return post_presign_v4(self.policy(), credentials, region)
