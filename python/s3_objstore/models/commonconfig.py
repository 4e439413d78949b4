"""コピー元の指定とバケット／オブジェクト設定のデータクラス"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
from xml.etree.ElementTree import Element as ETElement

from ..core.errors import argument_error
from ..core.endpoint import s3_quote
from ..core.xml_codec import Element, SubElement, find_all, find_text
from .datatypes import parse_iso8601, to_iso8601
from .sse import SseCustomerKey

GOVERNANCE = "GOVERNANCE"
COMPLIANCE = "COMPLIANCE"
ENABLED = "Enabled"
SUSPENDED = "Suspended"
OFF = "Off"
DAYS = "Days"
YEARS = "Years"


class Directive(enum.Enum):
    """メタデータ／タグのコピー方法"""
    COPY = "COPY"
    REPLACE = "REPLACE"


class Tags(dict):
    """バケットまたはオブジェクトのタグ"""

    def __init__(self, for_object: bool = False):
        super().__init__()
        self._for_object = for_object

    @classmethod
    def new_bucket_tags(cls) -> "Tags":
        return cls(for_object=False)

    @classmethod
    def new_object_tags(cls) -> "Tags":
        return cls(for_object=True)

    @property
    def max_tags(self) -> int:
        return 10 if self._for_object else 50

    def __setitem__(self, key: str, value: str):
        if not key or len(key) > 128 or "&" in key:
            raise argument_error(f"invalid tag key '{key}'")
        if value is None or len(value) > 256 or "&" in value:
            raise argument_error(f"invalid tag value '{value}'")
        if key not in self and len(self) >= self.max_tags:
            raise argument_error(f"too many tags, at most {self.max_tags} are allowed")
        super().__setitem__(key, value)

    def update(self, *args, **kwargs):
        for key, value in dict(*args, **kwargs).items():
            self[key] = value

    def to_xml(self) -> ETElement:
        root = Element("Tagging")
        tag_set = SubElement(root, "TagSet")
        for key, value in self.items():
            tag = SubElement(tag_set, "Tag")
            SubElement(tag, "Key", key)
            SubElement(tag, "Value", value)
        return root

    def to_query(self) -> str:
        """x-amz-tagging ヘッダー用の文字列"""
        return "&".join(f"{s3_quote(k)}={s3_quote(v)}" for k, v in self.items())

    @classmethod
    def from_xml(cls, root: ETElement, for_object: bool = False) -> "Tags":
        tags = cls(for_object=for_object)
        for tag in find_all(root, "TagSet/Tag"):
            tags[find_text(tag, "Key")] = find_text(tag, "Value", "")
        return tags


@dataclass
class Retention:
    """オブジェクトの保持設定"""
    mode: str
    retain_until_date: datetime

    def __post_init__(self):
        if self.mode not in (GOVERNANCE, COMPLIANCE):
            raise argument_error(f"mode must be {GOVERNANCE} or {COMPLIANCE}")
        if not isinstance(self.retain_until_date, datetime):
            raise argument_error("retain until date must be datetime type")

    def to_xml(self) -> ETElement:
        root = Element("Retention")
        SubElement(root, "Mode", self.mode)
        SubElement(root, "RetainUntilDate", to_iso8601(self.retain_until_date))
        return root

    @classmethod
    def from_xml(cls, root: ETElement) -> "Retention":
        return cls(find_text(root, "Mode"), parse_iso8601(find_text(root, "RetainUntilDate")))


@dataclass
class VersioningConfig:
    """バケットのバージョニング設定"""
    status: str = OFF
    mfa_delete: Optional[str] = None

    def __post_init__(self):
        if self.status not in (ENABLED, SUSPENDED, OFF):
            raise argument_error(f"status must be {ENABLED}, {SUSPENDED} or {OFF}")
        if self.mfa_delete is not None and self.mfa_delete not in (ENABLED, "Disabled"):
            raise argument_error("MFA delete must be Enabled or Disabled")

    def to_xml(self) -> ETElement:
        if self.status == OFF:
            raise argument_error(f"versioning status cannot be set to {OFF}")
        root = Element("VersioningConfiguration")
        SubElement(root, "Status", self.status)
        if self.mfa_delete:
            SubElement(root, "MFADelete", self.mfa_delete)
        return root

    @classmethod
    def from_xml(cls, root: ETElement) -> "VersioningConfig":
        return cls(find_text(root, "Status") or OFF, find_text(root, "MFADelete"))


@dataclass
class ObjectLockConfig:
    """バケットのオブジェクトロック設定（既定の保持期間）"""
    mode: Optional[str] = None
    duration: Optional[int] = None
    duration_unit: Optional[str] = None

    def __post_init__(self):
        given = [v is not None for v in (self.mode, self.duration, self.duration_unit)]
        if any(given) and not all(given):
            raise argument_error("mode, duration and duration unit must be set together")
        if self.mode is not None and self.mode not in (GOVERNANCE, COMPLIANCE):
            raise argument_error(f"mode must be {GOVERNANCE} or {COMPLIANCE}")
        if self.duration_unit is not None and self.duration_unit not in (DAYS, YEARS):
            raise argument_error(f"duration unit must be {DAYS} or {YEARS}")

    def to_xml(self) -> ETElement:
        root = Element("ObjectLockConfiguration")
        SubElement(root, "ObjectLockEnabled", ENABLED)
        if self.mode:
            retention = SubElement(SubElement(root, "Rule"), "DefaultRetention")
            SubElement(retention, "Mode", self.mode)
            SubElement(retention, self.duration_unit, str(self.duration))
        return root

    @classmethod
    def from_xml(cls, root: ETElement) -> "ObjectLockConfig":
        retention = root.find("Rule/DefaultRetention")
        if retention is None:
            return cls()
        for unit in (DAYS, YEARS):
            value = find_text(retention, unit)
            if value:
                return cls(find_text(retention, "Mode"), int(value), unit)
        return cls()


@dataclass
class SseConfig:
    """バケットの既定の暗号化設定"""
    sse_algorithm: str
    kms_master_key_id: Optional[str] = None

    def __post_init__(self):
        if self.sse_algorithm not in ("AES256", "aws:kms"):
            raise argument_error("SSE algorithm must be AES256 or aws:kms")
        if self.sse_algorithm == "AES256" and self.kms_master_key_id:
            raise argument_error("KMS master key ID is only allowed for aws:kms")

    def to_xml(self) -> ETElement:
        root = Element("ServerSideEncryptionConfiguration")
        default = SubElement(SubElement(root, "Rule"), "ApplyServerSideEncryptionByDefault")
        SubElement(default, "SSEAlgorithm", self.sse_algorithm)
        if self.kms_master_key_id:
            SubElement(default, "KMSMasterKeyID", self.kms_master_key_id)
        return root

    @classmethod
    def from_xml(cls, root: ETElement) -> Optional["SseConfig"]:
        default = root.find("Rule/ApplyServerSideEncryptionByDefault")
        if default is None:
            return None
        return cls(find_text(default, "SSEAlgorithm"), find_text(default, "KMSMasterKeyID"))


class CopySource:
    """サーバーサイドコピーのコピー元"""

    def __init__(
        self,
        bucket_name: str,
        object_name: str,
        version_id: Optional[str] = None,
        ssec: Optional[SseCustomerKey] = None,
        offset: Optional[int] = None,
        length: Optional[int] = None,
        match_etag: Optional[str] = None,
        not_match_etag: Optional[str] = None,
        modified_since: Optional[datetime] = None,
        unmodified_since: Optional[datetime] = None,
    ):
        if not bucket_name:
            raise argument_error("source bucket name must not be empty")
        if not object_name:
            raise argument_error("source object name must not be empty")
        if offset is not None and offset < 0:
            raise argument_error("offset should be zero or greater")
        if length is not None and length <= 0:
            raise argument_error("length should be greater than zero")
        self.bucket_name = bucket_name
        self.object_name = object_name
        self.version_id = version_id
        self.ssec = ssec
        self.offset = offset
        self.length = length
        self.match_etag = match_etag
        self.not_match_etag = not_match_etag
        self.modified_since = modified_since
        self.unmodified_since = unmodified_since

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.bucket_name}/{self.object_name})"

    def gen_copy_headers(self) -> Dict[str, str]:
        """x-amz-copy-source と条件・SSE-Cのヘッダー"""
        source = s3_quote(f"/{self.bucket_name}/{self.object_name}", safe="/")
        if self.version_id:
            source += "?versionId=" + s3_quote(self.version_id)
        headers = {"x-amz-copy-source": source}
        if self.ssec:
            headers.update(self.ssec.copy_headers())
        if self.match_etag:
            headers["x-amz-copy-source-if-match"] = self.match_etag
        if self.not_match_etag:
            headers["x-amz-copy-source-if-none-match"] = self.not_match_etag
        if self.modified_since:
            headers["x-amz-copy-source-if-modified-since"] = _http_date(self.modified_since)
        if self.unmodified_since:
            headers["x-amz-copy-source-if-unmodified-since"] = _http_date(self.unmodified_since)
        return headers


class ComposeSource(CopySource):
    """合成のコピー元（stat 後にサイズとETagを確定する）"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.object_size: Optional[int] = None
        self.headers: Optional[Dict[str, str]] = None

    @classmethod
    def of(cls, source: CopySource) -> "ComposeSource":
        return cls(
            source.bucket_name, source.object_name, source.version_id, source.ssec,
            source.offset, source.length, source.match_etag, source.not_match_etag,
            source.modified_since, source.unmodified_since,
        )

    def build_headers(self, object_size: int, etag: str) -> None:
        """オブジェクトサイズに対して offset / length を検証してヘッダーを作る"""
        if self.offset is not None and self.offset >= object_size:
            raise argument_error(
                f"source {self.bucket_name}/{self.object_name}: offset {self.offset} "
                f"is beyond object size {object_size}"
            )
        if self.length is not None:
            if self.length > object_size:
                raise argument_error(
                    f"source {self.bucket_name}/{self.object_name}: length {self.length} "
                    f"is beyond object size {object_size}"
                )
            if (self.offset or 0) + self.length > object_size:
                raise argument_error(
                    f"source {self.bucket_name}/{self.object_name}: compose size "
                    f"{(self.offset or 0) + self.length} is beyond object size {object_size}"
                )
        self.object_size = object_size
        headers = self.gen_copy_headers()
        headers["x-amz-copy-source-if-match"] = self.match_etag or etag
        self.headers = headers

    @property
    def compose_size(self) -> int:
        """合成に使うバイト数"""
        if self.object_size is None:
            raise argument_error(f"{self!r}: build_headers() must be called first")
        if self.length is not None:
            return self.length
        return self.object_size - (self.offset or 0)


def _http_date(value: datetime) -> str:
    return value.strftime("%a, %d %b %Y %H:%M:%S GMT")


def legal_hold_xml(enabled: bool) -> ETElement:
    root = Element("LegalHold")
    SubElement(root, "Status", "ON" if enabled else "OFF")
    return root
