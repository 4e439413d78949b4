"""APIの結果を表すデータクラス"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Generic, List, Optional, TypeVar
from xml.etree.ElementTree import Element

from ..core.xml_codec import find_all, find_text
from ..utils.params import Headers

T = TypeVar("T")


def parse_iso8601(value: Optional[str]) -> Optional[datetime]:
    """2006-02-03T16:45:09.000Z 形式の日時を解析"""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def to_iso8601(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def strip_etag(etag: Optional[str]) -> Optional[str]:
    return etag.strip('"') if etag else etag


@dataclass
class Result(Generic[T]):
    """イテレーターの要素（値またはエラー）"""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def get(self) -> T:
        """値を返す。エラー要素の場合はそのエラーを送出する"""
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class Page(Generic[T]):
    """1回のページ取得の結果"""
    items: List[T] = field(default_factory=list)
    delete_markers: List[T] = field(default_factory=list)
    prefixes: List[T] = field(default_factory=list)
    truncated: bool = False
    cursor: Optional[Dict[str, str]] = None


@dataclass
class Bucket:
    """バケット情報"""
    name: str
    creation_date: Optional[datetime] = None


def parse_list_buckets(root: Element) -> List[Bucket]:
    return [
        Bucket(find_text(e, "Name"), parse_iso8601(find_text(e, "CreationDate")))
        for e in find_all(root, "Buckets/Bucket")
    ]


@dataclass
class ObjectInfo:
    """一覧で返されるオブジェクト（またはプレフィックス）"""
    bucket_name: str
    object_name: str
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    size: Optional[int] = None
    storage_class: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    version_id: Optional[str] = None
    is_latest: bool = False
    is_delete_marker: bool = False
    is_dir: bool = False
    metadata: Optional[Dict[str, str]] = None

    @classmethod
    def from_element(cls, bucket_name: str, element: Element,
                     is_delete_marker: bool = False) -> "ObjectInfo":
        size = find_text(element, "Size")
        metadata = None
        user_metadata = element.find("UserMetadata")
        if user_metadata is not None:
            metadata = {child.tag: child.text or "" for child in user_metadata}
        return cls(
            bucket_name=bucket_name,
            object_name=find_text(element, "Key"),
            last_modified=parse_iso8601(find_text(element, "LastModified")),
            etag=strip_etag(find_text(element, "ETag")),
            size=int(size) if size else None,
            storage_class=find_text(element, "StorageClass"),
            owner_id=find_text(element, "Owner/ID"),
            owner_name=find_text(element, "Owner/DisplayName"),
            version_id=find_text(element, "VersionId"),
            is_latest=find_text(element, "IsLatest") == "true",
            is_delete_marker=is_delete_marker,
            metadata=metadata,
        )

    @classmethod
    def prefix(cls, bucket_name: str, element: Element) -> "ObjectInfo":
        return cls(bucket_name, find_text(element, "Prefix"), is_dir=True)


@dataclass
class DeleteObject:
    """一括削除の対象"""
    name: str
    version_id: Optional[str] = None


@dataclass
class DeleteError:
    """一括削除で失敗したキーのエラー"""
    code: str
    message: Optional[str]
    object_name: Optional[str]
    version_id: Optional[str] = None

    @classmethod
    def from_element(cls, element: Element) -> "DeleteError":
        return cls(
            code=find_text(element, "Code"),
            message=find_text(element, "Message"),
            object_name=find_text(element, "Key"),
            version_id=find_text(element, "VersionId"),
        )


@dataclass
class Part:
    """アップロード済みパート"""
    part_number: int
    etag: str
    size: Optional[int] = None


@dataclass
class MultipartUploadSession:
    """進行中のマルチパートアップロード

    パート番号は1から連続し、昇順に追加される。
    """
    upload_id: str
    bucket_name: str
    object_name: str
    region: str
    parts: List[Part] = field(default_factory=list)

    def add_part(self, part: Part) -> None:
        expected = len(self.parts) + 1
        if part.part_number != expected:
            raise ValueError(f"part number must be {expected}, got {part.part_number}")
        self.parts.append(part)


@dataclass
class ObjectWriteResult:
    """PUT / コピー / 合成の結果"""
    bucket_name: str
    object_name: str
    version_id: Optional[str]
    etag: Optional[str]
    headers: Headers
    region: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_headers(cls, bucket_name: str, object_name: str, headers: Headers,
                     region: Optional[str] = None,
                     etag: Optional[str] = None) -> "ObjectWriteResult":
        return cls(
            bucket_name=bucket_name,
            object_name=object_name,
            version_id=headers.get("x-amz-version-id"),
            etag=strip_etag(etag if etag is not None else headers.get("etag")),
            headers=headers,
            region=region,
        )


@dataclass
class ObjectStat:
    """HEAD で取得したオブジェクト情報"""
    bucket_name: str
    object_name: str
    size: int
    etag: Optional[str]
    last_modified: Optional[datetime]
    content_type: Optional[str]
    version_id: Optional[str]
    is_delete_marker: bool
    metadata: Dict[str, str]
    headers: Headers

    @classmethod
    def from_headers(cls, bucket_name: str, object_name: str, headers: Headers) -> "ObjectStat":
        metadata = {}
        for key, value in headers:
            if key.lower().startswith("x-amz-meta-"):
                metadata[key[len("x-amz-meta-"):].lower()] = value
        return cls(
            bucket_name=bucket_name,
            object_name=object_name,
            size=int(headers.get("content-length", "0")),
            etag=strip_etag(headers.get("etag")),
            last_modified=parse_http_date(headers.get("last-modified")),
            content_type=headers.get("content-type"),
            version_id=headers.get("x-amz-version-id"),
            is_delete_marker=headers.get("x-amz-delete-marker") == "true",
            metadata=metadata,
            headers=headers,
        )

