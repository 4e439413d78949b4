"""一覧取得と一括削除の遅延イテレーター"""
import itertools
from typing import Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union
from urllib.parse import unquote_plus

from ..models.datatypes import DeleteError, DeleteObject, ObjectInfo, Page, Result
from ..utils.logger import LoggerManager
from .constants import DEFAULT_MAX_KEYS, MAX_DELETE_BATCH
from .errors import ErrorKind, StorageError, argument_error
from .executor import RequestExecutor
from .xml_codec import Element, SubElement, find_all, find_text, marshal, unmarshal

T = TypeVar("T")
Cursor = Optional[Dict[str, str]]
FetchPage = Callable[[Cursor], Page]


class PageIterator(Generic[T]):
    """ページ単位で取得する前方専用のイテレーター

    状態は (現在のページ, ページ内の位置, カーソル, 終了フラグ, 保留中のエラー)。
    最初の has_next() / next() まで通信しない。ページ取得が失敗した場合は
    エラー要素を1つ返して終了する。
    """

    def __init__(self, fetch: FetchPage, cursor: Cursor = None):
        self._fetch = fetch
        self._cursor = cursor
        self._buffer: List[T] = []
        self._index = 0
        self._done = False
        self._pending_error: Optional[BaseException] = None
        self._peeked: Optional[Result[T]] = None
        self.pages_fetched = 0

    def advance(self) -> Optional[Result[T]]:
        """次の要素を返す（終端では None）"""
        if self._peeked is not None:
            result, self._peeked = self._peeked, None
            return result

        while True:
            if self._index < len(self._buffer):
                item = self._buffer[self._index]
                self._index += 1
                return Result(value=item)

            if self._pending_error is not None:
                error, self._pending_error = self._pending_error, None
                self._done = True
                return Result(error=error)

            if self._done:
                return None

            try:
                page = self._fetch(self._cursor)
            except Exception as e:
                self._pending_error = e
                continue

            self.pages_fetched += 1
            # 1ページ内は contents → delete marker → prefix の順に返す
            self._buffer = page.items + page.delete_markers + page.prefixes
            self._index = 0
            self._cursor = page.cursor
            self._done = not page.truncated

    def has_next(self) -> bool:
        if self._peeked is None:
            self._peeked = self.advance()
        return self._peeked is not None

    def __iter__(self) -> "PageIterator[T]":
        return self

    def __next__(self) -> Result[T]:
        result = self.advance()
        if result is None:
            raise StopIteration
        return result

    def close(self) -> None:
        """途中で打ち切る（以降の要素は返さない）"""
        self._done = True
        self._buffer = []
        self._index = 0
        self._peeked = None
        self._pending_error = None


def _decode(value: Optional[str], encoded: bool) -> Optional[str]:
    if value is None or not encoded:
        return value
    return unquote_plus(value)


def _list_query(prefix: Optional[str], delimiter: Optional[str], max_keys: int) -> Dict[str, str]:
    if max_keys <= 0 or max_keys > DEFAULT_MAX_KEYS:
        raise argument_error(f"max keys must be between 1 and {DEFAULT_MAX_KEYS}")
    query = {
        "delimiter": delimiter or "",
        "encoding-type": "url",
        "max-keys": str(max_keys),
        "prefix": prefix or "",
    }
    return query


def _parse_objects(bucket_name: str, root, tag: str, encoded: bool,
                   is_delete_marker: bool = False) -> List[ObjectInfo]:
    objects = []
    for element in find_all(root, tag):
        info = ObjectInfo.from_element(bucket_name, element, is_delete_marker)
        info.object_name = _decode(info.object_name, encoded)
        objects.append(info)
    return objects


def _parse_prefixes(bucket_name: str, root, encoded: bool) -> List[ObjectInfo]:
    prefixes = []
    for element in find_all(root, "CommonPrefixes"):
        info = ObjectInfo.prefix(bucket_name, element)
        info.object_name = _decode(info.object_name, encoded)
        prefixes.append(info)
    return prefixes


def _last_key(*groups: List[ObjectInfo]) -> Optional[str]:
    keys = [group[-1].object_name for group in groups if group]
    return max(keys) if keys else None


def _check_progress(previous: Cursor, cursor: Dict[str, str], truncated: bool) -> None:
    """切り詰められたページが前へ進む位置を返しているか確認"""
    if truncated and (not any(cursor.values()) or cursor == previous):
        raise StorageError(
            ErrorKind.INVALID_RESPONSE,
            f"truncated listing response has no next position: {cursor}",
        )


def list_objects_v2(
    executor: RequestExecutor,
    bucket_name: str,
    prefix: Optional[str] = None,
    delimiter: Optional[str] = None,
    start_after: Optional[str] = None,
    max_keys: int = DEFAULT_MAX_KEYS,
    fetch_owner: bool = False,
    include_user_metadata: bool = False,
    region: Optional[str] = None,
) -> PageIterator[ObjectInfo]:
    """ListObjectsV2（continuation-token 方式）"""
    base_query = _list_query(prefix, delimiter, max_keys)
    base_query["list-type"] = "2"
    if fetch_owner:
        base_query["fetch-owner"] = "true"
    if include_user_metadata:
        base_query["metadata"] = "true"

    def fetch(cursor: Cursor) -> Page:
        query = dict(base_query)
        query.update(cursor or {})
        response = executor.execute("GET", bucket_name, region=region, query_params=query)
        root = unmarshal(response.data)
        encoded = find_text(root, "EncodingType") == "url"
        items = _parse_objects(bucket_name, root, "Contents", encoded)
        prefixes = _parse_prefixes(bucket_name, root, encoded)
        truncated = find_text(root, "IsTruncated") == "true"
        token = find_text(root, "NextContinuationToken")
        if token:
            next_cursor = {"continuation-token": token}
        else:
            next_cursor = {"start-after": _last_key(items, prefixes) or ""}
        _check_progress(cursor, next_cursor, truncated)
        return Page(items=items, prefixes=prefixes, truncated=truncated, cursor=next_cursor)

    return PageIterator(fetch, {"start-after": start_after} if start_after else None)


def list_objects_v1(
    executor: RequestExecutor,
    bucket_name: str,
    prefix: Optional[str] = None,
    delimiter: Optional[str] = None,
    marker: Optional[str] = None,
    max_keys: int = DEFAULT_MAX_KEYS,
    region: Optional[str] = None,
) -> PageIterator[ObjectInfo]:
    """ListObjects（marker 方式）

    NextMarker が返されない場合は最後に見たキーを次の marker にする。
    """
    base_query = _list_query(prefix, delimiter, max_keys)

    def fetch(cursor: Cursor) -> Page:
        query = dict(base_query)
        query.update(cursor or {})
        response = executor.execute("GET", bucket_name, region=region, query_params=query)
        root = unmarshal(response.data)
        encoded = find_text(root, "EncodingType") == "url"
        items = _parse_objects(bucket_name, root, "Contents", encoded)
        prefixes = _parse_prefixes(bucket_name, root, encoded)
        truncated = find_text(root, "IsTruncated") == "true"
        next_marker = _decode(find_text(root, "NextMarker"), encoded) or _last_key(items, prefixes)
        next_cursor = {"marker": next_marker or ""}
        _check_progress(cursor, next_cursor, truncated)
        return Page(
            items=items,
            prefixes=prefixes,
            truncated=truncated,
            cursor=next_cursor,
        )

    return PageIterator(fetch, {"marker": marker} if marker else None)


def list_object_versions(
    executor: RequestExecutor,
    bucket_name: str,
    prefix: Optional[str] = None,
    delimiter: Optional[str] = None,
    key_marker: Optional[str] = None,
    version_id_marker: Optional[str] = None,
    max_keys: int = DEFAULT_MAX_KEYS,
    region: Optional[str] = None,
) -> PageIterator[ObjectInfo]:
    """ListObjectVersions（key-marker と version-id-marker の二重カーソル）"""
    base_query = _list_query(prefix, delimiter, max_keys)
    base_query["versions"] = ""

    def fetch(cursor: Cursor) -> Page:
        query = dict(base_query)
        query.update(cursor or {})
        response = executor.execute("GET", bucket_name, region=region, query_params=query)
        root = unmarshal(response.data)
        encoded = find_text(root, "EncodingType") == "url"
        items = _parse_objects(bucket_name, root, "Version", encoded)
        markers = _parse_objects(bucket_name, root, "DeleteMarker", encoded, is_delete_marker=True)
        prefixes = _parse_prefixes(bucket_name, root, encoded)
        truncated = find_text(root, "IsTruncated") == "true"
        next_cursor = {
            "key-marker": _decode(find_text(root, "NextKeyMarker"), encoded) or "",
        }
        version_marker = find_text(root, "NextVersionIdMarker")
        if version_marker:
            next_cursor["version-id-marker"] = version_marker
        _check_progress(cursor, next_cursor, truncated)
        return Page(
            items=items,
            delete_markers=markers,
            prefixes=prefixes,
            truncated=truncated,
            cursor=next_cursor,
        )

    cursor = None
    if key_marker:
        cursor = {"key-marker": key_marker}
        if version_id_marker:
            cursor["version-id-marker"] = version_id_marker
    return PageIterator(fetch, cursor)


def delete_objects(
    executor: RequestExecutor,
    bucket_name: str,
    objects: List[DeleteObject],
    bypass_governance_mode: bool = False,
    region: Optional[str] = None,
) -> List[DeleteError]:
    """1回の一括削除リクエスト（最大1000キー）"""
    if len(objects) > MAX_DELETE_BATCH:
        raise argument_error(f"at most {MAX_DELETE_BATCH} objects can be deleted at once")

    root = Element("Delete")
    SubElement(root, "Quiet", "true")
    for obj in objects:
        element = SubElement(root, "Object")
        SubElement(element, "Key", obj.name)
        if obj.version_id:
            SubElement(element, "VersionId", obj.version_id)

    headers = {"Content-Type": "application/xml"}
    if bypass_governance_mode:
        headers["x-amz-bypass-governance-retention"] = "true"

    response = executor.execute(
        "POST", bucket_name, region=region, headers=headers,
        query_params={"delete": ""}, body=marshal(root), trace_body=True,
    )
    result = unmarshal(response.data)
    return [DeleteError.from_element(e) for e in find_all(result, "Error")]


def remove_objects(
    executor: RequestExecutor,
    bucket_name: str,
    objects: Iterable[Union[DeleteObject, str]],
    bypass_governance_mode: bool = False,
    region: Optional[str] = None,
) -> PageIterator[DeleteError]:
    """任意個のキーを1000件ずつに分けて削除し、失敗したキーを順に返す

    あるページでキー単位のエラーが返されても、残りのページの削除は続ける。
    """
    logger = LoggerManager.get_logger()
    source = iter(objects)

    def fetch(cursor: Cursor) -> Page:
        batch = [
            obj if isinstance(obj, DeleteObject) else DeleteObject(obj)
            for obj in itertools.islice(source, MAX_DELETE_BATCH)
        ]
        if not batch:
            return Page(truncated=False)
        errors = delete_objects(executor, bucket_name, batch, bypass_governance_mode, region)
        if errors:
            logger.warning(f"{len(errors)} of {len(batch)} objects failed to delete in {bucket_name}")
        return Page(items=errors, truncated=len(batch) == MAX_DELETE_BATCH)

    return PageIterator(fetch)
