"""オブジェクトストレージクライアント"""
import io
import ipaddress
import json
import os
import re
from typing import BinaryIO, Dict, Iterable, List, Optional, Union
from urllib.parse import urlunsplit

import urllib3

from ..models.commonconfig import (
    CopySource,
    Directive,
    ObjectLockConfig,
    Retention,
    SseConfig,
    Tags,
    VersioningConfig,
    legal_hold_xml,
)
from ..models.config import UploadOptions
from ..models.datatypes import (
    Bucket,
    DeleteError,
    DeleteObject,
    ObjectInfo,
    ObjectStat,
    ObjectWriteResult,
    parse_list_buckets,
    to_iso8601,
)
from ..models.post_policy import PostPolicy
from ..models.sse import Sse, SseCustomerKey, check_sse
from ..utils.file_utils import existing_size, finalize_download, get_file_info, part_file_path, prepare_download
from ..utils.logger import LoggerManager, TraceSink
from ..utils.params import Headers, QueryParams
from ..utils.progress import ProgressTracker
from .constants import (
    DEFAULT_MAX_KEYS,
    DEFAULT_REGION,
    MAX_BUCKET_POLICY_SIZE,
    MAX_PRESIGN_EXPIRY,
    NO_SUCH_BUCKET,
    NO_SUCH_BUCKET_POLICY,
    NO_SUCH_OBJECT_LOCK_CONFIGURATION,
    NO_SUCH_TAG_SET,
    OBJECT_LOCK_CONFIGURATION_NOT_FOUND,
    SSE_CONFIGURATION_NOT_FOUND,
)
from .credentials import Provider
from .endpoint import BaseURL
from .errors import ErrorKind, StorageError, argument_error
from .executor import RequestExecutor
from .iterators import PageIterator, list_object_versions, list_objects_v1, list_objects_v2, remove_objects
from .multipart import MultipartUploader, ProgressCallback, stat_object
from .signer import check_expiry, presign_v4
from .xml_codec import Element, SubElement, find_text, marshal, unmarshal

_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")


def check_bucket_name(bucket_name: str) -> None:
    """バケット名の検証"""
    if not bucket_name:
        raise argument_error("bucket name cannot be empty")
    if not _BUCKET_NAME.match(bucket_name):
        raise argument_error(f"invalid bucket name '{bucket_name}'")
    if ".." in bucket_name or ".-" in bucket_name or "-." in bucket_name:
        raise argument_error(f"bucket name '{bucket_name}' contains invalid successive characters")
    try:
        ipaddress.ip_address(bucket_name)
    except ValueError:
        return
    raise argument_error(f"bucket name '{bucket_name}' must not be formatted as an IP address")


def check_object_name(object_name: str) -> None:
    if not object_name:
        raise argument_error("object name cannot be empty")


def _object_headers(
    content_type: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
    tags: Optional[Tags] = None,
    retention: Optional[Retention] = None,
    legal_hold: bool = False,
) -> Headers:
    headers = Headers()
    if content_type:
        headers.add("Content-Type", content_type)
    for key, value in (metadata or {}).items():
        if not key.lower().startswith("x-amz-"):
            key = "x-amz-meta-" + key
        headers.add(key, value)
    if tags:
        headers.add("x-amz-tagging", tags.to_query())
    if retention is not None:
        headers.add("x-amz-object-lock-mode", retention.mode)
        headers.add("x-amz-object-lock-retain-until-date", to_iso8601(retention.retain_until_date))
    if legal_hold:
        headers.add("x-amz-object-lock-legal-hold", "ON")
    return headers


class ObjectStorageClient:
    """S3互換オブジェクトストレージのクライアント

    スレッドセーフ。ClientBuilder から作成する。
    """

    def __init__(
        self,
        base_url: BaseURL,
        provider: Optional[Provider] = None,
        http: Optional[urllib3.PoolManager] = None,
        options: Optional[UploadOptions] = None,
    ):
        self.logger = LoggerManager.get_logger()
        self._base_url = base_url
        self._provider = provider
        self._executor = RequestExecutor(base_url, provider, http)
        self._uploader = MultipartUploader(self._executor, options)

    @classmethod
    def builder(cls):
        from .builder import ClientBuilder
        return ClientBuilder()

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    @property
    def region_cache(self):
        return self._executor.region_cache

    # --- クライアント設定 ---

    def set_app_info(self, app_name: str, app_version: str) -> None:
        self._executor.set_app_info(app_name, app_version)

    def trace_on(self, sink: TraceSink) -> None:
        self._executor.trace_on(sink)

    def trace_off(self) -> None:
        self._executor.trace_off()

    def enable_accelerate_endpoint(self) -> None:
        self._base_url.accelerate_host_flag = True

    def disable_accelerate_endpoint(self) -> None:
        self._base_url.accelerate_host_flag = False

    def enable_dualstack_endpoint(self) -> None:
        self._base_url.dualstack_host_flag = True

    def disable_dualstack_endpoint(self) -> None:
        self._base_url.dualstack_host_flag = False

    def enable_virtual_style_endpoint(self) -> None:
        self._base_url.virtual_style_flag = True

    def disable_virtual_style_endpoint(self) -> None:
        self._base_url.virtual_style_flag = False

    # --- バケット操作 ---

    def make_bucket(self, bucket_name: str, region: Optional[str] = None,
                    object_lock: bool = False) -> None:
        """バケットを作成（成功したらリージョンをキャッシュする）"""
        check_bucket_name(bucket_name)
        if self._base_url.region and region and region != self._base_url.region:
            raise argument_error(
                f"region must be {self._base_url.region}, but passed {region}"
            )
        location = region or self._base_url.region or DEFAULT_REGION

        body = None
        if location != DEFAULT_REGION:
            root = Element("CreateBucketConfiguration")
            SubElement(root, "LocationConstraint", location)
            body = marshal(root)
        headers = {"x-amz-bucket-object-lock-enabled": "true"} if object_lock else None

        self._executor.url_open(
            "PUT", location, bucket_name=bucket_name, headers=headers, body=body, trace_body=True,
        )
        self._executor.region_cache.set(bucket_name, location)
        self.logger.info(f"Created bucket {bucket_name} in {location}")

    def list_buckets(self) -> List[Bucket]:
        response = self._executor.execute("GET")
        return parse_list_buckets(unmarshal(response.data))

    def bucket_exists(self, bucket_name: str) -> bool:
        check_bucket_name(bucket_name)
        try:
            self._executor.execute_head(bucket_name)
            return True
        except StorageError as e:
            if e.code != NO_SUCH_BUCKET:
                raise
        return False

    def remove_bucket(self, bucket_name: str) -> None:
        check_bucket_name(bucket_name)
        self._executor.execute("DELETE", bucket_name)
        self._executor.region_cache.remove(bucket_name)
        self.logger.info(f"Removed bucket {bucket_name}")

    def _get_config(self, bucket_name: str, query: str, not_found_codes: Iterable[str],
                    object_name: Optional[str] = None, version_id: Optional[str] = None):
        """設定を取得（未設定を示すコードの場合は None）"""
        params = {query: ""}
        if version_id:
            params["versionId"] = version_id
        try:
            response = self._executor.execute(
                "GET", bucket_name, object_name, query_params=params,
            )
        except StorageError as e:
            if e.code in not_found_codes:
                return None
            raise
        return unmarshal(response.data)

    def _put_config(self, bucket_name: str, query: str, root, object_name: Optional[str] = None,
                    version_id: Optional[str] = None) -> None:
        params = {query: ""}
        if version_id:
            params["versionId"] = version_id
        self._executor.execute(
            "PUT", bucket_name, object_name, query_params=params,
            headers={"Content-Type": "application/xml"}, body=marshal(root), trace_body=True,
        )

    def _delete_config(self, bucket_name: str, query: str, object_name: Optional[str] = None,
                       version_id: Optional[str] = None) -> None:
        params = {query: ""}
        if version_id:
            params["versionId"] = version_id
        self._executor.execute("DELETE", bucket_name, object_name, query_params=params)

    def get_bucket_policy(self, bucket_name: str) -> str:
        """バケットポリシー（JSON文字列）。未設定の場合は空文字列"""
        check_bucket_name(bucket_name)
        try:
            response = self._executor.execute(
                "GET", bucket_name, query_params={"policy": ""}, preload_content=False,
            )
        except StorageError as e:
            if e.code == NO_SUCH_BUCKET_POLICY:
                return ""
            raise

        try:
            data = response.read(MAX_BUCKET_POLICY_SIZE + 1)
        finally:
            response.release_conn()
        if len(data) > MAX_BUCKET_POLICY_SIZE:
            raise StorageError(
                ErrorKind.INVALID_RESPONSE,
                f"bucket policy is bigger than {MAX_BUCKET_POLICY_SIZE} bytes",
                status=response.status,
                content_type=response.headers.get("content-type"),
            )
        return data.decode("utf-8")

    def set_bucket_policy(self, bucket_name: str, policy: Union[str, Dict]) -> None:
        check_bucket_name(bucket_name)
        if isinstance(policy, dict):
            policy = json.dumps(policy)
        self._executor.execute(
            "PUT", bucket_name, query_params={"policy": ""},
            headers={"Content-Type": "application/json"}, body=policy.encode("utf-8"),
            trace_body=True,
        )

    def delete_bucket_policy(self, bucket_name: str) -> None:
        check_bucket_name(bucket_name)
        self._delete_config(bucket_name, "policy")

    def get_bucket_tags(self, bucket_name: str) -> Tags:
        check_bucket_name(bucket_name)
        root = self._get_config(bucket_name, "tagging", (NO_SUCH_TAG_SET,))
        if root is None:
            return Tags.new_bucket_tags()
        return Tags.from_xml(root)

    def set_bucket_tags(self, bucket_name: str, tags: Tags) -> None:
        check_bucket_name(bucket_name)
        self._put_config(bucket_name, "tagging", tags.to_xml())

    def delete_bucket_tags(self, bucket_name: str) -> None:
        check_bucket_name(bucket_name)
        self._delete_config(bucket_name, "tagging")

    def get_bucket_encryption(self, bucket_name: str) -> Optional[SseConfig]:
        check_bucket_name(bucket_name)
        root = self._get_config(bucket_name, "encryption", (SSE_CONFIGURATION_NOT_FOUND,))
        return SseConfig.from_xml(root) if root is not None else None

    def set_bucket_encryption(self, bucket_name: str, config: SseConfig) -> None:
        check_bucket_name(bucket_name)
        self._put_config(bucket_name, "encryption", config.to_xml())

    def delete_bucket_encryption(self, bucket_name: str) -> None:
        check_bucket_name(bucket_name)
        try:
            self._delete_config(bucket_name, "encryption")
        except StorageError as e:
            if e.code != SSE_CONFIGURATION_NOT_FOUND:
                raise

    def get_bucket_versioning(self, bucket_name: str) -> VersioningConfig:
        check_bucket_name(bucket_name)
        return VersioningConfig.from_xml(self._get_config(bucket_name, "versioning", ()))

    def set_bucket_versioning(self, bucket_name: str, config: VersioningConfig) -> None:
        check_bucket_name(bucket_name)
        self._put_config(bucket_name, "versioning", config.to_xml())

    def get_object_lock_config(self, bucket_name: str) -> Optional[ObjectLockConfig]:
        check_bucket_name(bucket_name)
        root = self._get_config(
            bucket_name, "object-lock", (OBJECT_LOCK_CONFIGURATION_NOT_FOUND,),
        )
        return ObjectLockConfig.from_xml(root) if root is not None else None

    def set_object_lock_config(self, bucket_name: str, config: ObjectLockConfig) -> None:
        check_bucket_name(bucket_name)
        self._put_config(bucket_name, "object-lock", config.to_xml())

    def delete_object_lock_config(self, bucket_name: str) -> None:
        """既定の保持設定を取り除く（オブジェクトロック自体は無効にできない）"""
        self.set_object_lock_config(bucket_name, ObjectLockConfig())

    # --- オブジェクト操作 ---

    def stat_object(self, bucket_name: str, object_name: str, version_id: Optional[str] = None,
                    ssec: Optional[SseCustomerKey] = None) -> ObjectStat:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        return stat_object(self._executor, bucket_name, object_name, version_id, ssec)

    def get_object(self, bucket_name: str, object_name: str, offset: int = 0,
                   length: Optional[int] = None, version_id: Optional[str] = None,
                   ssec: Optional[SseCustomerKey] = None,
                   request_headers: Optional[Dict[str, str]] = None):
        """オブジェクトのデータをストリームで返す

        返されたレスポンスは呼び出し側で close() と release_conn() を行うこと。
        """
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        check_sse(ssec, self._base_url.is_https)
        if offset < 0:
            raise argument_error("offset should be zero or greater")
        if length is not None and length <= 0:
            raise argument_error("length should be greater than zero")

        headers = Headers(request_headers)
        if ssec is not None:
            headers.extend(ssec.headers())
        if length is not None:
            headers.set("Range", f"bytes={offset}-{offset + length - 1}")
        elif offset:
            headers.set("Range", f"bytes={offset}-")

        return self._executor.execute(
            "GET", bucket_name, object_name, headers=headers,
            query_params={"versionId": version_id} if version_id else None,
            preload_content=False,
        )

    def download_object(self, bucket_name: str, object_name: str, file_path: str,
                        version_id: Optional[str] = None, ssec: Optional[SseCustomerKey] = None,
                        overwrite: bool = False) -> ObjectStat:
        """オブジェクトをファイルに保存

        <file_path>.<etag>.part に書き込み、サイズを確認してから置き換える。
        同じETagの途中ファイルがあれば続きから取得する。
        """
        prepare_download(file_path, overwrite)
        stat = self.stat_object(bucket_name, object_name, version_id, ssec)
        part_path = part_file_path(file_path, stat.etag)

        offset = existing_size(part_path)
        if offset > stat.size:
            os.remove(part_path)
            offset = 0

        if offset < stat.size:
            self.logger.info(
                f"Downloading {bucket_name}/{object_name} to {file_path} from offset {offset}"
            )
            response = self.get_object(
                bucket_name, object_name, offset=offset, version_id=version_id, ssec=ssec,
                request_headers={"If-Match": f'"{stat.etag}"'} if stat.etag else None,
            )
            try:
                with open(part_path, "ab") as file:
                    for chunk in response.stream(1024 * 1024):
                        file.write(chunk)
            finally:
                response.close()
                response.release_conn()

        downloaded = existing_size(part_path)
        if downloaded != stat.size:
            raise StorageError(
                ErrorKind.INVALID_RESPONSE,
                f"{part_path}: unexpected data written; expected = {stat.size}, got = {downloaded}",
            )
        finalize_download(part_path, file_path)
        self.logger.info(f"Successfully downloaded {bucket_name}/{object_name} to {file_path}")
        return stat

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: Union[bytes, BinaryIO],
        length: Optional[int] = None,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        sse: Optional[Sse] = None,
        tags: Optional[Tags] = None,
        retention: Optional[Retention] = None,
        legal_hold: bool = False,
        part_size: int = 0,
        progress: Optional[ProgressCallback] = None,
    ) -> ObjectWriteResult:
        """データをアップロード（大きい場合は自動でマルチパート）"""
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        if isinstance(data, (bytes, bytearray)):
            if length is None:
                length = len(data)
            data = io.BytesIO(data)
        elif not callable(getattr(data, "read", None)):
            raise argument_error("data must be bytes or a readable binary stream")

        headers = _object_headers(content_type, metadata, tags, retention, legal_hold)
        return self._uploader.put_object(
            bucket_name, object_name, data, length, part_size, headers, sse, progress,
        )

    def upload_file(
        self,
        bucket_name: str,
        object_name: str,
        file_path: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        sse: Optional[Sse] = None,
        tags: Optional[Tags] = None,
        part_size: int = 0,
        show_progress: bool = False,
    ) -> ObjectWriteResult:
        """ファイルをアップロード"""
        file_info = get_file_info(file_path)
        tracker = ProgressTracker(file_info.size, object_name) if show_progress else None
        with open(file_path, "rb") as file:
            result = self.put_object(
                bucket_name, object_name, file, file_info.size,
                content_type=content_type or "application/octet-stream",
                metadata=metadata, sse=sse, tags=tags, part_size=part_size, progress=tracker,
            )
        if tracker:
            tracker.complete()
        self.logger.info(f"Successfully uploaded {file_path} to {bucket_name}/{object_name}")
        return result

    def copy_object(
        self,
        bucket_name: str,
        object_name: str,
        source: CopySource,
        metadata: Optional[Dict[str, str]] = None,
        sse: Optional[Sse] = None,
        tags: Optional[Tags] = None,
        metadata_directive: Optional[Directive] = None,
        tagging_directive: Optional[Directive] = None,
    ) -> ObjectWriteResult:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        headers = _object_headers(metadata=metadata, tags=tags)
        return self._uploader.copy_object(
            bucket_name, object_name, source, headers, sse,
            metadata_directive, tagging_directive,
        )

    def compose_object(
        self,
        bucket_name: str,
        object_name: str,
        sources: List[CopySource],
        metadata: Optional[Dict[str, str]] = None,
        sse: Optional[Sse] = None,
        tags: Optional[Tags] = None,
    ) -> ObjectWriteResult:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        headers = _object_headers(metadata=metadata, tags=tags)
        return self._uploader.compose_object(bucket_name, object_name, sources, headers, sse)

    def remove_object(self, bucket_name: str, object_name: str, version_id: Optional[str] = None,
                      bypass_governance_mode: bool = False) -> None:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        headers = {"x-amz-bypass-governance-retention": "true"} if bypass_governance_mode else None
        self._executor.execute(
            "DELETE", bucket_name, object_name, headers=headers,
            query_params={"versionId": version_id} if version_id else None,
        )

    def remove_objects(self, bucket_name: str, objects: Iterable[Union[DeleteObject, str]],
                       bypass_governance_mode: bool = False) -> PageIterator[DeleteError]:
        """オブジェクトを一括削除し、削除に失敗したキーを遅延して返す"""
        check_bucket_name(bucket_name)
        return remove_objects(self._executor, bucket_name, objects, bypass_governance_mode)

    def list_objects(
        self,
        bucket_name: str,
        prefix: Optional[str] = None,
        recursive: bool = False,
        start_after: Optional[str] = None,
        include_user_metadata: bool = False,
        include_version: bool = False,
        use_api_v1: bool = False,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> PageIterator[ObjectInfo]:
        """オブジェクトを遅延して一覧する"""
        check_bucket_name(bucket_name)
        delimiter = None if recursive else "/"
        if include_version:
            return list_object_versions(
                self._executor, bucket_name, prefix, delimiter, start_after, max_keys=max_keys,
            )
        if use_api_v1:
            return list_objects_v1(
                self._executor, bucket_name, prefix, delimiter, start_after, max_keys,
            )
        return list_objects_v2(
            self._executor, bucket_name, prefix, delimiter, start_after, max_keys,
            include_user_metadata=include_user_metadata,
        )

    # --- オブジェクトの設定 ---

    def get_object_tags(self, bucket_name: str, object_name: str,
                        version_id: Optional[str] = None) -> Tags:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        root = self._get_config(
            bucket_name, "tagging", (NO_SUCH_TAG_SET,), object_name, version_id,
        )
        if root is None:
            return Tags.new_object_tags()
        return Tags.from_xml(root, for_object=True)

    def set_object_tags(self, bucket_name: str, object_name: str, tags: Tags,
                        version_id: Optional[str] = None) -> None:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        self._put_config(bucket_name, "tagging", tags.to_xml(), object_name, version_id)

    def delete_object_tags(self, bucket_name: str, object_name: str,
                           version_id: Optional[str] = None) -> None:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        self._delete_config(bucket_name, "tagging", object_name, version_id)

    def get_object_retention(self, bucket_name: str, object_name: str,
                             version_id: Optional[str] = None) -> Optional[Retention]:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        root = self._get_config(
            bucket_name, "retention", (NO_SUCH_OBJECT_LOCK_CONFIGURATION,),
            object_name, version_id,
        )
        return Retention.from_xml(root) if root is not None else None

    def set_object_retention(self, bucket_name: str, object_name: str, retention: Retention,
                             version_id: Optional[str] = None) -> None:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        self._put_config(bucket_name, "retention", retention.to_xml(), object_name, version_id)

    def enable_object_legal_hold(self, bucket_name: str, object_name: str,
                                 version_id: Optional[str] = None) -> None:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        self._put_config(bucket_name, "legal-hold", legal_hold_xml(True), object_name, version_id)

    def disable_object_legal_hold(self, bucket_name: str, object_name: str,
                                  version_id: Optional[str] = None) -> None:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        self._put_config(bucket_name, "legal-hold", legal_hold_xml(False), object_name, version_id)

    def is_object_legal_hold_enabled(self, bucket_name: str, object_name: str,
                                     version_id: Optional[str] = None) -> bool:
        check_bucket_name(bucket_name)
        check_object_name(object_name)
        root = self._get_config(
            bucket_name, "legal-hold", (NO_SUCH_OBJECT_LOCK_CONFIGURATION,),
            object_name, version_id,
        )
        return root is not None and find_text(root, "Status") == "ON"

    # --- 署名付きURL ---

    def get_presigned_url(
        self,
        method: str,
        bucket_name: str,
        object_name: Optional[str] = None,
        expires: int = MAX_PRESIGN_EXPIRY,
        response_headers: Optional[Dict[str, str]] = None,
        version_id: Optional[str] = None,
        extra_query_params: Optional[Dict[str, str]] = None,
    ) -> str:
        """署名付きURLを返す（匿名クライアントでは署名しないURL）"""
        check_expiry(expires)
        check_bucket_name(bucket_name)

        query = QueryParams()
        query.extend(extra_query_params)
        query.extend(response_headers)
        if version_id:
            query.add("versionId", version_id)

        region = self._executor.get_region(bucket_name)
        url = self._base_url.build(method, region, bucket_name, object_name, query)
        credentials = self._executor.credentials()
        if credentials is None:
            return urlunsplit(url)
        return presign_v4(method, urlunsplit(url), region, url.netloc, credentials, expires)

    def presigned_get_object(self, bucket_name: str, object_name: str,
                             expires: int = MAX_PRESIGN_EXPIRY,
                             response_headers: Optional[Dict[str, str]] = None,
                             version_id: Optional[str] = None) -> str:
        check_object_name(object_name)
        return self.get_presigned_url(
            "GET", bucket_name, object_name, expires, response_headers, version_id,
        )

    def presigned_put_object(self, bucket_name: str, object_name: str,
                             expires: int = MAX_PRESIGN_EXPIRY) -> str:
        check_object_name(object_name)
        return self.get_presigned_url("PUT", bucket_name, object_name, expires)

    def presigned_post_policy(self, policy: PostPolicy) -> Dict[str, str]:
        """ブラウザからのPOSTアップロード用フォームデータ"""
        credentials = self._executor.credentials()
        if credentials is None:
            raise argument_error("anonymous access does not require presigned post form-data")
        region = self._executor.get_region(policy.bucket_name)
        return policy.form_data(credentials, region)
