"""マルチパートアップロードとサーバーサイドコピー／合成"""
import io
from typing import BinaryIO, Callable, List, Optional, Sequence

from ..models.commonconfig import ComposeSource, CopySource, Directive
from ..models.config import UploadOptions
from ..models.datatypes import MultipartUploadSession, ObjectStat, ObjectWriteResult, Part, strip_etag
from ..models.sse import Sse, SseCustomerKey, check_sse
from ..utils.logger import LoggerManager
from ..utils.params import Headers, PairsLike, merge
from .constants import MAX_MULTIPART_COUNT, MAX_MULTIPART_OBJECT_SIZE, MAX_PART_SIZE, MIN_PART_SIZE, UPLOAD_ID
from .errors import StorageError, argument_error, internal_error
from .executor import RequestExecutor, parse_error_info, response_headers
from .transfer import get_part_info
from .xml_codec import Element, SubElement, find_text, marshal, unmarshal, validate

ProgressCallback = Callable[[int], None]


def stat_object(executor: RequestExecutor, bucket_name: str, object_name: str,
                version_id: Optional[str] = None, ssec: Optional[SseCustomerKey] = None,
                region: Optional[str] = None) -> ObjectStat:
    """HEAD でオブジェクト情報を取得"""
    check_sse(ssec, executor.base_url.is_https)
    headers = ssec.headers() if ssec else None
    query = {"versionId": version_id} if version_id else None
    response = executor.execute_head(bucket_name, object_name, region, headers, query)
    return ObjectStat.from_headers(bucket_name, object_name, response_headers(response))


def _read_fully(data: BinaryIO, size: int) -> bytes:
    buf = io.BytesIO()
    remaining = size
    while remaining > 0:
        chunk = data.read(remaining)
        if not chunk:
            break
        buf.write(chunk)
        remaining -= len(chunk)
    return buf.getvalue()


def _is_seekable(data) -> bool:
    seekable = getattr(data, "seekable", None)
    return callable(seekable) and seekable()


class MultipartUploader:
    """オブジェクトのアップロード状態機械

    単一PUT、または create → パート送信 → complete を実行し、
    途中で失敗した場合は abort してから元のエラーを送出する。
    パートは順番に1つずつ送信する。
    """

    def __init__(self, executor: RequestExecutor, options: Optional[UploadOptions] = None):
        self.executor = executor
        self.options = options or UploadOptions()
        self.logger = LoggerManager.get_logger()

    # --- 低レベルAPI ---

    def create_multipart_upload(self, bucket_name: str, object_name: str,
                                headers: PairsLike = None,
                                region: Optional[str] = None) -> MultipartUploadSession:
        region = self.executor.get_region(bucket_name, region)
        response = self.executor.execute(
            "POST", bucket_name, object_name, region,
            headers=headers, query_params={"uploads": ""},
        )
        upload_id = find_text(unmarshal(response.data), "UploadId")
        if not upload_id:
            raise internal_error("no upload ID in create multipart upload response")
        self.logger.info(f"Created multipart upload {upload_id} for {bucket_name}/{object_name}")
        return MultipartUploadSession(upload_id, bucket_name, object_name, region)

    def _part_query(self, session: MultipartUploadSession, part_number: int):
        return [("partNumber", str(part_number)), (UPLOAD_ID, session.upload_id)]

    def upload_part(self, session: MultipartUploadSession, part_number: int, data: bytes,
                    headers: PairsLike = None) -> Part:
        response = self.executor.execute(
            "PUT", session.bucket_name, session.object_name, session.region,
            headers=headers, query_params=self._part_query(session, part_number), body=data,
        )
        self.logger.debug(
            f"Uploaded part {part_number} ({len(data)} bytes) of upload {session.upload_id}"
        )
        return Part(part_number, strip_etag(response.headers.get("etag")), len(data))

    def upload_part_copy(self, session: MultipartUploadSession, part_number: int,
                         headers: PairsLike) -> Part:
        response = self.executor.execute(
            "PUT", session.bucket_name, session.object_name, session.region,
            headers=headers, query_params=self._part_query(session, part_number),
        )
        etag = find_text(unmarshal(response.data), "ETag")
        self.logger.debug(f"Copied part {part_number} of upload {session.upload_id}")
        return Part(part_number, strip_etag(etag))

    def complete_multipart_upload(self, session: MultipartUploadSession) -> ObjectWriteResult:
        root = Element("CompleteMultipartUpload")
        for part in session.parts:
            element = SubElement(root, "Part")
            SubElement(element, "PartNumber", str(part.part_number))
            SubElement(element, "ETag", f'"{part.etag}"')

        response = self.executor.execute(
            "POST", session.bucket_name, session.object_name, session.region,
            headers={"Content-Type": "application/xml"},
            query_params={UPLOAD_ID: session.upload_id},
            body=marshal(root),
            trace_body=True,
        )
        headers = response_headers(response)
        data = response.data

        # 200 でもボディがエラー文書の場合がある
        if data and validate(data, "Error"):
            info = parse_error_info(
                unmarshal(data), session.bucket_name, session.object_name,
            )
            raise StorageError.from_info(info, status=response.status, response=response)

        result = ObjectWriteResult.from_headers(
            session.bucket_name, session.object_name, headers, region=session.region,
        )
        if data and validate(data, "CompleteMultipartUploadResult"):
            result_root = unmarshal(data)
            result.etag = strip_etag(find_text(result_root, "ETag"))
            result.location = find_text(result_root, "Location")
        else:
            self.logger.warning(
                f"Unknown complete multipart upload response for upload {session.upload_id}"
            )

        self.logger.info(
            f"Completed multipart upload {session.upload_id} for "
            f"{session.bucket_name}/{session.object_name} with {len(session.parts)} parts"
        )
        return result

    def abort_multipart_upload(self, session: MultipartUploadSession) -> None:
        self.executor.execute(
            "DELETE", session.bucket_name, session.object_name, session.region,
            query_params={UPLOAD_ID: session.upload_id},
        )
        self.logger.info(f"Aborted multipart upload {session.upload_id}")

    def _abort_quietly(self, session: MultipartUploadSession) -> None:
        """abort の失敗は元のエラーを優先して握りつぶす"""
        try:
            self.abort_multipart_upload(session)
        except Exception as e:
            self.logger.warning(f"Failed to abort multipart upload {session.upload_id}: {e}")

    # --- アップロード ---

    def _put_single(self, bucket_name: str, object_name: str, data: bytes,
                    headers: Headers, region: Optional[str]) -> ObjectWriteResult:
        response = self.executor.execute(
            "PUT", bucket_name, object_name, region, headers=headers, body=data,
        )
        return ObjectWriteResult.from_headers(
            bucket_name, object_name, response_headers(response), region=region,
        )

    def _available_size(self, data: BinaryIO, size: int) -> int:
        """読み進めずに最大 size バイトまでの残量を調べる"""
        position = data.tell()
        try:
            return len(_read_fully(data, size))
        finally:
            data.seek(position)

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: BinaryIO,
        length: Optional[int] = None,
        part_size: int = 0,
        headers: PairsLike = None,
        sse: Optional[Sse] = None,
        progress: Optional[ProgressCallback] = None,
        region: Optional[str] = None,
    ) -> ObjectWriteResult:
        """ストリームをアップロード

        length が None の場合はサイズ不明として扱い、パートサイズ+1バイトを
        先読みして最終パートかどうかを判定する（ストリームはシーク可能であること）。
        """
        info = get_part_info(length, part_size or self.options.part_size)
        check_sse(sse, self.executor.base_url.is_https)

        unknown_size = info.part_count < 0
        if unknown_size and not _is_seekable(data):
            raise argument_error("stream of unknown length must be seekable")

        sse_headers = sse.headers() if sse is not None else None
        object_headers = merge(headers, sse_headers, Headers)
        # SSE-C はパート送信時だけ付ける
        if isinstance(sse, SseCustomerKey):
            create_headers = Headers(headers)
            part_headers = Headers(sse_headers)
        else:
            create_headers = object_headers
            part_headers = None

        session: Optional[MultipartUploadSession] = None
        try:
            part_number = 0
            while True:
                part_number += 1
                if part_number > MAX_MULTIPART_COUNT:
                    raise argument_error(
                        f"stream needs more than {MAX_MULTIPART_COUNT} parts of "
                        f"{info.part_size} bytes; use a larger part size"
                    )
                if unknown_size:
                    available = self._available_size(data, info.part_size + 1)
                    is_last = available <= info.part_size
                    size = available if is_last else info.part_size
                else:
                    is_last = part_number == info.part_count
                    size = length - (info.part_count - 1) * info.part_size if is_last else info.part_size

                chunk = _read_fully(data, size)
                if len(chunk) != size:
                    raise argument_error(
                        f"insufficient data; expected={size}, got={len(chunk)}"
                    )

                if part_number == 1 and is_last:
                    result = self._put_single(bucket_name, object_name, chunk, object_headers, region)
                    if progress is not None:
                        progress(len(chunk))
                    return result

                if session is None:
                    session = self.create_multipart_upload(
                        bucket_name, object_name, create_headers, region,
                    )
                session.add_part(self.upload_part(session, part_number, chunk, part_headers))
                if progress is not None:
                    progress(len(chunk))
                if is_last:
                    break

            return self.complete_multipart_upload(session)
        except Exception:
            if session is not None:
                self._abort_quietly(session)
            raise

    # --- コピー／合成 ---

    def _calculate_part_count(self, sources: List[ComposeSource]) -> int:
        object_size = 0
        part_count = 0
        for i, src in enumerate(sources, start=1):
            stat = stat_object(
                self.executor, src.bucket_name, src.object_name, src.version_id, src.ssec,
            )
            src.build_headers(stat.size, stat.etag)
            size = src.compose_size
            is_last = i == len(sources)

            if size < MIN_PART_SIZE and len(sources) != 1 and not is_last:
                raise argument_error(
                    f"source {src.bucket_name}/{src.object_name}: size {size} "
                    f"must be greater than {MIN_PART_SIZE}"
                )

            object_size += size
            if object_size > MAX_MULTIPART_OBJECT_SIZE:
                raise argument_error(
                    f"destination object size must be less than {MAX_MULTIPART_OBJECT_SIZE}"
                )

            if size > MAX_PART_SIZE:
                count, last_part_size = divmod(size, MAX_PART_SIZE)
                if last_part_size > 0:
                    count += 1
                else:
                    last_part_size = MAX_PART_SIZE
                if last_part_size < MIN_PART_SIZE and len(sources) != 1 and not is_last:
                    raise argument_error(
                        f"source {src.bucket_name}/{src.object_name}: for multipart split "
                        f"upload of {size}, last part size is less than {MIN_PART_SIZE}"
                    )
                part_count += count
            else:
                part_count += 1

            if part_count > MAX_MULTIPART_COUNT:
                raise argument_error(
                    f"compose sources create more than allowed multipart count {MAX_MULTIPART_COUNT}"
                )
        return part_count

    def compose_object(
        self,
        bucket_name: str,
        object_name: str,
        sources: Sequence[CopySource],
        headers: PairsLike = None,
        sse: Optional[Sse] = None,
        region: Optional[str] = None,
    ) -> ObjectWriteResult:
        """複数のオブジェクト（またはその範囲）をサーバーサイドで連結"""
        if not sources:
            raise argument_error("compose sources cannot be empty")
        check_sse(sse, self.executor.base_url.is_https)
        sources = [src if isinstance(src, ComposeSource) else ComposeSource.of(src) for src in sources]

        part_count = self._calculate_part_count(sources)
        first = sources[0]
        if part_count == 1 and first.offset is None and first.length is None:
            return self.copy_object(bucket_name, object_name, first, headers, sse, region=region)

        ssec = isinstance(sse, SseCustomerKey)
        create_headers = merge(headers, sse.headers() if sse is not None and not ssec else None, Headers)
        ssec_headers = sse.headers() if ssec else {}

        session = self.create_multipart_upload(bucket_name, object_name, create_headers, region)
        try:
            part_number = 0
            for src in sources:
                size = src.compose_size
                offset = src.offset or 0
                copy_headers = merge(src.headers, ssec_headers, Headers)

                if size <= MAX_PART_SIZE:
                    part_number += 1
                    part_headers = copy_headers.copy()
                    if src.offset is not None or src.length is not None:
                        part_headers.add("x-amz-copy-source-range", f"bytes={offset}-{offset + size - 1}")
                    session.add_part(self.upload_part_copy(session, part_number, part_headers))
                    continue

                while size > 0:
                    part_number += 1
                    chunk = min(size, MAX_PART_SIZE)
                    part_headers = copy_headers.copy()
                    part_headers.add("x-amz-copy-source-range", f"bytes={offset}-{offset + chunk - 1}")
                    session.add_part(self.upload_part_copy(session, part_number, part_headers))
                    offset += chunk
                    size -= chunk

            return self.complete_multipart_upload(session)
        except Exception:
            self._abort_quietly(session)
            raise

    def copy_object(
        self,
        bucket_name: str,
        object_name: str,
        source: CopySource,
        headers: PairsLike = None,
        sse: Optional[Sse] = None,
        metadata_directive: Optional[Directive] = None,
        tagging_directive: Optional[Directive] = None,
        region: Optional[str] = None,
    ) -> ObjectWriteResult:
        """サーバーサイドコピー（5GiBを超える場合や範囲指定は合成で行う）"""
        check_sse(sse, self.executor.base_url.is_https)
        if source.offset is not None or source.length is not None:
            return self.compose_object(bucket_name, object_name, [source], headers, sse, region)

        stat = stat_object(
            self.executor, source.bucket_name, source.object_name, source.version_id, source.ssec,
        )
        if stat.size > MAX_PART_SIZE:
            if metadata_directive == Directive.COPY:
                raise argument_error(
                    "COPY metadata directive is not applicable to source object size greater than 5 GiB"
                )
            if tagging_directive == Directive.COPY:
                raise argument_error(
                    "COPY tagging directive is not applicable to source object size greater than 5 GiB"
                )
            return self.compose_object(bucket_name, object_name, [source], headers, sse, region)

        copy_headers = merge(headers, sse.headers() if sse is not None else None, Headers)
        if metadata_directive is not None:
            copy_headers.set("x-amz-metadata-directive", metadata_directive.value)
        if tagging_directive is not None:
            copy_headers.set("x-amz-tagging-directive", tagging_directive.value)
        copy_headers.extend(source.gen_copy_headers())

        response = self.executor.execute(
            "PUT", bucket_name, object_name, region, headers=copy_headers,
        )
        etag = find_text(unmarshal(response.data), "ETag")
        return ObjectWriteResult.from_headers(
            bucket_name, object_name, response_headers(response), region=region, etag=etag,
        )
