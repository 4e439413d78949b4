"""パートサイズとパート数の決定"""
from dataclasses import dataclass
from typing import Optional

from .constants import MAX_MULTIPART_COUNT, MAX_MULTIPART_OBJECT_SIZE, MAX_PART_SIZE, MIN_PART_SIZE
from .errors import argument_error


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


@dataclass(frozen=True)
class PartInfo:
    """パートサイズとパート数（サイズ不明の場合 part_count は -1）"""
    part_size: int
    part_count: int


class TransferPlanner:
    """アップロードの分割方法の決定"""

    @staticmethod
    def get_part_info(object_size: Optional[int], part_size: int = 0) -> PartInfo:
        """オブジェクトサイズと指定パートサイズからパート構成を計算

        part_size が 0 の場合はオブジェクトサイズから自動で決める。
        """
        if part_size > 0:
            if part_size < MIN_PART_SIZE:
                raise argument_error(
                    f"part size {part_size} is not supported; minimum allowed 5MiB"
                )
            if part_size > MAX_PART_SIZE:
                raise argument_error(
                    f"part size {part_size} is not supported; maximum allowed 5GiB"
                )

        if object_size is None or object_size < 0:
            if part_size <= 0:
                raise argument_error(
                    "valid part size must be provided when object size is unknown"
                )
            return PartInfo(part_size, -1)

        if object_size > MAX_MULTIPART_OBJECT_SIZE:
            raise argument_error(
                f"object size {object_size} is not supported; maximum allowed 5TiB"
            )

        if part_size <= 0:
            part_size = _ceil_div(_ceil_div(object_size, MAX_MULTIPART_COUNT), MIN_PART_SIZE)
            part_size *= MIN_PART_SIZE

        if part_size > object_size:
            part_size = object_size
        part_count = _ceil_div(object_size, part_size) if part_size > 0 else 1
        if part_count > MAX_MULTIPART_COUNT:
            raise argument_error(
                f"object size {object_size} and part size {part_size} make more than "
                f"{MAX_MULTIPART_COUNT} parts for upload"
            )
        return PartInfo(part_size, part_count)


def get_part_info(object_size: Optional[int], part_size: int = 0) -> PartInfo:
    return TransferPlanner.get_part_info(object_size, part_size)
