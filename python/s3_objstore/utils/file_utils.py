"""ファイル操作関連のユーティリティ"""
import os
from dataclasses import dataclass
from urllib.parse import quote


@dataclass
class FileInfo:
    """ファイル情報"""
    path: str
    size: int


def get_file_info(file_path: str) -> FileInfo:
    """単一ファイルの情報を取得"""
    if not os.path.isfile(file_path):
        raise ValueError(f"Not a file: {file_path}")

    return FileInfo(path=file_path, size=os.path.getsize(file_path))


def part_file_path(file_path: str, etag: str) -> str:
    """ダウンロード途中のファイル名（<destination>.<etag>.part）"""
    return f"{file_path}.{quote(etag or '', safe='')}.part"


def prepare_download(file_path: str, overwrite: bool = False) -> None:
    """保存先を確認し、必要ならディレクトリを作成"""
    if os.path.isdir(file_path):
        raise ValueError(f"{file_path}: is a directory")
    if os.path.exists(file_path) and not overwrite:
        raise ValueError(f"{file_path}: file already exists")

    directory = os.path.dirname(file_path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)


def existing_size(file_path: str) -> int:
    """既にダウンロード済みのバイト数（ファイルが無ければ0）"""
    if os.path.isfile(file_path):
        return os.path.getsize(file_path)
    return 0


def finalize_download(part_path: str, file_path: str) -> None:
    """途中ファイルを保存先にアトミックに置き換える"""
    os.replace(part_path, file_path)
