"""アップロード進捗管理"""
import time
import threading
from typing import Optional

from .logger import LoggerManager


class ProgressTracker:
    """単一オブジェクトのアップロード進捗を追跡"""

    def __init__(self, total_size: Optional[int], object_name: str):
        self.total_size = total_size
        self.object_name = object_name
        self.uploaded_size = 0
        self.lock = threading.Lock()
        self.start_time = time.time()
        self.logger = LoggerManager.get_logger()

    def __call__(self, bytes_transferred: int):
        """パートのアップロードごとに呼ばれるコールバック"""
        with self.lock:
            self.uploaded_size += bytes_transferred
            self._log_progress()

    def _log_progress(self):
        elapsed_time = time.time() - self.start_time
        speed = self.uploaded_size / elapsed_time / 1024 / 1024 if elapsed_time > 0 else 0  # MB/s

        # サイズ不明のストリームでは割合を出さない
        if not self.total_size:
            self.logger.info(f"{self.object_name}: {self.uploaded_size} bytes - {speed:.2f} MB/s")
            return

        progress = (self.uploaded_size / self.total_size) * 100
        self.logger.info(
            f"{self.object_name}: {progress:.1f}% ({self.uploaded_size}/{self.total_size}) "
            f"- {speed:.2f} MB/s"
        )

    def complete(self):
        """アップロード完了"""
        elapsed_time = time.time() - self.start_time
        speed = self.uploaded_size / elapsed_time / 1024 / 1024 if elapsed_time > 0 else 0
        self.logger.info(f"{self.object_name}: Complete! - {speed:.2f} MB/s - {elapsed_time:.1f}s")
