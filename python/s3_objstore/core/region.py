"""バケット名からリージョンへのキャッシュ"""
import threading
from typing import Dict, Optional


class RegionCache:
    """プロセス内で共有するバケット→リージョンの対応表"""

    def __init__(self):
        self._lock = threading.Lock()
        self._regions: Dict[str, str] = {}

    def get(self, bucket_name: str) -> Optional[str]:
        with self._lock:
            return self._regions.get(bucket_name)

    def set(self, bucket_name: str, region: str) -> None:
        with self._lock:
            self._regions[bucket_name] = region

    def remove(self, bucket_name: str) -> None:
        with self._lock:
            self._regions.pop(bucket_name, None)

    def __contains__(self, bucket_name: str) -> bool:
        with self._lock:
            return bucket_name in self._regions

    def __len__(self) -> int:
        with self._lock:
            return len(self._regions)
