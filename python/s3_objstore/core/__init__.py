"""オブジェクトストレージ コアモジュール"""
from .builder import ClientBuilder
from .client import ObjectStorageClient
from .executor import RequestExecutor
from .multipart import MultipartUploader
from .iterators import PageIterator

__all__ = [
    'ClientBuilder',
    'ObjectStorageClient',
    'RequestExecutor',
    'MultipartUploader',
    'PageIterator'
]
