"""ロギング設定とHTTPトレース出力"""
import logging
import os
import re
import threading
from typing import List, Optional, TextIO

from ..models.config import LoggingConfig

LOGGER_NAME = "s3_objstore"

_REDACTIONS = [
    (re.compile(r"Signature=([0-9a-f]+)"), "Signature=*REDACTED*"),
    (re.compile(r"Credential=([^/]+)"), "Credential=*REDACTED*"),
    (re.compile(r"(X-Amz-Security-Token[:=]\s*)[^\s&]+", re.IGNORECASE), r"\1*REDACTED*"),
]


class LoggerManager:
    """ロガーの設定と管理"""

    _logger: Optional[logging.Logger] = None
    _lock = threading.Lock()

    @classmethod
    def setup(cls, config: LoggingConfig) -> logging.Logger:
        """ロガーをセットアップ"""
        with cls._lock:
            if cls._logger is not None:
                return cls._logger

            # ログレベルの設定
            log_level = getattr(logging, config.level.upper(), logging.INFO)

            handlers: List[logging.Handler] = []
            formatter = logging.Formatter(
                config.format,
                datefmt="%Y-%m-%d %H:%M:%S"
            )

            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            handlers.append(console_handler)

            # ファイルハンドラー（設定されている場合）
            if config.file:
                log_dir = os.path.dirname(config.file)
                if log_dir and not os.path.exists(log_dir):
                    os.makedirs(log_dir)

                file_handler = logging.FileHandler(config.file, encoding="utf-8")
                file_handler.setFormatter(formatter)
                handlers.append(file_handler)

            logger = logging.getLogger(LOGGER_NAME)
            logger.setLevel(log_level)
            logger.handlers = handlers

            cls._logger = logger
            return logger

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """ロガーを取得

        setup() が呼ばれていない場合はライブラリ用ロガー（NullHandler付き）を返す。
        """
        if cls._logger is not None:
            return cls._logger
        logger = logging.getLogger(LOGGER_NAME)
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        return logger

    @classmethod
    def reset(cls) -> None:
        """セットアップ済みのロガーを破棄（主にテスト用）"""
        with cls._lock:
            if cls._logger is not None:
                for handler in cls._logger.handlers:
                    handler.close()
                cls._logger.handlers = []
            cls._logger = None


def redact(text: str) -> str:
    """署名・認証情報をトレース出力から取り除く"""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class TraceSink:
    """HTTPトレースの出力先"""

    def write_line(self, line: str) -> None:
        raise NotImplementedError


class StreamTraceSink(TraceSink):
    """テキストストリームへ書き出すトレース出力先"""

    def __init__(self, stream: TextIO):
        if stream is None:
            raise ValueError("trace stream must not be None")
        self.stream = stream

    def write_line(self, line: str) -> None:
        self.stream.write(line + "\n")
        self.stream.flush()


class LoggerTraceSink(TraceSink):
    """ロガーへDEBUGレベルで書き出すトレース出力先"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or LoggerManager.get_logger()

    def write_line(self, line: str) -> None:
        self.logger.debug(line)
