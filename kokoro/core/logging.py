"""
統一ログシステム
構造化ログによる一貫したログ出力
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .exceptions import KokoroException

# LogRecord の標準属性（extra として出力しない）
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName', 'taskName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info',
])


class StructuredFormatter(logging.Formatter):
    """構造化ログフォーマッター"""

    def format(self, record: logging.LogRecord) -> str:
        # ベース情報
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage()
        }

        # モジュール情報
        log_entry["file"] = record.filename
        log_entry["line"] = record.lineno
        log_entry["function"] = record.funcName

        # カスタム属性の追加
        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        # 例外情報
        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None
            }

            # KokoroExceptionの場合は追加情報を含める
            if isinstance(record.exc_info[1], KokoroException):
                log_entry["exception"]["error_code"] = record.exc_info[1].error_code
                log_entry["exception"]["details"] = record.exc_info[1].details

        return json.dumps(log_entry, ensure_ascii=False, separators=(',', ':'), default=str)


class KokoroLogger:
    """統一ログシステム"""

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def configure(cls, log_level: str = "INFO", stream=None):
        """ログシステムを設定"""
        if cls._configured:
            return

        root_logger = logging.getLogger("kokoro")
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # コンソールハンドラー
        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(console_handler)

        cls._configured = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """ログインスタンスを取得"""
        if not cls._configured:
            cls.configure()

        if name not in cls._loggers:
            logger_name = f"kokoro.{name}" if not name.startswith("kokoro") else name
            cls._loggers[name] = logging.getLogger(logger_name)

        return cls._loggers[name]


# 便利関数群
def get_logger(name: str) -> logging.Logger:
    """ロガーを取得"""
    return KokoroLogger.get_logger(name)


def log_turn(logger: logging.Logger, session_id: str, turn: int, duration_ms: float,
             mood: str, persona: Optional[str] = None, **kwargs):
    """ターン処理ログ（1対話ごとの確定結果）"""
    logger.info(f"Turn processed: #{turn} mood={mood}", extra={
        "event_type": "turn",
        "session_id": session_id,
        "turn": turn,
        "duration_ms": duration_ms,
        "mood": mood,
        "persona": persona,
        **kwargs
    })


def log_error(logger: logging.Logger, error: Exception, context: Optional[Dict[str, Any]] = None):
    """エラーログ"""
    extra_info = {"event_type": "error"}
    if context:
        extra_info.update(context)

    logger.error(f"Error occurred: {str(error)}", exc_info=error, extra=extra_info)


def log_state_event(logger: logging.Logger, event: str, session_id: Optional[str] = None,
                    **kwargs):
    """状態遷移イベントログ（気分変化・ペルソナ切替・チェックポイントなど）"""
    extra_info = {
        "event_type": "state_event",
        "state_event": event
    }
    if session_id:
        extra_info["session_id"] = session_id
    extra_info.update(kwargs)

    logger.info(f"State event: {event}", extra=extra_info)
