"""ロギング設定モジュール

FuturePad の CLI / API プロセスで共通のログ出力を設定する。
通知トリガーの発火や定期同期は APScheduler のワーカースレッドで動くため、
どちらの形式でもスレッド名を出力する。

使い方:
    from futurepad.logging_config import setup_logging
    setup_logging()              # LOG_LEVEL に従う
    setup_logging("DEBUG")       # CLI の --verbose

環境変数:
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL) デフォルト: INFO
    LOG_FORMAT: "json" で1行1JSON、それ以外はテキスト
    K_SERVICE / CLOUD_RUN_JOB: サーバーにデプロイされている場合は LOG_FORMAT 未指定でも JSON
"""

import json
import logging
import os

SERVICE_NAME = "futurepad"

# 通知トリガーの登録や定期同期のたびに INFO を出すライブラリ
_NOISY_LOGGERS = ("apscheduler", "httpx", "httpcore")

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"


class JsonLogFormatter(logging.Formatter):
    """1レコード1行の JSON フォーマッタ

    `severity` はログ基盤のレベルにそのまま対応する。
    logger.info(..., extra={"extra_fields": {...}}) の内容はトップレベルに展開する。
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "severity": record.levelname,
            "service": SERVICE_NAME,
            "message": record.getMessage(),
            "logger": record.name,
            "thread": record.threadName,
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)
        return json.dumps(log_entry, ensure_ascii=False)


def _use_json() -> bool:
    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format:
        return log_format == "json"
    return bool(os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB"))


def setup_logging(level: str | None = None) -> None:
    """ログ設定を初期化する（再呼び出し時はハンドラを差し替える）

    Args:
        level: ログレベル。None の場合は LOG_LEVEL 環境変数（デフォルト INFO）
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    if _use_json():
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
