"""FastAPI アプリケーション

FuturePad のローカルAPI。手紙のライフサイクル・通知・同期・バックアップを操作する。
起動時に通知レジストリを整合し、APScheduler（通知トリガーと定期同期）を開始する。

エンドポイント一覧:
  GET    /api/letters
  POST   /api/letters
  GET    /api/letters/{id}
  PATCH  /api/letters/{id}
  POST   /api/letters/{id}/deliver
  DELETE /api/letters/{id}
  POST   /api/letters/{id}/restore
  DELETE /api/letters/{id}/permanent
  DELETE /api/letters/{id}/images/{index}
  GET    /api/notifications
  GET    /api/notifications/letters/{id}
  POST   /api/notifications/reconcile
  GET    /api/notifications/preferences
  PATCH  /api/notifications/preferences
  GET    /api/settings
  PUT    /api/settings
  GET    /api/sync/status
  POST   /api/sync
  GET    /api/sync/history
  GET    /api/sync/pending
  POST   /api/backup/export
  POST   /api/backup/validate
  POST   /api/backup/import
  GET    /api/backup/local
  DELETE /api/backup/local
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

from futurepad import __version__
from futurepad.domain.errors import (
    BackupError,
    InvalidStateError,
    LetterNotFoundError,
    ValidationError,
)
from futurepad.entrypoints.api.deps import get_container
from futurepad.entrypoints.api.routes import (
    backup,
    letters,
    notifications,
    settings,
    sync,
)
from futurepad.logging_config import setup_logging

# ── ロギング初期化 ───────────────────────────────────────────────────────────
setup_logging()
logger = logging.getLogger(__name__)

# ── FastAPI アプリ ───────────────────────────────────────────────────────────
app = FastAPI(
    title="FuturePad API",
    description="未来の自分への手紙 FuturePad のローカル API",
    version=__version__,
)

# ── ドメイン例外 → HTTP ステータス ───────────────────────────────────────────
_STATUS_BY_ERROR: dict[type[Exception], int] = {
    ValidationError: 422,
    InvalidStateError: 409,
    LetterNotFoundError: 404,
    BackupError: 400,
}


def _domain_error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        logger.info(
            "%s %s -> %d: %s", request.method, request.url.path, status_code, exc
        )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


for _error, _status in _STATUS_BY_ERROR.items():
    app.add_exception_handler(_error, _domain_error_handler(_status))


# ── グローバル例外ミドルウェア ──────────────────────────────────────────────────
# 【登録順の注意】
#   add_middleware は後から登録したものが外側になる。
#   このミドルウェアを CORSMiddleware より先に登録することで内側に配置し、
#   500 レスポンスにも CORS ヘッダーが付与される。


@app.middleware("http")
async def _catch_unhandled_exceptions(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(
            "Unhandled exception: %s %s - %s",
            request.method,
            request.url.path,
            exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


# ── CORS ─────────────────────────────────────────────────────────────────────
# CORS_ORIGINS 環境変数でカンマ区切りの追加オリジンを指定可能
_extra_origins = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_extra_origins if _extra_origins else ["http://localhost:8081"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# ── ルーター登録 ─────────────────────────────────────────────────────────────
_PREFIX = "/api"

app.include_router(letters.router, prefix=_PREFIX)
app.include_router(notifications.router, prefix=_PREFIX)
app.include_router(settings.router, prefix=_PREFIX)
app.include_router(sync.router, prefix=_PREFIX)
app.include_router(backup.router, prefix=_PREFIX)


@app.on_event("startup")
async def _on_startup() -> None:
    """通知トリガーの復元と APScheduler の起動"""
    container = app.dependency_overrides.get(get_container, get_container)()
    container.start()


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    container = app.dependency_overrides.get(get_container, get_container)()
    container.shutdown()


@app.get("/health")
async def health() -> dict:
    """ヘルスチェックエンドポイント"""
    return {"status": "ok"}
