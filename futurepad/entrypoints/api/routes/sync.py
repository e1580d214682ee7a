"""同期 API ルート

GET  /api/sync/status   → 200 SyncStatus
POST /api/sync          → 200 { success, status }
GET  /api/sync/history  → 200 [SyncHistoryEntry...]（新しい順）
GET  /api/sync/pending  → 200 PendingPayload | null

リモートと通信する POST /api/sync は def で定義し、スレッドプールで実行する。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from futurepad.domain.models import SyncOptions
from futurepad.entrypoints.api.deps import get_container, get_sync_engine
from futurepad.entrypoints.factory import Container
from futurepad.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


class SyncRequest(BaseModel):
    force: bool = False
    sync_letters: bool = True
    sync_settings: bool = True
    sync_user: bool = True


@router.get("/status")
async def get_status(engine: SyncEngine = Depends(get_sync_engine)) -> dict:
    return engine.get_status().to_dict()


@router.post("")
def sync_now(
    body: SyncRequest | None = None,
    container: Container = Depends(get_container),
) -> dict:
    """
    現在の状態で同期する。

    オフライン時はキューに積まれ success=false が返る（エラーではない）。
    """
    body = body or SyncRequest()
    user, letters, settings = container.current_state()
    success = container.sync.sync_data(
        user,
        letters,
        settings,
        SyncOptions(
            sync_letters=body.sync_letters,
            sync_settings=body.sync_settings,
            sync_user=body.sync_user,
            force=body.force,
        ),
    )
    return {"success": success, "status": container.sync.get_status().to_dict()}


@router.get("/history")
async def get_history(engine: SyncEngine = Depends(get_sync_engine)) -> list[dict]:
    return [entry.to_dict() for entry in engine.get_history()]


@router.get("/pending")
async def get_pending(engine: SyncEngine = Depends(get_sync_engine)) -> dict | None:
    payload = engine.get_pending_payload()
    return payload.to_dict() if payload else None
