"""設定 API ルート

GET /api/settings  → ポータブル設定
PUT /api/settings  → ポータブル設定を保存（未知のキーは無視）
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends

from futurepad.domain.models import PortableSettings
from futurepad.entrypoints.api.deps import get_settings_store
from futurepad.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
async def get_settings(store: SettingsStore = Depends(get_settings_store)) -> dict:
    return store.get_settings().to_dict()


@router.put("")
async def save_settings(
    body: dict = Body(...),
    store: SettingsStore = Depends(get_settings_store),
) -> dict:
    """現在の設定に body をマージして保存する"""
    merged = {**store.get_settings().to_dict(), **body}
    return store.save_settings(PortableSettings.from_dict(merged)).to_dict()
