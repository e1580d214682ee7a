"""通知 API ルート

GET   /api/notifications              → 200 [NotificationRecord...]
GET   /api/notifications/letters/{id} → 200 [NotificationRecord...]
POST  /api/notifications/reconcile    → 200 { pruned, restored }
GET   /api/notifications/preferences  → 200 NotificationPreferences
PATCH /api/notifications/preferences  → 200 NotificationPreferences
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from futurepad.entrypoints.api.deps import (
    get_letter_store,
    get_notification_scheduler,
    get_settings_store,
)
from futurepad.services.letter_store import LetterStore
from futurepad.services.notification_scheduler import NotificationScheduler
from futurepad.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


class PreferencesUpdateRequest(BaseModel):
    daily_reminder_enabled: bool | None = None
    daily_reminder_hour: int | None = None
    daily_reminder_minute: int | None = None
    letter_reminder_enabled: bool | None = None
    unlock_notification_enabled: bool | None = None


@router.get("")
async def list_notifications(
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> list[dict]:
    return [record.to_dict() for record in scheduler.list_scheduled()]


@router.get("/letters/{letter_id}")
async def list_letter_notifications(
    letter_id: str,
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> list[dict]:
    return [record.to_dict() for record in scheduler.lookup(letter_id)]


@router.post("/reconcile")
async def reconcile(
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    """レジストリを整合し、ロック中の手紙で欠けたトリガーを登録し直す"""
    pruned = scheduler.reconcile()
    restored = scheduler.ensure_scheduled(store.list_upcoming())
    return {"pruned": pruned, "restored": restored}


@router.get("/preferences")
async def get_preferences(
    settings: SettingsStore = Depends(get_settings_store),
) -> dict:
    return asdict(settings.get_preferences())


@router.patch("/preferences")
async def update_preferences(
    body: PreferencesUpdateRequest,
    settings: SettingsStore = Depends(get_settings_store),
) -> dict:
    """通知設定を部分更新する（毎日のリマインダーは即時に再登録）"""
    changes = body.model_dump(exclude_none=True)
    return asdict(settings.update_preferences(**changes))
