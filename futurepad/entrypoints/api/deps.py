"""FastAPI 依存性注入

プロセス内で1つの Container を組み立て、各ルートへサービスを渡す。
テストでは app.dependency_overrides[get_container] で差し替える。
"""

from __future__ import annotations

import logging

from fastapi import Depends

from futurepad.entrypoints.factory import Container, create_container
from futurepad.services.backup_serializer import BackupSerializer
from futurepad.services.letter_store import LetterStore
from futurepad.services.notification_scheduler import NotificationScheduler
from futurepad.services.settings_store import SettingsStore
from futurepad.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

# ── Container（プロセス内で1回のみ組み立て） ─────────────────────────────────

_container: Container | None = None


def get_container() -> Container:
    global _container
    if _container is None:
        _container = create_container()
        logger.info("Container initialized (deps)")
    return _container


# ── サービス ──────────────────────────────────────────────────────────────────


def get_letter_store(container: Container = Depends(get_container)) -> LetterStore:
    return container.letters


def get_notification_scheduler(
    container: Container = Depends(get_container),
) -> NotificationScheduler:
    return container.notifications


def get_sync_engine(container: Container = Depends(get_container)) -> SyncEngine:
    return container.sync


def get_backup_serializer(
    container: Container = Depends(get_container),
) -> BackupSerializer:
    return container.backup


def get_settings_store(container: Container = Depends(get_container)) -> SettingsStore:
    return container.settings
