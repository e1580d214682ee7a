"""バックアップ API ルート

POST   /api/backup/export    → 200 { snapshot, handle }
POST   /api/backup/validate  → 200 { isValid, issues }
POST   /api/backup/import    → 200 { restored, dropped }
GET    /api/backup/local     → 200 BackupSnapshot | null
DELETE /api/backup/local     → 204
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel

from futurepad.domain.models import BackupOptions, StoredBackup
from futurepad.entrypoints.api.deps import get_backup_serializer, get_container
from futurepad.entrypoints.factory import Container
from futurepad.services.backup_serializer import BackupSerializer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/backup", tags=["backup"])


class ExportRequest(BaseModel):
    include_images: bool = True
    include_settings: bool = True
    compress: bool = True


@router.post("/export")
async def export_backup(
    body: ExportRequest | None = None,
    container: Container = Depends(get_container),
) -> dict:
    body = body or ExportRequest()
    user, letters, settings = container.current_state()
    result = container.backup.create_snapshot(
        user,
        letters,
        settings,
        BackupOptions(
            include_images=body.include_images,
            include_settings=body.include_settings,
            compress=body.compress,
        ),
    )
    if isinstance(result.handle, StoredBackup):
        handle = {"type": "stored", "path": result.handle.path}
    else:
        handle = {"type": "inline"}
    return {"snapshot": result.snapshot.to_dict(), "handle": handle}


@router.post("/validate")
async def validate_backup(
    body: dict = Body(...),
    backup: BackupSerializer = Depends(get_backup_serializer),
) -> dict:
    report = backup.validate_integrity(body)
    return {"isValid": report.is_valid, "issues": report.issues}


@router.post("/import")
async def import_backup(
    body: dict = Body(...),
    container: Container = Depends(get_container),
) -> dict:
    """
    バックアップから手紙と設定を復元する。

    バージョン不一致・構造不正は 400（例外ハンドラで変換）。
    """
    restored = container.backup.restore_snapshot(body)
    count = container.letters.import_letters(restored.letters)
    container.settings.save_settings(restored.settings)
    logger.info("Backup imported: letters=%d, dropped=%d", count, restored.dropped)
    return {"restored": count, "dropped": restored.dropped}


@router.get("/local")
async def get_local_backup(
    backup: BackupSerializer = Depends(get_backup_serializer),
) -> dict | None:
    return backup.get_local_backup()


@router.delete("/local", status_code=status.HTTP_204_NO_CONTENT)
async def clear_local_backup(
    backup: BackupSerializer = Depends(get_backup_serializer),
) -> None:
    backup.clear_local_backup()
