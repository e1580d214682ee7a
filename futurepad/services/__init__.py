"""Services layer - 手紙のライフサイクル・通知・同期・バックアップ"""

from futurepad.services.backup_serializer import BackupSerializer
from futurepad.services.letter_store import LetterStore
from futurepad.services.notification_scheduler import NotificationScheduler
from futurepad.services.settings_store import SettingsStore
from futurepad.services.sync_engine import SyncEngine

__all__ = [
    "LetterStore",
    "NotificationScheduler",
    "SyncEngine",
    "BackupSerializer",
    "SettingsStore",
]
