"""Domain layer - 外部依存なしのドメインモデルとインターフェース定義"""

from futurepad.domain.errors import (
    BackupError,
    FuturePadError,
    IncompatibleVersion,
    InvalidBackup,
    InvalidStateError,
    LetterNotFoundError,
    NetworkFailure,
    StorageFailure,
    SyncFailure,
    TriggerSchedulingFailure,
    ValidationError,
)
from futurepad.domain.models import (
    Letter,
    LetterEvent,
    LetterEventKind,
    LetterImage,
    LockState,
    Mood,
    NotificationPurpose,
    NotificationRecord,
    PortableSettings,
    SyncStatus,
    User,
)
from futurepad.domain.ports import (
    ImageStorage,
    KeyValueStore,
    LetterRepository,
    LocalNotificationApi,
    Notifier,
    RemoteLetterApi,
)

__all__ = [
    # Models
    "Letter",
    "LetterImage",
    "LetterEvent",
    "LetterEventKind",
    "LockState",
    "Mood",
    "NotificationPurpose",
    "NotificationRecord",
    "PortableSettings",
    "SyncStatus",
    "User",
    # Errors
    "FuturePadError",
    "ValidationError",
    "InvalidStateError",
    "LetterNotFoundError",
    "TriggerSchedulingFailure",
    "StorageFailure",
    "SyncFailure",
    "NetworkFailure",
    "BackupError",
    "IncompatibleVersion",
    "InvalidBackup",
    # Ports
    "KeyValueStore",
    "LetterRepository",
    "ImageStorage",
    "LocalNotificationApi",
    "Notifier",
    "RemoteLetterApi",
]
