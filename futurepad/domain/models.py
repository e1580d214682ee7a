"""ドメインモデル - 外部依存なしのデータ構造

手紙・通知レコード・同期状態・バックアップの値オブジェクトを定義する。
永続化とリモート送信はすべて camelCase の dict（to_dict / from_dict）を経由する。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """タイムゾーン付きの現在時刻（UTC）"""
    return datetime.now(timezone.utc)


def parse_instant(value: str | datetime) -> datetime:
    """ISO8601 文字列を aware な datetime に変換（naive は UTC とみなす）"""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_instant(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


class Mood(Enum):
    """手紙を書いたときの気分"""

    HAPPY = "happy"
    SAD = "sad"
    CALM = "calm"
    REFLECTIVE = "reflective"
    EXCITED = "excited"
    GRATEFUL = "grateful"
    ANXIOUS = "anxious"
    REFRESH = "refresh"


class LockState(Enum):
    """手紙のロック状態（保存しない派生値）"""

    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class LetterImage:
    """手紙に添付された画像（アップロード済みのリモート資産）"""

    url: str
    storage_id: str  # リモートストレージ上の ID（削除時に使用）
    caption: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "storageId": self.storage_id, "caption": self.caption}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LetterImage:
        return cls(
            url=data["url"],
            storage_id=data.get("storageId") or data.get("publicId") or "",
            caption=data.get("caption") or "",
        )


@dataclass(frozen=True)
class Letter:
    """未来の自分への手紙"""

    id: str
    user_id: str
    title: str
    content: str
    mood: Mood
    created_at: datetime
    delivery_date: datetime
    updated_at: datetime | None = None
    is_delivered: bool = False
    is_deleted: bool = False
    deleted_at: datetime | None = None
    images: list[LetterImage] = field(default_factory=list)

    @property
    def featured_image(self) -> LetterImage | None:
        """先頭の画像。images と常に同期している"""
        return self.images[0] if self.images else None

    def to_dict(self) -> dict[str, Any]:
        featured = self.featured_image
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "content": self.content,
            "mood": self.mood.value,
            "createdAt": format_instant(self.created_at),
            "updatedAt": format_instant(self.updated_at),
            "deliveryDate": format_instant(self.delivery_date),
            "isDelivered": self.is_delivered,
            "isDeleted": self.is_deleted,
            "deletedAt": format_instant(self.deleted_at),
            "images": [image.to_dict() for image in self.images],
            "featuredImage": (
                {"url": featured.url, "storageId": featured.storage_id}
                if featured
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Letter:
        """
        camelCase の dict から Letter を復元する。

        Raises:
            KeyError: 必須フィールドが欠けている場合
            ValueError: 日付・気分の値が不正な場合
        """
        updated_at = data.get("updatedAt")
        deleted_at = data.get("deletedAt")
        return cls(
            id=data["id"],
            user_id=data["userId"],
            title=data["title"],
            content=data["content"],
            mood=Mood(str(data.get("mood") or Mood.REFLECTIVE.value).lower()),
            created_at=parse_instant(data["createdAt"]),
            delivery_date=parse_instant(data["deliveryDate"]),
            updated_at=parse_instant(updated_at) if updated_at else None,
            is_delivered=bool(data.get("isDelivered", False)),
            is_deleted=bool(data.get("isDeleted", False)),
            deleted_at=parse_instant(deleted_at) if deleted_at else None,
            images=[LetterImage.from_dict(img) for img in data.get("images") or []],
        )


class LetterEventKind(Enum):
    """LetterStore が発行するライフサイクルイベント"""

    CREATED = "created"
    UPDATED = "updated"
    DELIVERED = "delivered"
    SOFT_DELETED = "soft_deleted"
    RESTORED = "restored"
    PERMANENTLY_DELETED = "permanently_deleted"


@dataclass(frozen=True)
class LetterEvent:
    kind: LetterEventKind
    letter: Letter


@dataclass(frozen=True)
class PermanentDeleteResult:
    """完全削除の結果。画像削除の失敗は例外ではなくここに集約する"""

    letter_id: str
    deleted_images: list[str] = field(default_factory=list)
    failed_images: dict[str, str] = field(default_factory=dict)  # storage_id -> error

    @property
    def fully_cleaned(self) -> bool:
        return not self.failed_images


# ─── 通知 ────────────────────────────────────────────────────────────────────


class NotificationPurpose(Enum):
    REMINDER = "reminder"  # 配達日の前日
    UNLOCK = "unlock"  # 配達日ちょうど
    DAILY = "daily"  # 毎日の執筆リマインダー


DAILY_REMINDER_ID = "daily_reminder"


def notification_id(purpose: NotificationPurpose, letter_id: str = "") -> str:
    """(purpose, letter_id) から決定的な通知IDを作る"""
    if purpose is NotificationPurpose.DAILY:
        return DAILY_REMINDER_ID
    return f"{purpose.value}:{letter_id}"


@dataclass(frozen=True)
class DateTrigger:
    """一度きりの絶対時刻トリガー"""

    fire_at: datetime


@dataclass(frozen=True)
class DailyTrigger:
    """毎日 hour:minute に繰り返すトリガー"""

    hour: int
    minute: int
    repeats: bool = True


Trigger = DateTrigger | DailyTrigger


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationRecord:
    """通知レジストリの1エントリ"""

    id: str
    purpose: NotificationPurpose
    letter_id: str  # daily の場合は空文字
    title: str
    body: str
    trigger: Trigger

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.trigger, DateTrigger):
            trigger: dict[str, Any] = {
                "type": "date",
                "date": format_instant(self.trigger.fire_at),
            }
        else:
            trigger = {
                "type": "daily",
                "hour": self.trigger.hour,
                "minute": self.trigger.minute,
                "repeats": self.trigger.repeats,
            }
        return {
            "id": self.id,
            "purpose": self.purpose.value,
            "letterId": self.letter_id,
            "title": self.title,
            "body": self.body,
            "trigger": trigger,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationRecord:
        raw = data["trigger"]
        trigger: Trigger
        if raw["type"] == "date":
            trigger = DateTrigger(fire_at=parse_instant(raw["date"]))
        else:
            trigger = DailyTrigger(
                hour=int(raw["hour"]),
                minute=int(raw["minute"]),
                repeats=bool(raw.get("repeats", True)),
            )
        return cls(
            id=data["id"],
            purpose=NotificationPurpose(data["purpose"]),
            letter_id=data.get("letterId", ""),
            title=data.get("title", ""),
            body=data.get("body", ""),
            trigger=trigger,
        )


# ─── ユーザー・設定 ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class User:
    """手紙の持ち主（認証は対象外。設定から与えられる）"""

    id: str
    name: str = ""
    email: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            email=data.get("email") or "",
        )


@dataclass(frozen=True)
class PortableSettings:
    """バックアップに含める設定。この6項目のみがポータブル"""

    is_onboarding_completed: bool = False
    theme: str = "system"  # "light" | "dark" | "system"
    language: str = "en"
    notifications: bool = True
    biometric_auth: bool = False
    auto_save: bool = True

    _KEYS = {
        "isOnboardingCompleted": "is_onboarding_completed",
        "theme": "theme",
        "language": "language",
        "notifications": "notifications",
        "biometricAuth": "biometric_auth",
        "autoSave": "auto_save",
    }

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in self._KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PortableSettings:
        """未知のキーは捨てる。欠けているキーはデフォルト値"""
        data = data or {}
        values = {attr: data[key] for key, attr in cls._KEYS.items() if key in data}
        return cls(**values)


@dataclass(frozen=True)
class NotificationPreferences:
    """端末ローカルの通知設定（バックアップ対象外）"""

    daily_reminder_enabled: bool = True
    daily_reminder_hour: int = 20
    daily_reminder_minute: int = 0
    letter_reminder_enabled: bool = True
    unlock_notification_enabled: bool = True


# ─── 同期 ────────────────────────────────────────────────────────────────────


class SyncType(Enum):
    AUTO = "auto"
    MANUAL = "manual"
    FORCE = "force"


@dataclass
class SyncStatus:
    """同期状態。sync_in_progress は一時的なフラグ（単一ライター）"""

    is_online: bool = False
    last_sync_time: datetime | None = None
    pending_changes: int = 0
    sync_in_progress: bool = False
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isOnline": self.is_online,
            "lastSyncTime": format_instant(self.last_sync_time),
            "pendingChanges": self.pending_changes,
            "syncInProgress": self.sync_in_progress,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncStatus:
        last_sync = data.get("lastSyncTime")
        return cls(
            is_online=bool(data.get("isOnline", False)),
            last_sync_time=parse_instant(last_sync) if last_sync else None,
            pending_changes=max(0, int(data.get("pendingChanges", 0))),
            sync_in_progress=bool(data.get("syncInProgress", False)),
            last_error=data.get("lastError"),
        )


@dataclass(frozen=True)
class SyncOptions:
    sync_letters: bool = True
    sync_settings: bool = True
    sync_user: bool = True
    force: bool = False


@dataclass(frozen=True)
class SyncHistoryEntry:
    timestamp: datetime
    type: SyncType
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_instant(self.timestamp),
            "type": self.type.value,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncHistoryEntry:
        return cls(
            timestamp=parse_instant(data["timestamp"]),
            type=SyncType(data["type"]),
            success=bool(data["success"]),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class PendingPayload:
    """オフライン時にキューへ積む同期ペイロード（常に1件、後勝ち）"""

    timestamp: datetime
    user: User | None
    letters: list[Letter]
    settings: PortableSettings

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_instant(self.timestamp),
            "user": self.user.to_dict() if self.user else None,
            "letters": [letter.to_dict() for letter in self.letters],
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingPayload:
        user = data.get("user")
        return cls(
            timestamp=parse_instant(data["timestamp"]),
            user=User.from_dict(user) if user else None,
            letters=[Letter.from_dict(item) for item in data.get("letters") or []],
            settings=PortableSettings.from_dict(data.get("settings")),
        )


# ─── バックアップ ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BackupOptions:
    include_images: bool = True
    include_settings: bool = True
    compress: bool = True  # True: 改行なしJSON / False: インデント付き


@dataclass(frozen=True)
class BackupSnapshot:
    """ある時点のユーザー・手紙・設定のコピー"""

    version: str
    timestamp: str
    user: dict[str, Any]
    letters: list[dict[str, Any]]
    settings: dict[str, Any]
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "user": self.user,
            "letters": self.letters,
            "settings": self.settings,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class StoredBackup:
    """ファイルに書き出したバックアップ"""

    path: str


@dataclass(frozen=True)
class InlineBackup:
    """ファイルを持たない環境向け。シリアライズ済み文字列そのもの"""

    data: str


BackupHandle = StoredBackup | InlineBackup


@dataclass(frozen=True)
class BackupResult:
    snapshot: BackupSnapshot
    handle: BackupHandle


@dataclass(frozen=True)
class RestoreResult:
    user: User
    letters: list[Letter]
    settings: PortableSettings
    dropped: int = 0  # 必須フィールド欠落で除外した手紙の数


@dataclass(frozen=True)
class IntegrityReport:
    is_valid: bool
    issues: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BackupInfo:
    size: int
    created: str
    letters_count: int
    has_images: bool
