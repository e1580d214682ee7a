"""共通テストフィクスチャ

全テストから利用可能なフェイク・モックオブジェクトとサンプルデータを提供。

- KeyValueStore / LocalNotificationApi は状態を持つフェイク（メモリ上）
- RemoteLetterApi / ImageStorage は MagicMock(spec=ABC)
- 現在時刻は FakeClock で固定し、advance() で進める
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from futurepad.adapters.kv_letter_repository import KeyValueLetterRepository
from futurepad.config import AppConfig
from futurepad.domain.errors import TriggerSchedulingFailure
from futurepad.domain.models import (
    Letter,
    LetterImage,
    Mood,
    NotificationContent,
    PortableSettings,
    Trigger,
    User,
)
from futurepad.domain.ports import (
    ImageStorage,
    KeyValueStore,
    LocalNotificationApi,
    RemoteLetterApi,
)
from futurepad.entrypoints.factory import Container
from futurepad.services.backup_serializer import BackupSerializer
from futurepad.services.letter_store import LetterStore
from futurepad.services.notification_scheduler import NotificationScheduler
from futurepad.services.settings_store import SettingsStore
from futurepad.services.sync_engine import SyncEngine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
USER_ID = "user-1"

# ========== フェイク ==========


class FakeClock:
    """呼び出すと現在時刻を返す。advance() で進める"""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FakeNotificationApi(LocalNotificationApi):
    """登録されたトリガーを jobs に保持する。deny=True で登録を拒否"""

    def __init__(self) -> None:
        self.jobs: dict[str, tuple[NotificationContent, Trigger]] = {}
        self.deny = False

    def schedule(
        self, identifier: str, content: NotificationContent, trigger: Trigger
    ) -> str:
        if self.deny:
            raise TriggerSchedulingFailure("Notification permission not granted")
        self.jobs[identifier] = (content, trigger)
        return identifier

    def cancel(self, identifier: str) -> None:
        self.jobs.pop(identifier, None)

    def list_all(self) -> list[str]:
        return list(self.jobs)


# ========== サンプルデータ ==========


@pytest.fixture
def sample_user() -> User:
    return User(id=USER_ID, name="Aiko", email="aiko@example.com")


@pytest.fixture
def sample_settings() -> PortableSettings:
    return PortableSettings(theme="dark", language="ja")


def _make_letter(**overrides) -> Letter:
    """テスト用の Letter（配達日は NOW の2日後）"""
    values = dict(
        id="letter-1",
        user_id=USER_ID,
        title="Hello future me",
        content="Remember to breathe.",
        mood=Mood.CALM,
        created_at=NOW,
        updated_at=NOW,
        delivery_date=NOW + timedelta(days=2),
    )
    values.update(overrides)
    return Letter(**values)


@pytest.fixture
def sample_letter() -> Letter:
    return _make_letter()


@pytest.fixture
def make_letter():
    """上書きしたいフィールドだけ渡して Letter を作るファクトリ"""
    return _make_letter


@pytest.fixture
def sample_images() -> list[LetterImage]:
    return [
        LetterImage(url="https://cdn.example.com/a.jpg", storage_id="img/a", caption="A"),
        LetterImage(url="https://cdn.example.com/b.jpg", storage_id="img/b"),
    ]


# ========== フェイク・モック ==========


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def notification_api() -> FakeNotificationApi:
    return FakeNotificationApi()


@pytest.fixture
def mock_remote() -> MagicMock:
    """到達可能で全リクエストが成功する RemoteLetterApi"""
    remote = MagicMock(spec=RemoteLetterApi)
    remote.is_reachable.return_value = True
    return remote


@pytest.fixture
def mock_image_storage() -> MagicMock:
    return MagicMock(spec=ImageStorage)


# ========== サービス ==========


@pytest.fixture
def letter_store(kv_store, mock_image_storage, clock) -> LetterStore:
    return LetterStore(
        KeyValueLetterRepository(kv_store),
        user_id=USER_ID,
        image_storage=mock_image_storage,
        clock=clock,
    )


@pytest.fixture
def scheduler(notification_api, kv_store, clock) -> NotificationScheduler:
    return NotificationScheduler(backend=notification_api, store=kv_store, clock=clock)


@pytest.fixture
def settings_store(kv_store, scheduler) -> SettingsStore:
    return SettingsStore(kv_store, scheduler)


@pytest.fixture
def backup(kv_store, clock) -> BackupSerializer:
    return BackupSerializer(kv_store, clock=clock)


@pytest.fixture
def sync_engine(mock_remote, kv_store, backup, clock) -> SyncEngine:
    return SyncEngine(remote=mock_remote, store=kv_store, backup=backup, clock=clock)


@pytest.fixture
def container(
    kv_store, letter_store, scheduler, settings_store, backup, sync_engine, mock_remote, sample_user
) -> Container:
    """フェイクで組み立てた Container（APScheduler は起動しない）"""
    letter_store.subscribe(scheduler.on_letter_event)
    letter_store.subscribe(sync_engine.on_letter_event)
    return Container(
        config=AppConfig(user_id=sample_user.id),
        user=sample_user,
        store=kv_store,
        letters=letter_store,
        notifications=scheduler,
        settings=settings_store,
        backup=backup,
        sync=sync_engine,
        remote=mock_remote,
        scheduler=BackgroundScheduler(timezone="UTC"),
    )
