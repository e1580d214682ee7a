"""Factory - 依存性注入の組み立て

全AdapterとServiceを組み立て、Container を生成する。
シングルトンは使わず、CLI / API の各エントリポイントが Container を1つ所有する。
"""

import logging
from dataclasses import dataclass

from apscheduler.schedulers.background import BackgroundScheduler

from futurepad.adapters.apscheduler_notifications import APSchedulerNotificationApi
from futurepad.adapters.http_letter_api import HttpLetterApi
from futurepad.adapters.json_file_store import JsonFileKeyValueStore
from futurepad.adapters.kv_letter_repository import KeyValueLetterRepository
from futurepad.config import AppConfig
from futurepad.domain.models import Letter, NotificationContent, PortableSettings, User
from futurepad.domain.ports import ImageStorage, KeyValueStore, Notifier
from futurepad.services.backup_serializer import BackupSerializer
from futurepad.services.letter_store import LetterStore
from futurepad.services.notification_scheduler import NotificationScheduler
from futurepad.services.settings_store import SettingsStore
from futurepad.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """組み立て済みのコンポーネント一式"""

    config: AppConfig
    user: User
    store: KeyValueStore
    letters: LetterStore
    notifications: NotificationScheduler
    settings: SettingsStore
    backup: BackupSerializer
    sync: SyncEngine
    remote: HttpLetterApi
    scheduler: BackgroundScheduler

    def current_state(self) -> tuple[User, list[Letter], PortableSettings]:
        """同期・バックアップ対象の現在の状態（ゴミ箱の手紙も含む）"""
        return _current_state(self.user, self.letters, self.settings)

    def start(self) -> None:
        """
        起動処理。通知レジストリの整合 → 欠けたトリガーの復元 →
        同期状態の初期化 → スケジューラ起動、の順に実行する。
        """
        self.notifications.reconcile()
        self.notifications.ensure_scheduled(self.letters.list_upcoming())
        self.settings.apply_daily_reminder()
        self.sync.initialize()
        self.sync.start_periodic(self.scheduler)
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("FuturePad started: user_id=%s", self.user.id)

    def shutdown(self) -> None:
        self.sync.stop_periodic(self.scheduler)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.remote.close()
        logger.info("FuturePad stopped")


def create_container(config: AppConfig | None = None) -> Container:
    """
    Container を生成（全依存を組み立て）。

    Args:
        config: アプリケーション設定（Noneの場合は環境変数から読み込み）

    Returns:
        Container: 起動前のコンポーネント一式（start() で起動）

    Raises:
        ValueError: 必須設定が不足している場合
    """
    if config is None:
        config = AppConfig.from_env()

    logger.info(
        "Creating container: user_id=%s, storage=%s, api=%s",
        config.user_id,
        config.storage_backend,
        config.api_url,
    )

    # 1. ローカルストレージ
    store = _create_store(config)
    repository = KeyValueLetterRepository(store)

    # 2. リモート
    remote = HttpLetterApi(
        base_url=config.api_url,
        health_url=config.health_url or None,
        token=config.api_token or None,
        timeout=config.request_timeout,
    )

    image_storage: ImageStorage | None = None
    if config.gcs_bucket:
        from futurepad.adapters.cloud_storage import GCSImageStorage

        image_storage = GCSImageStorage(bucket_name=config.gcs_bucket)
        logger.info("Cloud Storage image cleanup enabled: bucket=%s", config.gcs_bucket)
    else:
        logger.warning("FUTUREPAD_GCS_BUCKET not set, remote images will not be deleted")

    # 3. 通知（APScheduler のジョブとして登録し、発火時に Notifier へ配信）
    scheduler = BackgroundScheduler(daemon=True, timezone=config.timezone)
    notification_api = APSchedulerNotificationApi(
        scheduler=scheduler,
        notifier=_create_notifier(config),
        timezone=config.timezone,
    )

    # 4. Services
    user = User(id=config.user_id, name=config.user_name, email=config.user_email)
    letters = LetterStore(repository, user_id=user.id, image_storage=image_storage)

    # preferences は settings の生成後に初めて呼ばれる
    notifications = NotificationScheduler(
        backend=notification_api,
        store=store,
        preferences=lambda: settings.effective_preferences(),
    )
    settings = SettingsStore(store, notifications)
    backup = BackupSerializer(store, backup_dir=config.backup_dir or None)

    sync = SyncEngine(
        remote=remote,
        store=store,
        backup=backup,
        state_provider=lambda: _current_state(user, letters, settings),
        interval_minutes=config.sync_interval_minutes,
    )
    container = Container(
        config=config,
        user=user,
        store=store,
        letters=letters,
        notifications=notifications,
        settings=settings,
        backup=backup,
        sync=sync,
        remote=remote,
        scheduler=scheduler,
    )

    # 5. イベント購読（通知トリガーの追従、完全削除の tombstone、発火済みトリガーの整理）
    letters.subscribe(notifications.on_letter_event)
    letters.subscribe(sync.on_letter_event)
    notification_api.add_fired_listener(notifications.on_trigger_fired)

    logger.info("Container created successfully")
    return container


def _current_state(
    user: User, letters: LetterStore, settings: SettingsStore
) -> tuple[User, list[Letter], PortableSettings]:
    return user, letters.list_active() + letters.list_trash(), settings.get_settings()


def _create_store(config: AppConfig) -> KeyValueStore:
    if config.storage_backend == "firestore":
        from google.cloud import firestore

        from futurepad.adapters.firestore_store import FirestoreKeyValueStore

        logger.info("Using Firestore store: collection=%s", config.firestore_collection)
        return FirestoreKeyValueStore(
            db=firestore.Client(),
            user_id=config.user_id,
            collection=config.firestore_collection,
        )
    logger.info("Using JSON file store: path=%s", config.store_path)
    return JsonFileKeyValueStore(config.store_path)


def _create_notifier(config: AppConfig) -> Notifier:
    if config.vapid_private_key and config.vapid_claims_email and config.webpush_subscription:
        from futurepad.adapters.webpush_notifier import (
            PushSubscription,
            VapidConfig,
            WebPushNotifier,
        )

        logger.info("Web Push notifier enabled")
        return WebPushNotifier(
            vapid=VapidConfig(
                private_key=config.vapid_private_key,
                claims_email=config.vapid_claims_email,
            ),
            subscription=PushSubscription.from_json(config.webpush_subscription),
        )
    logger.warning("Web Push not configured, notifications will only be logged")
    return _NullNotifier()


# Null Object Pattern（Web Push が無効な場合の代替）


class _NullNotifier(Notifier):
    """NotifierのNull Object（ログに残すだけ）"""

    def deliver(self, content: NotificationContent) -> None:
        logger.info("NullNotifier: %s - %s", content.title, content.body)
