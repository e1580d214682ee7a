"""SyncEngine - オフライン優先のリモート同期

状態は Idle / Syncing の2つ（SyncStatus.sync_in_progress）。同時に走る同期は1つだけで、
後から来た同期要求は待たずに False を返す（force の場合を除く）。

フロー:
1. 到達性チェック（オフラインなら現在の状態を1件だけキューに積んで終了）
2. ローカルの安全バックアップ（画像なし・設定あり・compact JSON）
3. リモートへ push: プロフィール → 手紙（全件 upsert） → 設定 → 完全削除の tombstone
4. 結果を SyncStatus と同期履歴に記録

状態・キュー・履歴は KV ストアに永続化し、読み取り→変更→書き込みを Lock で保護する。
APScheduler のジョブはワーカースレッドで動くため。
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from futurepad.domain.errors import FuturePadError, StorageFailure
from futurepad.domain.models import (
    BackupOptions,
    Letter,
    LetterEvent,
    LetterEventKind,
    PendingPayload,
    PortableSettings,
    SyncHistoryEntry,
    SyncOptions,
    SyncStatus,
    SyncType,
    User,
    utcnow,
)
from futurepad.domain.ports import KeyValueStore, RemoteLetterApi
from futurepad.services.backup_serializer import BackupSerializer

logger = logging.getLogger(__name__)

STATUS_KEY = "sync_status"
PENDING_KEY = "pending_sync_data"
HISTORY_KEY = "sync_history"
TOMBSTONES_KEY = "purged_letter_ids"

SYNC_JOB_ID = "sync_tick"
MAX_HISTORY = 50

# 現在の (user, letters, settings) を返す関数
StateProvider = Callable[[], tuple[User, list[Letter], PortableSettings]]


class SyncEngine:
    """
    ローカルの状態をリモート Letter API へ同期するサービス。

    失敗は例外ではなく SyncStatus.last_error と履歴に記録し、キューは残す。
    """

    def __init__(
        self,
        remote: RemoteLetterApi,
        store: KeyValueStore,
        backup: BackupSerializer,
        clock: Callable[[], datetime] = utcnow,
        state_provider: StateProvider | None = None,
        interval_minutes: int = 5,
    ) -> None:
        """
        Args:
            remote: リモート Letter API
            store: 状態・キュー・履歴の永続化先
            backup: push 前の安全バックアップに使う
            clock: 現在時刻（テストで差し替え）
            state_provider: 定期同期で使う現在の状態（None ならキューのペイロードを使う）
            interval_minutes: 定期同期の間隔（分）
        """
        self._remote = remote
        self._store = store
        self._backup = backup
        self._clock = clock
        self._state_provider = state_provider
        self._interval_minutes = interval_minutes
        self._lock = threading.Lock()
        # 実行中の push 数（force による並走を含む）
        self._in_flight = 0
        self._status: SyncStatus | None = None

    # ── 状態 ────────────────────────────────────────────────────────────────

    def initialize(self) -> SyncStatus:
        """
        起動時に1回実行。前回プロセスが残した sync_in_progress を解除し、
        到達性を確認する。
        """
        with self._lock:
            self._status = self._load_status()
            if self._status.sync_in_progress and self._in_flight == 0:
                logger.warning("Stale sync_in_progress flag reset on startup")
                self._status.sync_in_progress = False
                self._save_status()

        self.check_connectivity()
        return self.get_status()

    def get_status(self) -> SyncStatus:
        with self._lock:
            return replace(self._current())

    def check_connectivity(self) -> bool:
        """リモートへの到達性を確認し、is_online を更新する。例外はオフライン扱い"""
        try:
            online = self._remote.is_reachable()
        except Exception as e:
            logger.warning("Connectivity check failed: %s", e)
            online = False

        with self._lock:
            status = self._current()
            if status.is_online != online:
                logger.info("Connectivity changed: online=%s", online)
            status.is_online = online
            self._save_status()
        return online

    # ── 同期 ────────────────────────────────────────────────────────────────

    def sync_data(
        self,
        user: User,
        letters: list[Letter],
        settings: PortableSettings,
        options: SyncOptions | None = None,
        sync_type: SyncType = SyncType.MANUAL,
    ) -> bool:
        """
        同期を実行する。

        Returns:
            push に成功した場合 True。実行中・オフライン（キューに積んだ）・失敗は False
        """
        options = options or SyncOptions()
        if options.force:
            sync_type = SyncType.FORCE

        with self._lock:
            if self._current().sync_in_progress and not options.force:
                logger.info("Sync already in progress")
                return False

        online = self.check_connectivity()

        with self._lock:
            status = self._current()
            if status.sync_in_progress and not options.force:
                logger.info("Sync already in progress")
                return False
            if not online and not options.force:
                self._queue(user, letters, settings)
                return False
            status.sync_in_progress = True
            self._in_flight += 1
            self._save_status()

        try:
            error = self._run_push(user, letters, settings, options)
        finally:
            with self._lock:
                # force で並走した push が終わっても、残りが走っている間は Syncing のまま
                self._in_flight -= 1
                self._current().sync_in_progress = self._in_flight > 0
        now = self._clock()

        with self._lock:
            status = self._current()
            if error is None:
                if status.last_sync_time and now < status.last_sync_time:
                    logger.warning(
                        "Clock moved backwards: now=%s < last_sync=%s",
                        now.isoformat(),
                        status.last_sync_time.isoformat(),
                    )
                status.is_online = True
                status.last_sync_time = now
                status.pending_changes = 0
                status.last_error = None
                self._remove(PENDING_KEY)
            else:
                status.last_error = error
            self._save_status()
            self._append_history(
                SyncHistoryEntry(
                    timestamp=now, type=sync_type, success=error is None, error=error
                )
            )

        if error is None:
            logger.info(
                "Sync completed: type=%s, letters=%d", sync_type.value, len(letters)
            )
        else:
            logger.warning("Sync failed: type=%s, error=%s", sync_type.value, error)
        return error is None

    def force_sync(
        self, user: User, letters: list[Letter], settings: PortableSettings
    ) -> bool:
        """実行中・オフラインでも push を試みる"""
        return self.sync_data(user, letters, settings, SyncOptions(force=True))

    def tick(self) -> bool:
        """
        定期実行。到達性を確認し、オンラインかつ未同期の変更があり、
        同期中でなければ自動同期する。
        """
        online = self.check_connectivity()
        with self._lock:
            status = self._current()
            if not online or status.pending_changes <= 0 or status.sync_in_progress:
                return False

        state = self._resolve_state()
        if state is None:
            logger.info("Pending changes exist but no state to sync")
            return False

        logger.info("Auto-syncing pending changes: count=%d", status.pending_changes)
        user, letters, settings = state
        return self.sync_data(user, letters, settings, sync_type=SyncType.AUTO)

    def start_periodic(self, scheduler: BaseScheduler) -> None:
        """tick() を interval ジョブとして登録"""
        scheduler.add_job(
            self._run_tick,
            "interval",
            minutes=self._interval_minutes,
            id=SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Periodic sync scheduled: every %d min", self._interval_minutes)

    def stop_periodic(self, scheduler: BaseScheduler) -> None:
        try:
            scheduler.remove_job(SYNC_JOB_ID)
        except JobLookupError:
            return
        logger.info("Periodic sync stopped")

    # ── イベント・参照 ──────────────────────────────────────────────────────

    def on_letter_event(self, event: LetterEvent) -> None:
        """完全削除を tombstone として記録し、未同期の変更に数える"""
        if event.kind is not LetterEventKind.PERMANENTLY_DELETED:
            return
        with self._lock:
            tombstones = self._load_tombstones()
            if event.letter.id not in tombstones:
                tombstones.append(event.letter.id)
                self._save_json(TOMBSTONES_KEY, tombstones)
            self._current().pending_changes += 1
            self._save_status()

    def get_history(self) -> list[SyncHistoryEntry]:
        """同期履歴（新しい順、最大50件）"""
        with self._lock:
            return self._load_history()

    def get_pending_payload(self) -> PendingPayload | None:
        with self._lock:
            raw = self._get(PENDING_KEY)
        if not raw:
            return None
        try:
            return PendingPayload.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupted pending sync payload ignored: %s", e)
            return None

    # ── 内部処理 ────────────────────────────────────────────────────────────

    def _run_push(
        self,
        user: User,
        letters: list[Letter],
        settings: PortableSettings,
        options: SyncOptions,
    ) -> str | None:
        """安全バックアップ → push。失敗時はエラーメッセージを返す"""
        try:
            self._backup.create_snapshot(
                user,
                letters,
                settings,
                BackupOptions(include_images=False, include_settings=True, compress=True),
            )
            if options.sync_user:
                self._remote.update_profile(user)
            if options.sync_letters:
                for letter in letters:
                    self._remote.upsert_letter(letter)
            if options.sync_settings:
                self._remote.update_settings(settings)
            self._drain_tombstones()
        except FuturePadError as e:
            return str(e) or type(e).__name__
        except Exception as e:
            logger.exception("Unexpected error during sync")
            return str(e) or type(e).__name__
        return None

    def _drain_tombstones(self) -> None:
        with self._lock:
            pending = self._load_tombstones()
        done: list[str] = []
        try:
            for letter_id in pending:
                self._remote.permanent_delete(letter_id)
                done.append(letter_id)
        finally:
            if done:
                with self._lock:
                    remaining = [i for i in self._load_tombstones() if i not in done]
                    self._save_json(TOMBSTONES_KEY, remaining)
                logger.info("Remote permanent deletes pushed: count=%d", len(done))

    def _queue(
        self, user: User, letters: list[Letter], settings: PortableSettings
    ) -> None:
        """オフライン時: ペイロードを置き換え、未同期カウントを増やす（ロック内で呼ぶ）"""
        payload = PendingPayload(
            timestamp=self._clock(), user=user, letters=letters, settings=settings
        )
        self._save_json(PENDING_KEY, payload.to_dict())
        status = self._current()
        status.pending_changes += 1
        self._save_status()
        logger.info(
            "Device is offline, sync queued: pending_changes=%d", status.pending_changes
        )

    def _resolve_state(self) -> tuple[User, list[Letter], PortableSettings] | None:
        if self._state_provider is not None:
            try:
                return self._state_provider()
            except Exception:
                logger.exception("Failed to collect state for auto-sync")
                return None
        payload = self.get_pending_payload()
        if payload is None or payload.user is None:
            return None
        return payload.user, payload.letters, payload.settings

    def _run_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            logger.exception("Periodic sync job failed")

    def _current(self) -> SyncStatus:
        if self._status is None:
            self._status = self._load_status()
        return self._status

    def _load_status(self) -> SyncStatus:
        raw = self._get(STATUS_KEY)
        if not raw:
            return SyncStatus()
        try:
            return SyncStatus.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.error("Corrupted sync status discarded: %s", e)
            return SyncStatus()

    def _save_status(self) -> None:
        self._save_json(STATUS_KEY, self._current().to_dict())

    def _load_history(self) -> list[SyncHistoryEntry]:
        raw = self._get(HISTORY_KEY)
        if not raw:
            return []
        try:
            return [SyncHistoryEntry.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupted sync history discarded: %s", e)
            return []

    def _append_history(self, entry: SyncHistoryEntry) -> None:
        history = [entry, *self._load_history()][:MAX_HISTORY]
        self._save_json(HISTORY_KEY, [item.to_dict() for item in history])

    def _load_tombstones(self) -> list[str]:
        raw = self._get(TOMBSTONES_KEY)
        if not raw:
            return []
        try:
            return [str(item) for item in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.error("Corrupted tombstone list discarded: %s", e)
            return []

    def _get(self, key: str) -> str | None:
        try:
            return self._store.get(key)
        except StorageFailure as e:
            logger.error("Failed to read %s: %s", key, e)
            return None

    def _save_json(self, key: str, value: object) -> None:
        try:
            self._store.set(key, json.dumps(value, ensure_ascii=False))
        except StorageFailure as e:
            logger.error("Failed to write %s: %s", key, e)

    def _remove(self, key: str) -> None:
        try:
            self._store.remove(key)
        except StorageFailure as e:
            logger.error("Failed to remove %s: %s", key, e)
