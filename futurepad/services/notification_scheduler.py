"""NotificationScheduler - 手紙のライフサイクルに紐づく通知トリガーの管理

手紙ごとに「前日リマインダー」と「ロック解除」の2種類、加えて毎日の執筆リマインダーを
ローカル通知スケジューラに登録し、その対応表（レジストリ）をKVストアに永続化する。

通知IDは (purpose, letter_id) から決定的に作るため、
同じ手紙・同じ目的のトリガーは構造的に1つしか存在しない。
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from futurepad.domain import lifecycle
from futurepad.domain.errors import (
    StorageFailure,
    TriggerSchedulingFailure,
    ValidationError,
)
from futurepad.domain.models import (
    DAILY_REMINDER_ID,
    DailyTrigger,
    DateTrigger,
    Letter,
    LetterEvent,
    LetterEventKind,
    LockState,
    NotificationContent,
    NotificationPreferences,
    NotificationPurpose,
    NotificationRecord,
    notification_id,
    utcnow,
)
from futurepad.domain.ports import KeyValueStore, LocalNotificationApi

logger = logging.getLogger(__name__)

REGISTRY_KEY = "scheduled_notifications"
REMINDER_LEAD = timedelta(days=1)


class NotificationScheduler:
    """
    通知トリガーとレジストリの整合性を保つサービス。

    - スケジューラが登録を拒否しても例外は外に出さず、空文字のIDを返す
    - レジストリの保存に失敗してもメモリ上のレジストリで動作を続ける
      （その場合、再起動後にトリガーが残らない可能性がある）
    - レジストリはレジストリ全体のロックと手紙IDごとのロックで保護する
    """

    def __init__(
        self,
        backend: LocalNotificationApi,
        store: KeyValueStore,
        clock: Callable[[], datetime] = utcnow,
        preferences: Callable[[], NotificationPreferences] | None = None,
    ) -> None:
        """
        Args:
            backend: ローカル通知スケジューラ
            store: レジストリの永続化先
            clock: 現在時刻（テストで差し替え）
            preferences: 通知設定の取得関数（None の場合は全て有効）
        """
        self._backend = backend
        self._store = store
        self._clock = clock
        self._preferences = preferences or NotificationPreferences
        self._registry: dict[str, NotificationRecord] | None = None
        self._registry_lock = threading.RLock()
        self._letter_locks: dict[str, threading.RLock] = {}

    # ── 手紙のトリガー ──────────────────────────────────────────────────────

    def schedule_reminder(self, letter: Letter) -> str:
        """配達日の1日前にリマインダーを登録。過去になる場合は何もせず "" を返す"""
        if not self._preferences().letter_reminder_enabled:
            return ""
        return self._schedule_for_letter(
            letter,
            NotificationPurpose.REMINDER,
            fire_at=letter.delivery_date - REMINDER_LEAD,
            title="Letter Reminder",
            body=f'Your letter "{letter.title}" will be unlocked tomorrow!',
        )

    def schedule_unlock(self, letter: Letter) -> str:
        """配達日ちょうどにロック解除通知を登録。過去なら "" を返す"""
        if not self._preferences().unlock_notification_enabled:
            return ""
        return self._schedule_for_letter(
            letter,
            NotificationPurpose.UNLOCK,
            fire_at=letter.delivery_date,
            title="Letter Unlocked!",
            body=f'Your letter "{letter.title}" is now ready to read!',
        )

    def schedule_letter(self, letter: Letter) -> tuple[str, str]:
        """リマインダーとロック解除の両方を登録"""
        return self.schedule_reminder(letter), self.schedule_unlock(letter)

    def cancel_all_for_letter(self, letter_id: str) -> int:
        """手紙に紐づくトリガーを全て取り消す。取り消した件数を返す"""
        with self._letter_lock(letter_id):
            ids = [r.id for r in self.lookup(letter_id)]
            for record_id in ids:
                self.cancel(record_id)
        if ids:
            logger.info("Cancelled %d trigger(s) for letter %s", len(ids), letter_id)
        return len(ids)

    def ensure_scheduled(self, letters: list[Letter]) -> int:
        """
        ロック中の手紙で欠けているトリガーを登録し直す（再起動後の復元用）。

        Returns:
            新たに登録したトリガーの数
        """
        now = self._clock()
        registry = self._records()
        added = 0
        for letter in letters:
            if letter.is_deleted or lifecycle.compute_lock_state(letter, now) is not (
                LockState.LOCKED
            ):
                continue
            if notification_id(NotificationPurpose.REMINDER, letter.id) not in registry:
                added += bool(self.schedule_reminder(letter))
            if notification_id(NotificationPurpose.UNLOCK, letter.id) not in registry:
                added += bool(self.schedule_unlock(letter))
        if added:
            logger.info("Restored %d missing trigger(s)", added)
        return added

    def on_letter_event(self, event: LetterEvent) -> None:
        """LetterStore のイベントに応じてトリガーを登録・取り消す"""
        letter = event.letter
        with self._letter_lock(letter.id):
            if event.kind is LetterEventKind.CREATED:
                self.schedule_letter(letter)
            elif event.kind in (LetterEventKind.UPDATED, LetterEventKind.RESTORED):
                self.cancel_all_for_letter(letter.id)
                self.schedule_letter(letter)
            else:
                # DELIVERED / SOFT_DELETED / PERMANENTLY_DELETED
                self.cancel_all_for_letter(letter.id)
        if event.kind is LetterEventKind.PERMANENTLY_DELETED:
            with self._registry_lock:
                self._letter_locks.pop(letter.id, None)

    # ── 毎日のリマインダー ──────────────────────────────────────────────────

    def schedule_daily_reminder(self, hour: int = 20, minute: int = 0) -> str:
        """
        毎日 hour:minute の執筆リマインダーを登録。既存の毎日トリガーは先に取り消す。

        Raises:
            ValidationError: 時刻が範囲外の場合
        """
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValidationError(f"Invalid reminder time: {hour}:{minute}")

        with self._registry_lock:
            self.cancel(DAILY_REMINDER_ID)
            record = NotificationRecord(
                id=DAILY_REMINDER_ID,
                purpose=NotificationPurpose.DAILY,
                letter_id="",
                title="Daily Reminder",
                body="Time to write a letter to your future self!",
                trigger=DailyTrigger(hour=hour, minute=minute),
            )
            return self._schedule(record)

    # ── 共通操作 ────────────────────────────────────────────────────────────

    def cancel(self, record_id: str) -> None:
        """トリガーとレジストリのエントリを削除。未知のIDは何もしない（冪等）"""
        self._backend.cancel(record_id)
        with self._registry_lock:
            registry = self._records()
            if registry.pop(record_id, None) is not None:
                self._persist()
                logger.debug("Cancelled trigger: id=%s", record_id)

    def on_trigger_fired(self, record_id: str) -> None:
        """一度きりのトリガーが発火したらレジストリから外す（毎日トリガーは残す）"""
        with self._registry_lock:
            record = self._records().get(record_id)
            if record is None or not isinstance(record.trigger, DateTrigger):
                return
            if record.trigger.fire_at > self._clock():
                return
            del self._records()[record_id]
            self._persist()
        logger.debug("Fired trigger removed from registry: id=%s", record_id)

    def lookup(self, letter_id: str) -> list[NotificationRecord]:
        with self._registry_lock:
            return [r for r in self._records().values() if r.letter_id == letter_id]

    def list_scheduled(self) -> list[NotificationRecord]:
        with self._registry_lock:
            return sorted(self._records().values(), key=lambda r: r.id)

    def clear_all(self) -> None:
        """全トリガーを取り消す（通知設定をオフにした場合）"""
        with self._registry_lock:
            for record_id in list(self._records()):
                self.cancel(record_id)
        logger.info("Cleared all scheduled notifications")

    def reconcile(self) -> list[str]:
        """
        起動時に1回実行。永続化されたレジストリを読み直し、
        生きているトリガーが無いエントリを削除する。
        レジストリに無い生きたトリガーはそのまま残す（一度発火するだけで無害）。

        Returns:
            削除したエントリのIDリスト
        """
        with self._registry_lock:
            self._registry = self._load()
            live = set(self._backend.list_all())
            pruned = [record_id for record_id in self._registry if record_id not in live]
            for record_id in pruned:
                del self._registry[record_id]
            if pruned:
                self._persist()

        logger.info(
            "Reconciled notification registry: kept=%d, pruned=%d",
            len(self._registry),
            len(pruned),
        )
        return pruned

    # ── 内部処理 ────────────────────────────────────────────────────────────

    def _schedule_for_letter(
        self,
        letter: Letter,
        purpose: NotificationPurpose,
        fire_at: datetime,
        title: str,
        body: str,
    ) -> str:
        if letter.is_deleted or letter.is_delivered:
            return ""
        if fire_at <= self._clock():
            logger.debug(
                "Skip %s trigger for letter %s: %s is in the past",
                purpose.value,
                letter.id,
                fire_at.isoformat(),
            )
            return ""

        record = NotificationRecord(
            id=notification_id(purpose, letter.id),
            purpose=purpose,
            letter_id=letter.id,
            title=title,
            body=body,
            trigger=DateTrigger(fire_at=fire_at),
        )
        with self._letter_lock(letter.id):
            return self._schedule(record)

    def _schedule(self, record: NotificationRecord) -> str:
        content = NotificationContent(
            title=record.title,
            body=record.body,
            data={
                "notificationId": record.id,
                "purpose": record.purpose.value,
                "letterId": record.letter_id,
            },
        )
        try:
            self._backend.schedule(record.id, content, record.trigger)
        except TriggerSchedulingFailure as e:
            logger.warning("Trigger not scheduled: id=%s, reason=%s", record.id, e)
            with self._registry_lock:
                if self._records().pop(record.id, None) is not None:
                    self._persist()
            return ""

        with self._registry_lock:
            self._records()[record.id] = record
            self._persist()
        return record.id

    def _letter_lock(self, letter_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._letter_locks.get(letter_id)
            if lock is None:
                lock = self._letter_locks[letter_id] = threading.RLock()
            return lock

    def _records(self) -> dict[str, NotificationRecord]:
        if self._registry is None:
            self._registry = self._load()
        return self._registry

    def _load(self) -> dict[str, NotificationRecord]:
        try:
            raw = self._store.get(REGISTRY_KEY)
        except StorageFailure as e:
            logger.error("Failed to load notification registry: %s", e)
            return {}
        if not raw:
            return {}
        try:
            records = [NotificationRecord.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupted notification registry discarded: %s", e)
            return {}
        return {record.id: record for record in records}

    def _persist(self) -> None:
        registry = self._records()
        payload = json.dumps([record.to_dict() for record in registry.values()])
        try:
            self._store.set(REGISTRY_KEY, payload)
        except StorageFailure as e:
            logger.error("Failed to persist notification registry: %s", e)
