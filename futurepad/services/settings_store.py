"""SettingsStore - ポータブル設定と端末ローカルの通知設定

ポータブル設定（バックアップ・同期の対象）と通知設定（端末ローカル）を
KVストアに保存し、通知設定の変更を NotificationScheduler に反映する。
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, fields, replace

from futurepad.domain.errors import StorageFailure, ValidationError
from futurepad.domain.models import (
    DAILY_REMINDER_ID,
    NotificationPreferences,
    PortableSettings,
)
from futurepad.domain.ports import KeyValueStore
from futurepad.services.notification_scheduler import NotificationScheduler

logger = logging.getLogger(__name__)

SETTINGS_KEY = "app_settings"
PREFERENCES_KEY = "notification_preferences"

_PREFERENCE_FIELDS = {f.name for f in fields(NotificationPreferences)}


class SettingsStore:
    def __init__(self, store: KeyValueStore, scheduler: NotificationScheduler) -> None:
        self._store = store
        self._scheduler = scheduler

    # ── ポータブル設定 ──────────────────────────────────────────────────────

    def get_settings(self) -> PortableSettings:
        raw = self._read(SETTINGS_KEY)
        if not raw:
            return PortableSettings()
        try:
            return PortableSettings.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.error("Corrupted settings discarded: %s", e)
            return PortableSettings()

    def save_settings(self, settings: PortableSettings) -> PortableSettings:
        """
        設定を保存する。notifications をオフにすると全トリガーを取り消し、
        オンに戻すと毎日のリマインダーを登録し直す。

        Raises:
            StorageFailure: 保存に失敗した場合
        """
        previous = self.get_settings()
        self._store.set(SETTINGS_KEY, json.dumps(settings.to_dict()))

        if previous.notifications and not settings.notifications:
            self._scheduler.clear_all()
        elif not previous.notifications and settings.notifications:
            self._apply_daily_reminder(self.get_preferences())
        logger.info("Settings saved: %s", settings.to_dict())
        return settings

    # ── 通知設定 ────────────────────────────────────────────────────────────

    def get_preferences(self) -> NotificationPreferences:
        raw = self._read(PREFERENCES_KEY)
        if not raw:
            return NotificationPreferences()
        try:
            data = json.loads(raw)
            return NotificationPreferences(
                **{k: v for k, v in data.items() if k in _PREFERENCE_FIELDS}
            )
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Corrupted notification preferences discarded: %s", e)
            return NotificationPreferences()

    def effective_preferences(self) -> NotificationPreferences:
        """notifications がオフなら全種類を無効として返す（NotificationScheduler 用）"""
        preferences = self.get_preferences()
        if self.get_settings().notifications:
            return preferences
        return replace(
            preferences,
            daily_reminder_enabled=False,
            letter_reminder_enabled=False,
            unlock_notification_enabled=False,
        )

    def update_preferences(self, **changes) -> NotificationPreferences:
        """
        通知設定を部分更新する。

        毎日のリマインダーの有効化・時刻変更は再登録、無効化は取り消しとして反映する。
        手紙ごとのリマインダー・ロック解除の有効/無効は次回以降の登録から反映される。

        Raises:
            ValidationError: 未知の項目、または時刻が範囲外の場合
        """
        unknown = set(changes) - _PREFERENCE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown preference(s): {sorted(unknown)}")

        current = self.get_preferences()
        updated = replace(current, **changes)
        if not (
            0 <= updated.daily_reminder_hour <= 23
            and 0 <= updated.daily_reminder_minute <= 59
        ):
            raise ValidationError(
                f"Invalid reminder time: "
                f"{updated.daily_reminder_hour}:{updated.daily_reminder_minute}"
            )

        self._store.set(PREFERENCES_KEY, json.dumps(asdict(updated)))

        daily_changed = (
            current.daily_reminder_enabled,
            current.daily_reminder_hour,
            current.daily_reminder_minute,
        ) != (
            updated.daily_reminder_enabled,
            updated.daily_reminder_hour,
            updated.daily_reminder_minute,
        )
        if daily_changed:
            self._apply_daily_reminder(updated)
        logger.info("Notification preferences updated: %s", sorted(changes))
        return updated

    def reset_to_defaults(self) -> None:
        """全トリガーを取り消し、設定を初期値に戻して毎日のリマインダーを登録し直す"""
        self._scheduler.clear_all()
        defaults = NotificationPreferences()
        self._store.set(SETTINGS_KEY, json.dumps(PortableSettings().to_dict()))
        self._store.set(PREFERENCES_KEY, json.dumps(asdict(defaults)))
        self._apply_daily_reminder(defaults)
        logger.info("Settings reset to defaults")

    def apply_daily_reminder(self) -> str:
        """現在の設定どおりに毎日のリマインダーを登録（起動時用）"""
        return self._apply_daily_reminder(self.get_preferences())

    # ── 内部処理 ────────────────────────────────────────────────────────────

    def _apply_daily_reminder(self, preferences: NotificationPreferences) -> str:
        if not preferences.daily_reminder_enabled or not self.get_settings().notifications:
            self._scheduler.cancel(DAILY_REMINDER_ID)
            return ""
        return self._scheduler.schedule_daily_reminder(
            preferences.daily_reminder_hour, preferences.daily_reminder_minute
        )

    def _read(self, key: str) -> str | None:
        try:
            return self._store.get(key)
        except StorageFailure as e:
            logger.error("Failed to read %s: %s", key, e)
            return None
