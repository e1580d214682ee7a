"""NotificationScheduler のユニットテスト

ローカル通知スケジューラはフェイク（conftest.FakeNotificationApi）で代替し、
トリガーとレジストリ（KVストア）の整合性を検証する。
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from futurepad.domain.errors import StorageFailure, ValidationError
from futurepad.domain.models import (
    DAILY_REMINDER_ID,
    DailyTrigger,
    DateTrigger,
    LetterEvent,
    LetterEventKind,
    NotificationPreferences,
    NotificationPurpose,
)
from futurepad.domain.ports import KeyValueStore
from futurepad.services.notification_scheduler import (
    REGISTRY_KEY,
    NotificationScheduler,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)  # conftest の FakeClock と同じ


def _registry_ids(kv_store):
    return sorted(item["id"] for item in json.loads(kv_store.data[REGISTRY_KEY]))


class TestScheduleLetter:
    def test_letter_two_days_ahead_gets_both_triggers(
        self, scheduler, notification_api, kv_store, sample_letter
    ):
        reminder_id, unlock_id = scheduler.schedule_letter(sample_letter)

        assert reminder_id == "reminder:letter-1"
        assert unlock_id == "unlock:letter-1"
        content, trigger = notification_api.jobs[reminder_id]
        assert trigger == DateTrigger(fire_at=NOW + timedelta(days=1))
        assert content.title == "Letter Reminder"
        assert content.body == 'Your letter "Hello future me" will be unlocked tomorrow!'
        assert content.data == {
            "notificationId": "reminder:letter-1",
            "purpose": "reminder",
            "letterId": "letter-1",
        }
        assert notification_api.jobs[unlock_id][1] == DateTrigger(
            fire_at=sample_letter.delivery_date
        )
        assert _registry_ids(kv_store) == ["reminder:letter-1", "unlock:letter-1"]

    def test_reminder_in_the_past_is_skipped(self, scheduler, notification_api, make_letter):
        """配達日まで1日未満なら前日リマインダーは登録しない"""
        letter = make_letter(delivery_date=NOW + timedelta(hours=20))

        reminder_id, unlock_id = scheduler.schedule_letter(letter)

        assert reminder_id == ""
        assert unlock_id == "unlock:letter-1"
        assert list(notification_api.jobs) == ["unlock:letter-1"]

    def test_delivered_or_deleted_letter_is_not_scheduled(
        self, scheduler, notification_api, make_letter
    ):
        assert scheduler.schedule_letter(make_letter(is_delivered=True)) == ("", "")
        assert scheduler.schedule_letter(make_letter(is_deleted=True)) == ("", "")
        assert notification_api.jobs == {}

    def test_rescheduling_keeps_single_trigger_per_purpose(
        self, scheduler, notification_api, sample_letter
    ):
        scheduler.schedule_letter(sample_letter)
        scheduler.schedule_letter(sample_letter)

        assert len(notification_api.jobs) == 2
        assert len(scheduler.lookup("letter-1")) == 2

    def test_denied_trigger_returns_empty_id(
        self, scheduler, notification_api, kv_store, sample_letter
    ):
        notification_api.deny = True

        assert scheduler.schedule_reminder(sample_letter) == ""
        assert scheduler.lookup("letter-1") == []
        assert REGISTRY_KEY not in kv_store.data

    def test_disabled_preferences_skip_letter_triggers(
        self, notification_api, kv_store, clock, sample_letter
    ):
        scheduler = NotificationScheduler(
            notification_api,
            kv_store,
            clock=clock,
            preferences=lambda: NotificationPreferences(
                letter_reminder_enabled=False, unlock_notification_enabled=True
            ),
        )

        assert scheduler.schedule_letter(sample_letter) == ("", "unlock:letter-1")


class TestCancel:
    def test_cancel_all_for_letter(self, scheduler, notification_api, make_letter):
        scheduler.schedule_letter(make_letter(id="a"))
        scheduler.schedule_letter(make_letter(id="b"))

        assert scheduler.cancel_all_for_letter("a") == 2

        assert sorted(notification_api.jobs) == ["reminder:b", "unlock:b"]
        assert scheduler.lookup("a") == []

    def test_cancel_unknown_id_is_noop(self, scheduler, kv_store):
        scheduler.cancel("unlock:missing")
        scheduler.cancel("unlock:missing")
        assert REGISTRY_KEY not in kv_store.data

    def test_clear_all(self, scheduler, notification_api, sample_letter):
        scheduler.schedule_letter(sample_letter)
        scheduler.schedule_daily_reminder()

        scheduler.clear_all()

        assert notification_api.jobs == {}
        assert scheduler.list_scheduled() == []


class TestLetterEvents:
    def test_lifecycle_events_drive_triggers(self, scheduler, notification_api, sample_letter):
        """作成で登録、配達で全取り消し"""
        scheduler.on_letter_event(LetterEvent(LetterEventKind.CREATED, sample_letter))
        assert len(notification_api.jobs) == 2

        scheduler.on_letter_event(LetterEvent(LetterEventKind.DELIVERED, sample_letter))
        assert notification_api.jobs == {}
        assert scheduler.lookup("letter-1") == []

    def test_update_moves_triggers_to_new_date(
        self, scheduler, notification_api, sample_letter, make_letter
    ):
        scheduler.on_letter_event(LetterEvent(LetterEventKind.CREATED, sample_letter))
        moved = make_letter(delivery_date=NOW + timedelta(days=10))

        scheduler.on_letter_event(LetterEvent(LetterEventKind.UPDATED, moved))

        assert notification_api.jobs["unlock:letter-1"][1] == DateTrigger(
            fire_at=NOW + timedelta(days=10)
        )
        assert notification_api.jobs["reminder:letter-1"][1] == DateTrigger(
            fire_at=NOW + timedelta(days=9)
        )

    def test_soft_delete_then_restore(self, scheduler, notification_api, sample_letter):
        scheduler.on_letter_event(LetterEvent(LetterEventKind.CREATED, sample_letter))
        scheduler.on_letter_event(LetterEvent(LetterEventKind.SOFT_DELETED, sample_letter))
        assert notification_api.jobs == {}

        scheduler.on_letter_event(LetterEvent(LetterEventKind.RESTORED, sample_letter))
        assert sorted(notification_api.jobs) == ["reminder:letter-1", "unlock:letter-1"]

    def test_restore_after_delivery_date_schedules_nothing(
        self, scheduler, notification_api, clock, sample_letter
    ):
        clock.advance(days=3)

        scheduler.on_letter_event(LetterEvent(LetterEventKind.RESTORED, sample_letter))

        assert notification_api.jobs == {}

    def test_letter_store_integration(self, letter_store, scheduler, notification_api, clock):
        """LetterStore 経由の作成・完全削除でトリガーが追従する"""
        letter_store.subscribe(scheduler.on_letter_event)
        letter = letter_store.create(
            content="Ten chars at least.", delivery_date=clock.now + timedelta(days=5)
        )
        assert len(scheduler.lookup(letter.id)) == 2

        letter_store.permanent_delete(letter.id)
        assert scheduler.lookup(letter.id) == []
        assert notification_api.jobs == {}
        assert letter.id not in scheduler._letter_locks


class TestFiredTriggers:
    def test_fired_date_trigger_leaves_registry(
        self, scheduler, kv_store, clock, sample_letter
    ):
        scheduler.schedule_letter(sample_letter)
        clock.advance(days=2)

        scheduler.on_trigger_fired("unlock:letter-1")

        assert [r.id for r in scheduler.lookup("letter-1")] == ["reminder:letter-1"]
        assert "unlock:letter-1" not in _registry_ids(kv_store)

    def test_rescheduled_trigger_is_kept(self, scheduler, sample_letter):
        """発火時刻が未来のエントリ（付け替え済み）は残す"""
        scheduler.schedule_letter(sample_letter)

        scheduler.on_trigger_fired("unlock:letter-1")

        assert len(scheduler.lookup("letter-1")) == 2

    def test_daily_reminder_stays_registered(self, scheduler):
        scheduler.schedule_daily_reminder(hour=7)

        scheduler.on_trigger_fired(DAILY_REMINDER_ID)
        scheduler.on_trigger_fired("unknown")

        assert [r.id for r in scheduler.list_scheduled()] == [DAILY_REMINDER_ID]


class TestDailyReminder:
    def test_schedule_daily_reminder(self, scheduler, notification_api):
        assert scheduler.schedule_daily_reminder(hour=7, minute=30) == "daily_reminder"

        content, trigger = notification_api.jobs["daily_reminder"]
        assert trigger == DailyTrigger(hour=7, minute=30)
        assert content.body == "Time to write a letter to your future self!"
        assert content.data["purpose"] == "daily"

    def test_rescheduling_replaces_previous_time(self, scheduler, notification_api):
        scheduler.schedule_daily_reminder(hour=7)
        scheduler.schedule_daily_reminder(hour=21, minute=15)

        records = scheduler.list_scheduled()
        assert len(records) == 1
        assert records[0].purpose is NotificationPurpose.DAILY
        assert notification_api.jobs["daily_reminder"][1] == DailyTrigger(hour=21, minute=15)

    @pytest.mark.parametrize("hour,minute", [(24, 0), (-1, 0), (12, 60)])
    def test_invalid_time_rejected(self, scheduler, hour, minute):
        with pytest.raises(ValidationError):
            scheduler.schedule_daily_reminder(hour=hour, minute=minute)


class TestReconcile:
    def test_prunes_entries_without_live_trigger(
        self, notification_api, kv_store, clock, make_letter
    ):
        first = NotificationScheduler(notification_api, kv_store, clock=clock)
        first.schedule_letter(make_letter(id="a"))
        first.schedule_letter(make_letter(id="b"))
        # 再起動でスケジューラ側のトリガーが一部失われた状態
        notification_api.cancel("unlock:a")

        restarted = NotificationScheduler(notification_api, kv_store, clock=clock)
        pruned = restarted.reconcile()

        assert pruned == ["unlock:a"]
        assert "unlock:a" not in _registry_ids(kv_store)
        assert len(restarted.list_scheduled()) == 3

    def test_ensure_scheduled_restores_missing_triggers(
        self, scheduler, notification_api, make_letter
    ):
        scheduler.schedule_letter(make_letter(id="a"))
        notification_api.cancel("reminder:a")
        scheduler.reconcile()

        added = scheduler.ensure_scheduled(
            [make_letter(id="a"), make_letter(id="b"), make_letter(id="c", is_deleted=True)]
        )

        assert added == 3
        assert sorted(notification_api.jobs) == [
            "reminder:a",
            "reminder:b",
            "unlock:a",
            "unlock:b",
        ]

    def test_corrupted_registry_is_discarded(self, notification_api, kv_store, clock):
        kv_store.data[REGISTRY_KEY] = "{not json"
        scheduler = NotificationScheduler(notification_api, kv_store, clock=clock)

        assert scheduler.reconcile() == []
        assert scheduler.list_scheduled() == []


class TestStorageFailure:
    def test_persist_failure_keeps_in_memory_registry(
        self, notification_api, clock, sample_letter
    ):
        store = MagicMock(spec=KeyValueStore)
        store.get.return_value = None
        store.set.side_effect = StorageFailure("disk full")
        scheduler = NotificationScheduler(notification_api, store, clock=clock)

        assert scheduler.schedule_unlock(sample_letter) == "unlock:letter-1"
        assert [r.id for r in scheduler.lookup("letter-1")] == ["unlock:letter-1"]
