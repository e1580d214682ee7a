"""SettingsStore のユニットテスト"""

import json

import pytest
from futurepad.domain.errors import ValidationError
from futurepad.domain.models import DailyTrigger, NotificationPreferences, PortableSettings
from futurepad.services.settings_store import PREFERENCES_KEY, SETTINGS_KEY


class TestPortableSettings:
    def test_defaults_when_nothing_saved(self, settings_store):
        assert settings_store.get_settings() == PortableSettings()

    def test_save_and_get(self, settings_store, kv_store, sample_settings):
        settings_store.save_settings(sample_settings)

        assert settings_store.get_settings() == sample_settings
        assert json.loads(kv_store.data[SETTINGS_KEY])["language"] == "ja"

    def test_corrupted_settings_fall_back_to_defaults(self, settings_store, kv_store):
        kv_store.data[SETTINGS_KEY] = "]["
        assert settings_store.get_settings() == PortableSettings()

    def test_turning_notifications_off_clears_triggers(
        self, settings_store, scheduler, notification_api, sample_letter
    ):
        scheduler.schedule_letter(sample_letter)
        settings_store.apply_daily_reminder()

        settings_store.save_settings(PortableSettings(notifications=False))

        assert notification_api.jobs == {}
        assert scheduler.list_scheduled() == []

    def test_turning_notifications_back_on_restores_daily_reminder(
        self, settings_store, notification_api
    ):
        settings_store.save_settings(PortableSettings(notifications=False))
        settings_store.save_settings(PortableSettings(notifications=True))

        assert list(notification_api.jobs) == ["daily_reminder"]


class TestPreferences:
    def test_defaults(self, settings_store):
        prefs = settings_store.get_preferences()
        assert prefs == NotificationPreferences()
        assert (prefs.daily_reminder_hour, prefs.daily_reminder_minute) == (20, 0)

    def test_changing_time_reschedules_daily_reminder(
        self, settings_store, kv_store, notification_api
    ):
        updated = settings_store.update_preferences(
            daily_reminder_hour=8, daily_reminder_minute=45
        )

        assert updated.daily_reminder_hour == 8
        assert notification_api.jobs["daily_reminder"][1] == DailyTrigger(hour=8, minute=45)
        assert json.loads(kv_store.data[PREFERENCES_KEY])["daily_reminder_minute"] == 45

    def test_disabling_daily_reminder_cancels_it(self, settings_store, notification_api):
        settings_store.apply_daily_reminder()

        settings_store.update_preferences(daily_reminder_enabled=False)

        assert "daily_reminder" not in notification_api.jobs
        assert settings_store.apply_daily_reminder() == ""

    def test_letter_flags_do_not_touch_daily_reminder(self, settings_store, notification_api):
        settings_store.update_preferences(unlock_notification_enabled=False)

        assert notification_api.jobs == {}
        assert settings_store.get_preferences().unlock_notification_enabled is False

    def test_unknown_key_rejected(self, settings_store):
        with pytest.raises(ValidationError):
            settings_store.update_preferences(sound="chime")

    @pytest.mark.parametrize("changes", [{"daily_reminder_hour": 24}, {"daily_reminder_minute": -1}])
    def test_invalid_time_rejected(self, settings_store, kv_store, changes):
        with pytest.raises(ValidationError):
            settings_store.update_preferences(**changes)
        assert PREFERENCES_KEY not in kv_store.data

    def test_effective_preferences_follow_master_switch(self, settings_store):
        settings_store.save_settings(PortableSettings(notifications=False))

        effective = settings_store.effective_preferences()

        assert effective.letter_reminder_enabled is False
        assert effective.unlock_notification_enabled is False
        assert effective.daily_reminder_enabled is False
        assert settings_store.get_preferences().letter_reminder_enabled is True


def test_reset_to_defaults(settings_store, notification_api, scheduler, sample_letter):
    settings_store.save_settings(PortableSettings(theme="dark"))
    settings_store.update_preferences(daily_reminder_hour=6)
    scheduler.schedule_letter(sample_letter)

    settings_store.reset_to_defaults()

    assert settings_store.get_settings() == PortableSettings()
    assert settings_store.get_preferences() == NotificationPreferences()
    assert list(notification_api.jobs) == ["daily_reminder"]
    assert notification_api.jobs["daily_reminder"][1] == DailyTrigger(hour=20, minute=0)
