"""SyncEngine のユニットテスト

RemoteLetterApi は MagicMock(spec=RemoteLetterApi) を使い、
is_reachable の戻り値でオンライン/オフラインを切り替える。
"""

import json
import threading
from unittest.mock import MagicMock, call

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from futurepad.domain.errors import NetworkFailure, StorageFailure
from futurepad.domain.models import (
    LetterEvent,
    LetterEventKind,
    SyncOptions,
    SyncStatus,
    SyncType,
)
from futurepad.services.backup_serializer import LOCAL_BACKUP_KEY
from futurepad.services.sync_engine import (
    HISTORY_KEY,
    MAX_HISTORY,
    PENDING_KEY,
    STATUS_KEY,
    SYNC_JOB_ID,
    TOMBSTONES_KEY,
    SyncEngine,
)


@pytest.fixture
def state(sample_user, sample_letter, sample_settings):
    return sample_user, [sample_letter], sample_settings


class TestOnlineSync:
    def test_successful_sync_pushes_everything(
        self, sync_engine, mock_remote, kv_store, clock, state, sample_letter
    ):
        user, letters, settings = state

        assert sync_engine.sync_data(user, letters, settings) is True

        mock_remote.update_profile.assert_called_once_with(user)
        mock_remote.upsert_letter.assert_called_once_with(sample_letter)
        mock_remote.update_settings.assert_called_once_with(settings)
        status = sync_engine.get_status()
        assert status == SyncStatus(
            is_online=True, last_sync_time=clock.now, pending_changes=0
        )

    def test_safety_backup_written_without_images(self, sync_engine, kv_store, state):
        sync_engine.sync_data(*state)

        backup = json.loads(kv_store.data[LOCAL_BACKUP_KEY])
        assert backup["letters"][0]["images"] == []
        assert backup["settings"]["theme"] == "dark"

    def test_options_limit_what_is_pushed(self, sync_engine, mock_remote, state):
        sync_engine.sync_data(
            *state, options=SyncOptions(sync_user=False, sync_settings=False)
        )

        mock_remote.update_profile.assert_not_called()
        mock_remote.update_settings.assert_not_called()
        mock_remote.upsert_letter.assert_called_once()

    def test_history_records_attempt(self, sync_engine, clock, state):
        sync_engine.sync_data(*state)

        history = sync_engine.get_history()
        assert len(history) == 1
        assert history[0].type is SyncType.MANUAL
        assert history[0].success is True
        assert history[0].timestamp == clock.now


class TestOfflineQueue:
    def test_offline_sync_queues_payload(self, sync_engine, mock_remote, kv_store, state):
        """オフライン時は push せずペイロードを1件だけ保持する"""
        mock_remote.is_reachable.return_value = False
        user, letters, settings = state

        assert sync_engine.sync_data(user, letters, settings) is False
        assert sync_engine.sync_data(user, [], settings) is False

        mock_remote.upsert_letter.assert_not_called()
        status = sync_engine.get_status()
        assert status.is_online is False
        assert status.pending_changes == 2
        payload = sync_engine.get_pending_payload()
        assert payload.letters == []
        assert payload.user == user
        assert HISTORY_KEY not in kv_store.data

    def test_reachability_error_counts_as_offline(self, sync_engine, mock_remote, state):
        mock_remote.is_reachable.side_effect = RuntimeError("dns")

        assert sync_engine.check_connectivity() is False
        assert sync_engine.sync_data(*state) is False
        assert sync_engine.get_status().pending_changes == 1

    def test_reconnect_tick_drains_queue(
        self, sync_engine, mock_remote, kv_store, clock, state, sample_letter
    ):
        mock_remote.is_reachable.return_value = False
        sync_engine.sync_data(*state)
        clock.advance(minutes=5)
        mock_remote.is_reachable.return_value = True

        assert sync_engine.tick() is True

        mock_remote.upsert_letter.assert_called_once_with(sample_letter)
        status = sync_engine.get_status()
        assert status.pending_changes == 0
        assert status.last_sync_time == clock.now
        assert PENDING_KEY not in kv_store.data
        assert sync_engine.get_history()[0].type is SyncType.AUTO

    def test_tick_without_pending_changes_does_nothing(self, sync_engine, mock_remote):
        assert sync_engine.tick() is False
        mock_remote.update_profile.assert_not_called()

    def test_tick_prefers_state_provider(
        self, mock_remote, kv_store, backup, clock, state, make_letter
    ):
        fresh = make_letter(id="fresh")
        user, _, settings = state
        engine = SyncEngine(
            mock_remote,
            kv_store,
            backup,
            clock=clock,
            state_provider=lambda: (user, [fresh], settings),
        )
        mock_remote.is_reachable.return_value = False
        engine.sync_data(*state)
        mock_remote.is_reachable.return_value = True

        assert engine.tick() is True
        mock_remote.upsert_letter.assert_called_once_with(fresh)

    def test_force_sync_pushes_while_offline(self, sync_engine, mock_remote, state):
        mock_remote.is_reachable.return_value = False

        assert sync_engine.force_sync(*state) is True

        mock_remote.upsert_letter.assert_called_once()
        assert sync_engine.get_history()[0].type is SyncType.FORCE


class TestFailures:
    def test_push_failure_keeps_queue_and_records_error(
        self, sync_engine, mock_remote, kv_store, state
    ):
        mock_remote.is_reachable.return_value = False
        sync_engine.sync_data(*state)
        mock_remote.is_reachable.return_value = True
        mock_remote.upsert_letter.side_effect = NetworkFailure("HTTP 500", status_code=500)

        assert sync_engine.sync_data(*state) is False

        status = sync_engine.get_status()
        assert status.last_error == "HTTP 500"
        assert status.pending_changes == 1
        assert status.sync_in_progress is False
        assert status.last_sync_time is None
        assert PENDING_KEY in kv_store.data
        entry = sync_engine.get_history()[0]
        assert entry.success is False
        assert entry.error == "HTTP 500"

    def test_unexpected_error_is_recorded(self, sync_engine, mock_remote, state):
        mock_remote.update_profile.side_effect = ValueError("bad payload")

        assert sync_engine.sync_data(*state) is False
        assert sync_engine.get_status().last_error == "bad payload"

    def test_success_after_failure_clears_error(self, sync_engine, mock_remote, state):
        mock_remote.update_settings.side_effect = [NetworkFailure("timeout"), None]

        sync_engine.sync_data(*state)
        assert sync_engine.sync_data(*state) is True
        assert sync_engine.get_status().last_error is None

    def test_sync_already_in_progress_returns_false(self, sync_engine, mock_remote, state):
        """push 中に来た同期要求は待たずに False"""
        results = []

        def reenter(letter):
            results.append(sync_engine.sync_data(*state))

        mock_remote.upsert_letter.side_effect = reenter

        assert sync_engine.sync_data(*state) is True
        assert results == [False]
        assert len(sync_engine.get_history()) == 1

    def test_forced_sync_does_not_release_outer_sync(self, sync_engine, mock_remote, state):
        """force で割り込んだ push が終わっても、外側の push 中は Syncing のまま"""
        observed = {}

        def overlap(user):
            mock_remote.update_profile.side_effect = None
            observed["forced"] = sync_engine.force_sync(*state)
            observed["in_progress"] = sync_engine.get_status().sync_in_progress
            observed["third"] = sync_engine.sync_data(*state)

        mock_remote.update_profile.side_effect = overlap

        assert sync_engine.sync_data(*state) is True
        assert observed == {"forced": True, "in_progress": True, "third": False}
        assert sync_engine.get_status().sync_in_progress is False
        assert [e.type for e in sync_engine.get_history()] == [
            SyncType.MANUAL,
            SyncType.FORCE,
        ]

    def test_tick_skips_while_manual_sync_running(
        self, mock_remote, kv_store, backup, clock, state
    ):
        """別スレッドの手動同期が push 中なら、tick は同期しない"""
        engine = SyncEngine(
            mock_remote, kv_store, backup, clock=clock, state_provider=lambda: state
        )
        pushing = threading.Event()
        release = threading.Event()

        def block(letter):
            pushing.set()
            assert release.wait(timeout=5)

        mock_remote.upsert_letter.side_effect = block
        engine.on_letter_event(
            LetterEvent(kind=LetterEventKind.PERMANENTLY_DELETED, letter=state[1][0])
        )
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.sync_data(*state)))
        worker.start()
        try:
            assert pushing.wait(timeout=5)
            assert engine.tick() is False
        finally:
            release.set()
            worker.join(timeout=5)

        assert results == [True]
        assert mock_remote.upsert_letter.call_count == 1
        assert engine.get_status().sync_in_progress is False

    def test_storage_failure_does_not_break_sync(
        self, mock_remote, backup, clock, state
    ):
        store = MagicMock()
        store.get.return_value = None
        store.set.side_effect = StorageFailure("read-only")
        engine = SyncEngine(mock_remote, store, backup, clock=clock)

        assert engine.sync_data(*state) is True


class TestHistory:
    def test_history_is_capped_newest_first(self, sync_engine, clock, state):
        for _ in range(MAX_HISTORY + 5):
            clock.advance(minutes=1)
            sync_engine.sync_data(*state)

        history = sync_engine.get_history()
        assert len(history) == MAX_HISTORY
        assert history[0].timestamp == clock.now
        assert history[0].timestamp > history[-1].timestamp


class TestTombstones:
    def test_permanent_delete_is_pushed_on_next_sync(
        self, sync_engine, mock_remote, kv_store, state, make_letter
    ):
        for letter_id in ("gone-1", "gone-2"):
            sync_engine.on_letter_event(
                LetterEvent(LetterEventKind.PERMANENTLY_DELETED, make_letter(id=letter_id))
            )
        assert sync_engine.get_status().pending_changes == 2

        assert sync_engine.sync_data(*state) is True

        assert mock_remote.permanent_delete.call_args_list == [
            call("gone-1"),
            call("gone-2"),
        ]
        assert json.loads(kv_store.data[TOMBSTONES_KEY]) == []

    def test_partial_drain_keeps_remaining_ids(
        self, sync_engine, mock_remote, kv_store, state, make_letter
    ):
        for letter_id in ("gone-1", "gone-2"):
            sync_engine.on_letter_event(
                LetterEvent(LetterEventKind.PERMANENTLY_DELETED, make_letter(id=letter_id))
            )
        mock_remote.permanent_delete.side_effect = [None, NetworkFailure("HTTP 503")]

        assert sync_engine.sync_data(*state) is False
        assert json.loads(kv_store.data[TOMBSTONES_KEY]) == ["gone-2"]

    def test_other_events_are_ignored(self, sync_engine, sample_letter):
        sync_engine.on_letter_event(LetterEvent(LetterEventKind.SOFT_DELETED, sample_letter))
        assert sync_engine.get_status().pending_changes == 0


class TestLifecycle:
    def test_initialize_resets_stale_in_progress_flag(
        self, mock_remote, kv_store, backup, clock
    ):
        kv_store.data[STATUS_KEY] = json.dumps(
            SyncStatus(sync_in_progress=True, pending_changes=3).to_dict()
        )
        engine = SyncEngine(mock_remote, kv_store, backup, clock=clock)

        status = engine.initialize()

        assert status.sync_in_progress is False
        assert status.pending_changes == 3
        assert status.is_online is True
        assert json.loads(kv_store.data[STATUS_KEY])["syncInProgress"] is False

    def test_get_status_returns_copy(self, sync_engine):
        status = sync_engine.get_status()
        status.pending_changes = 99
        assert sync_engine.get_status().pending_changes == 0

    def test_start_and_stop_periodic(self, mock_remote, kv_store, backup, clock):
        scheduler = BackgroundScheduler(timezone="UTC")
        engine = SyncEngine(mock_remote, kv_store, backup, clock=clock, interval_minutes=7)

        engine.start_periodic(scheduler)

        jobs = scheduler.get_jobs()
        assert [job.id for job in jobs] == [SYNC_JOB_ID]
        assert jobs[0].trigger.interval.total_seconds() == 7 * 60

        engine.stop_periodic(scheduler)
        engine.stop_periodic(scheduler)
        assert scheduler.get_jobs() == []
