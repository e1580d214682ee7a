"""APScheduler Local Notification Adapter

LocalNotificationApi ABC の APScheduler 実装。
トリガーは APScheduler のジョブとして登録し、発火時に Notifier へ配信する。

トリガー対応:
  DateTrigger(fire_at)       → apscheduler DateTrigger(run_date)
  DailyTrigger(hour, minute) → apscheduler CronTrigger(hour, minute)

ジョブストアはメモリ上のため、プロセス再起動で全トリガーが消える。
再起動後は NotificationScheduler.reconcile() + ensure_scheduled() で復元する。
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger as APDateTrigger

from futurepad.domain.errors import TriggerSchedulingFailure
from futurepad.domain.models import DateTrigger, NotificationContent, Trigger
from futurepad.domain.ports import LocalNotificationApi, Notifier

logger = logging.getLogger(__name__)

# 発火が遅れた場合に配信を諦めるまでの猶予（秒）
_MISFIRE_GRACE_SECONDS = 3600


class APSchedulerNotificationApi(LocalNotificationApi):
    """
    APScheduler のジョブを通知トリガーとして扱う実装。

    permission_granted=False の場合はOSが通知権限を拒否した状態を表し、
    schedule() は TriggerSchedulingFailure を送出する。
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        notifier: Notifier,
        timezone: str = "UTC",
        permission_granted: bool = True,
    ) -> None:
        """
        Args:
            scheduler: APScheduler のスケジューラ（起動前でも可）
            notifier: 発火時の配信先
            timezone: 毎日トリガーの時刻を解釈するタイムゾーン
            permission_granted: 通知権限の有無
        """
        self._scheduler = scheduler
        self._notifier = notifier
        self._timezone = timezone
        self._permission_granted = permission_granted
        self._fired_listeners: list[Callable[[str], None]] = []

    def add_fired_listener(self, listener: Callable[[str], None]) -> None:
        """発火（配信の成否に関わらず）後に通知IDを受け取るコールバックを登録"""
        self._fired_listeners.append(listener)

    def schedule(
        self, identifier: str, content: NotificationContent, trigger: Trigger
    ) -> str:
        if not self._permission_granted:
            raise TriggerSchedulingFailure("Notification permission not granted")

        if isinstance(trigger, DateTrigger):
            ap_trigger = APDateTrigger(run_date=trigger.fire_at)
        else:
            ap_trigger = CronTrigger(
                hour=trigger.hour, minute=trigger.minute, timezone=self._timezone
            )

        # 起動前のスケジューラは replace_existing を効かせないため先に外す
        self.cancel(identifier)
        try:
            self._scheduler.add_job(
                self._fire,
                trigger=ap_trigger,
                args=[identifier, content],
                id=identifier,
                name=content.title,
                misfire_grace_time=_MISFIRE_GRACE_SECONDS,
                replace_existing=True,
            )
        except Exception as e:
            raise TriggerSchedulingFailure(
                f"Failed to schedule trigger {identifier}: {e}"
            ) from e

        logger.info("Scheduled trigger: id=%s, trigger=%s", identifier, ap_trigger)
        return identifier

    def cancel(self, identifier: str) -> None:
        try:
            self._scheduler.remove_job(identifier)
            logger.debug("Cancelled trigger: id=%s", identifier)
        except JobLookupError:
            pass

    def list_all(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def _fire(self, identifier: str, content: NotificationContent) -> None:
        """ジョブ実行時のコールバック。配信失敗はログのみ"""
        logger.info("Trigger fired: id=%s", identifier)
        try:
            self._notifier.deliver(content)
        except Exception:
            logger.exception("Failed to deliver notification: id=%s", identifier)
        for listener in self._fired_listeners:
            try:
                listener(identifier)
            except Exception:
                logger.exception("Fired listener failed: id=%s", identifier)
