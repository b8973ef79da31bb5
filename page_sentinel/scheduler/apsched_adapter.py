"""APScheduler wrapper driving the periodic check cycle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig
from ..logging_conf import configure_logging

CYCLE_JOB_ID = "monitor::cycle"


class APSchedulerAdapter:
    """Own the single interval job that feeds the check pipeline."""

    def __init__(self) -> None:
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self, wait: bool = True) -> None:
        if self.started:
            self.scheduler.shutdown(wait=wait)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_cycle(self, schedule: ScheduleConfig, callback: Callable[[], object]) -> None:
        """Run ``callback`` every ``check_interval`` seconds, first after ``warmup_delay``.

        ``max_instances=1`` makes APScheduler drop a tick while the previous
        run is still going; ``coalesce`` folds missed ticks into one.
        """

        trigger = self._build_trigger(schedule)
        first_run = datetime.now(timezone.utc) + timedelta(seconds=schedule.warmup_delay)
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=CYCLE_JOB_ID,
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, int(schedule.check_interval // 2)),
            replace_existing=True,
        )
        self.logger.info(
            "job_scheduled",
            interval=schedule.check_interval,
            first_run=first_run.isoformat(),
        )

    def _build_trigger(self, schedule: ScheduleConfig) -> IntervalTrigger:
        if schedule.check_interval <= 0:
            raise ValueError("check_interval must be positive")
        return IntervalTrigger(seconds=float(schedule.check_interval), timezone=timezone.utc)

    def next_run_time(self) -> datetime | None:
        job = self.scheduler.get_job(CYCLE_JOB_ID)
        return getattr(job, "next_run_time", None) if job else None


__all__ = ["APSchedulerAdapter", "CYCLE_JOB_ID"]
