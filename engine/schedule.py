import logging
import threading
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from engine.core import DEFAULT_SCHEDULE_CONFIG, merge_schedule_config

SYNC_JOB_ID = "artwork_sync"


def _utc_iso(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SyncSchedule:
    """Periodic artwork sync backed by a single APScheduler interval job.

    The next run is whatever the scheduler has queued; only the time of the
    last started run is tracked here.
    """

    def __init__(self, on_tick, scheduler=None):
        self._on_tick = on_tick
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.config = merge_schedule_config(None)
        self.last_run = None
        self._lock = threading.Lock()

    def start(self, schedule_config=None):
        if not self.scheduler.running:
            self.scheduler.start()
        self.apply(schedule_config)

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def apply(self, schedule_config):
        config = merge_schedule_config(schedule_config)
        with self._lock:
            self.config = config
        if not config.get("enabled"):
            if self.scheduler.get_job(SYNC_JOB_ID):
                self.scheduler.remove_job(SYNC_JOB_ID)
                logging.info("Artwork sync schedule disabled")
            return
        hours = config.get("interval_hours") or DEFAULT_SCHEDULE_CONFIG["interval_hours"]
        self.scheduler.add_job(
            self._on_tick,
            trigger=IntervalTrigger(hours=hours, timezone=timezone.utc),
            id=SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )
        logging.info("Artwork sync scheduled every %sh (next run %s)", hours, self.next_run())

    def mark_run(self, when=None):
        with self._lock:
            self.last_run = _utc_iso(when or datetime.now(timezone.utc))

    def next_run(self):
        job = self.scheduler.get_job(SYNC_JOB_ID)
        # Jobs added before start() have no next_run_time yet.
        return _utc_iso(getattr(job, "next_run_time", None)) if job else None

    def snapshot(self):
        with self._lock:
            config = dict(self.config)
            last_run = self.last_run
        return {
            "schedule": config,
            "enabled": bool(config.get("enabled")),
            "last_run": last_run,
            "next_run": self.next_run(),
        }
