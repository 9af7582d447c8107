# auctionwatch/scheduler.py
"""Urgency-driven refresh scheduling.

Listings are grouped by time left until bidding closes; every non-empty tier
gets one recurring APScheduler job. Each job scrapes the whole tracked ID
range (the site only supports ID-range scraping) and records a bid snapshot.
Quick tiers stop there, the slower tiers also run analytics and prune raw
snapshots.
"""
import os
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional
from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv

from . import store
from .bid_tracker import BidTracker
from .schemas import ActiveJob, ListingRecord, RunRecord, SchedulerStatus, ScrapeStatus
from .services import END_ID, START_ID, ingest_listings, scrape_listings
from .utils import logger, now_utc

load_dotenv()
RECLASSIFY_MINUTES = int(os.getenv("RECLASSIFY_MINUTES", "5"))
HISTORY_LIMIT = 100

# tier -> polling interval in minutes, most urgent first
TIER_INTERVALS = {
    "immediate": 1,
    "urgent": 5,
    "regular": 10,
    "standard": 60,
}
QUICK_TIERS = ("immediate", "urgent")
EXPIRED = "expired"


def classify_urgency(closing: Optional[datetime], now: Optional[datetime] = None) -> Optional[str]:
    """Map a closing time to its tier; None when there is no closing time."""
    if closing is None:
        return None
    now = now or now_utc()
    hours = (closing - now).total_seconds() / 3600
    if hours <= 0:
        return EXPIRED
    if hours <= 1:
        return "immediate"
    if hours <= 3:
        return "urgent"
    if hours <= 6:
        return "regular"
    return "standard"


def group_by_urgency(listings: Iterable[ListingRecord], now: Optional[datetime] = None) -> Dict[str, List[ListingRecord]]:
    now = now or now_utc()
    groups = {tier: [] for tier in (*TIER_INTERVALS, EXPIRED)}
    for rec in listings:
        if rec.is_bundle:
            continue
        tier = classify_urgency(rec.closing_time(), now)
        if tier is None:
            logger.warning("Unparseable closing time for %s: %r", rec.auction_id, rec.bidding_closes)
            continue
        groups[tier].append(rec)
    return groups


class UpdateScheduler:
    def __init__(self, tracker: Optional[BidTracker] = None, data_dir=None,
                 scheduler=None, scrape: Callable[..., List[ListingRecord]] = scrape_listings,
                 analytics: Optional[Callable[[List[ListingRecord], BidTracker], None]] = None,
                 start_id: int = START_ID, end_id: int = END_ID,
                 worker_count: Optional[int] = None,
                 reclassify_minutes: int = RECLASSIFY_MINUTES):
        self.data_dir = data_dir
        self.tracker = tracker or BidTracker(data_dir)
        self.scheduler = scheduler or BackgroundScheduler()
        self.scrape = scrape
        self.analytics = analytics
        self.start_id = start_id
        self.end_id = end_id
        self.worker_count = worker_count
        self.reclassify_minutes = reclassify_minutes
        self.schedule_file = store.resolve_data_dir(data_dir) / store.SCHEDULE_FILE

        self._run_lock = threading.Lock()
        self._coordinator = None
        self._run_errors: List[str] = []
        self.last_full_run: Optional[datetime] = None
        self.history: List[RunRecord] = []
        self._load_history()

    # persistence

    def _load_history(self) -> None:
        raw = store.read_json(self.schedule_file, default={}) or {}
        self.history = [RunRecord.model_validate(item) for item in raw.get("history", [])]
        last = raw.get("lastFullUpdate")
        self.last_full_run = datetime.fromisoformat(last) if last else None

    def _save_history(self) -> None:
        self.history = self.history[-HISTORY_LIMIT:]
        payload = {
            "lastFullUpdate": self.last_full_run.isoformat() if self.last_full_run else None,
            "history": [run.to_json_dict() for run in self.history],
            "activeJobs": [job.to_json_dict() for job in self.active_jobs()],
        }
        store.write_json(self.schedule_file, payload)

    # runs

    def _attach(self, coordinator) -> None:
        self._coordinator = coordinator

    def _run(self, kind: str) -> Optional[RunRecord]:
        if not self._run_lock.acquire(blocking=False):
            logger.info("Skipping %s update, a run is already in progress", kind)
            return None
        try:
            self._coordinator = None
            self._run_errors = []
            started = time.monotonic()
            record = RunRecord(timestamp=now_utc(), type=kind)
            logger.info("Starting %s update cycle", kind)
            try:
                listings = self.scrape(start_id=self.start_id, end_id=self.end_id,
                                       worker_count=self.worker_count, on_coordinator=self._attach)
                snapshot = ingest_listings(listings, self.tracker, self.data_dir)
                record.changes["bids"] = {
                    "snapshot": snapshot.to_json_dict(),
                    "summary": self.tracker.get_summary(),
                    "hotProperties": len(self.tracker.get_hot_listings(10)),
                }
                if kind == "full":
                    if self.analytics:
                        enrichment = self.analytics(listings, self.tracker)
                        if enrichment is not None:
                            record.changes["enrichment"] = enrichment
                    self.tracker.clean_old_snapshots()
                    self.last_full_run = now_utc()
                record.success = True
            except Exception as e:
                logger.exception("%s update failed: %s", kind.capitalize(), e)
                record.error = str(e)
                self._run_errors.append(str(e))
            record.duration_seconds = round(time.monotonic() - started, 1)
            self.history.append(record)
            self._save_history()
            logger.info("%s update finished in %ss (success=%s)", kind.capitalize(), record.duration_seconds, record.success)
            return record
        finally:
            self._run_lock.release()

    def perform_quick_update(self) -> Optional[RunRecord]:
        return self._run("quick")

    def perform_full_update(self) -> Optional[RunRecord]:
        return self._run("full")

    def run_tier(self, tier: str) -> Optional[RunRecord]:
        logger.info("Running scheduled %s update", tier)
        if tier in QUICK_TIERS:
            return self.perform_quick_update()
        return self.perform_full_update()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # scheduling

    def schedule_updates(self, now: Optional[datetime] = None) -> Dict[str, List[ListingRecord]]:
        """Regroup tracked listings and keep one job per non-empty tier."""
        groups = group_by_urgency(store.load_listings(self.data_dir), now)
        logger.info("Listing distribution: %s", ", ".join(f"{tier}={len(recs)}" for tier, recs in groups.items()))

        for tier, minutes in TIER_INTERVALS.items():
            job = self.scheduler.get_job(tier)
            if groups[tier] and job is None:
                logger.info("Scheduling %s updates every %d minutes", tier, minutes)
                self.scheduler.add_job(self.run_tier, "interval", minutes=minutes, args=[tier], id=tier,
                                       name=f"{tier} update", max_instances=1, coalesce=True)
            elif not groups[tier] and job is not None:
                logger.info("No %s listings left, removing job", tier)
                self.scheduler.remove_job(tier)
        self._save_history()
        return groups

    def start(self, run_initial: bool = True) -> None:
        if run_initial:
            self.perform_full_update()
        self.schedule_updates()
        self.scheduler.add_job(self.schedule_updates, "interval", minutes=self.reclassify_minutes,
                               id="reclassify", name="reclassify listings", max_instances=1,
                               coalesce=True, replace_existing=True)
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    # status

    def active_jobs(self) -> List[ActiveJob]:
        jobs = []
        for tier, minutes in TIER_INTERVALS.items():
            job = self.scheduler.get_job(tier)
            if job is None:
                continue
            # pending jobs have no next_run_time until the scheduler starts
            jobs.append(ActiveJob(tier=tier, interval_minutes=minutes,
                                  next_run_time=getattr(job, "next_run_time", None)))
        return jobs

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(last_full_run_timestamp=self.last_full_run, active_jobs=self.active_jobs(),
                               recent_run_history=self.history[-10:])

    def scrape_status(self) -> ScrapeStatus:
        status = self._coordinator.status if self._coordinator else ScrapeStatus()
        status.is_running = status.is_running or self.is_running
        for msg in self._run_errors:
            if msg not in status.errors:
                status.errors.append(msg)
        return status
