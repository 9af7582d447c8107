# auctionwatch/coordinator.py
"""Fan a contiguous ID range out across worker processes.

Every worker runs in its own OS process with its own browser, seeded with the
same serialized SessionState. Events come back over one multiprocessing queue;
progress is merged per worker so each event is O(1). The run succeeds only if
every worker finishes cleanly.
"""
import multiprocessing
import os
import time
from queue import Empty
from typing import Callable, Dict, List, Optional, Tuple
from dotenv import load_dotenv

from .errors import WorkerCrashError
from .schemas import (
    CompleteEvent, ErrorEvent, ListingRecord, ProgressEvent, ResultEvent,
    ScrapeJob, ScrapeStatus, SessionState, WorkerProgress,
)
from .scrape import worker_main
from .utils import logger, now_utc

load_dotenv()
WORKERS = int(os.getenv("WORKERS", "10"))


def partition_range(start_id: int, end_id: int, worker_count: int) -> List[Tuple[int, int]]:
    """Split ``[start_id, end_id]`` into contiguous near-equal ranges.

    Never returns more ranges than IDs; the last range absorbs the remainder.
    """
    total = end_id - start_id + 1
    if total <= 0:
        raise ValueError(f"invalid range {start_id}-{end_id}")
    if worker_count < 1:
        raise ValueError("worker_count must be >= 1")
    workers = min(worker_count, total)
    size = total // workers
    ranges = []
    lo = start_id
    for i in range(workers):
        hi = end_id if i == workers - 1 else lo + size - 1
        ranges.append((lo, hi))
        lo = hi + 1
    return ranges


class ProgressTracker:
    """Commutative per-worker progress counters."""

    def __init__(self, status: ScrapeStatus):
        self.status = status

    def register(self, worker_id: int, total: int) -> None:
        self.status.per_worker_progress[worker_id] = WorkerProgress(current=0, total=total)

    def advance(self, worker_id: int, current: int) -> None:
        wp = self.status.per_worker_progress[worker_id]
        if current <= wp.current:
            return
        self.status.completed += current - wp.current
        wp.current = current
        elapsed = (now_utc() - self.status.started_at).total_seconds() if self.status.started_at else 0
        if elapsed > 0:
            rate = self.status.completed / elapsed
            self.status.properties_per_second = rate
            if rate > 0:
                remaining = self.status.total - self.status.completed
                self.status.estimated_seconds_remaining = int(remaining / rate + 0.999)


class ScrapeCoordinator:
    def __init__(self, session: SessionState, worker_count: int = WORKERS,
                 worker_target: Callable = worker_main, mp_context=None,
                 poll_interval: float = 0.5,
                 on_progress: Optional[Callable[[int, int], None]] = None,
                 on_record: Optional[Callable[[ListingRecord], None]] = None):
        self.session = session
        self.worker_count = worker_count
        self.worker_target = worker_target
        self.ctx = mp_context or multiprocessing.get_context("spawn")
        self.poll_interval = poll_interval
        self.on_progress = on_progress
        self.on_record = on_record
        self._status = ScrapeStatus()

    @property
    def status(self) -> ScrapeStatus:
        return self._status.model_copy(deep=True)

    def scrape_range(self, start_id: int, end_id: int, worker_count: Optional[int] = None) -> List[ListingRecord]:
        ranges = partition_range(start_id, end_id, worker_count or self.worker_count)
        self._status = ScrapeStatus(is_running=True, total=end_id - start_id + 1, started_at=now_utc())
        tracker = ProgressTracker(self._status)
        logger.info("Splitting %d listings across %d workers", self._status.total, len(ranges))

        queue = self.ctx.Queue()
        jobs: Dict[int, ScrapeJob] = {}
        procs: Dict[int, multiprocessing.process.BaseProcess] = {}
        buffers: Dict[int, List[ListingRecord]] = {}
        started = time.monotonic()
        try:
            for worker_id, (lo, hi) in enumerate(ranges):
                job = ScrapeJob(worker_id=worker_id, start_id=lo, end_id=hi, session=self.session)
                jobs[worker_id] = job
                buffers[worker_id] = []
                tracker.register(worker_id, job.total)
                proc = self.ctx.Process(target=self.worker_target, args=(job.model_dump(mode="json"), queue),
                                        name=f"scrape-worker-{worker_id}")
                proc.start()
                procs[worker_id] = proc

            self._drain(queue, jobs, procs, buffers, tracker)

            for worker_id, proc in procs.items():
                proc.join()
                if proc.exitcode != 0:
                    job = jobs[worker_id]
                    raise WorkerCrashError(worker_id, job.start_id, job.end_id, proc.exitcode, phase="shutdown")
        except Exception as e:
            self._status.errors.append(str(e))
            logger.exception("Scrape run failed: %s", e)
            raise
        finally:
            for proc in procs.values():
                if proc.is_alive():
                    proc.terminate()
                    proc.join(5)
            queue.close()
            self._status.is_running = False
            self._status.finished_at = now_utc()

        results = [rec for worker_id in sorted(buffers) for rec in buffers[worker_id]]
        duration = time.monotonic() - started
        self._status.result_count = len(results)
        self._status.completed = self._status.total
        logger.info("Parallel scraping complete: %d listings in %.1fs (%.1f/s)",
                    len(results), duration, len(results) / duration if duration > 0 else 0.0)
        return results

    def _drain(self, queue, jobs, procs, buffers, tracker) -> None:
        finished, exited = set(), set()
        while len(finished) < len(procs):
            try:
                event = queue.get(timeout=self.poll_interval)
            except Empty:
                self._check_workers(jobs, procs, finished, exited)
                continue
            if isinstance(event, ProgressEvent):
                tracker.advance(event.worker_id, event.current)
                if self.on_progress:
                    self.on_progress(self._status.completed, self._status.total)
            elif isinstance(event, ResultEvent):
                buffers[event.worker_id].append(event.record)
                if self.on_record:
                    self.on_record(event.record)
            elif isinstance(event, ErrorEvent):
                logger.error("Worker %s error: %s", event.worker_id, event.message)
                self._status.errors.append(event.message)
            elif isinstance(event, CompleteEvent):
                finished.add(event.worker_id)
                logger.info("Worker %s completed: %d listings", event.worker_id, len(buffers[event.worker_id]))

    def _check_workers(self, jobs, procs, finished, exited) -> None:
        """Fail the run when a worker is gone without having completed.

        A clean exit gets one more empty poll so its last events can land.
        """
        for worker_id, proc in procs.items():
            if worker_id in finished or proc.exitcode is None:
                continue
            if proc.exitcode == 0 and worker_id not in exited:
                exited.add(worker_id)
                continue
            job = jobs[worker_id]
            raise WorkerCrashError(worker_id, job.start_id, job.end_id, proc.exitcode)
