# auctionwatch/services.py
import os
from typing import Callable, List, Optional
from dotenv import load_dotenv

from . import store
from .bid_tracker import BidTracker
from .coordinator import ScrapeCoordinator
from .schemas import Credentials, ListingRecord, SnapshotResult
from .session import authenticate
from .utils import logger

load_dotenv()
START_ID = int(os.getenv("SCRAPE_START_ID", "250900000"))
END_ID = int(os.getenv("SCRAPE_END_ID", "250902570"))


def scrape_listings(coordinator_factory: Callable[..., ScrapeCoordinator] = ScrapeCoordinator,
                    credentials: Optional[Credentials] = None,
                    start_id: int = START_ID, end_id: int = END_ID,
                    worker_count: Optional[int] = None,
                    on_coordinator: Optional[Callable[[ScrapeCoordinator], None]] = None) -> List[ListingRecord]:
    """Authenticate once and scrape the full ID range across workers."""
    session = authenticate(credentials)
    coordinator = coordinator_factory(session)
    if on_coordinator:
        on_coordinator(coordinator)
    return coordinator.scrape_range(start_id, end_id, worker_count)


def ingest_listings(records: List[ListingRecord], tracker: BidTracker, data_dir=None) -> SnapshotResult:
    """Persist the current listing set and feed individual listings to the tracker."""
    counts = store.save_listings(records, data_dir)
    individual, _ = store.split_bundles(records)
    result = tracker.record_snapshot(individual)
    logger.info("Ingested %d listings, %d new bid changes", counts["individual"], result.new_changes)
    return result
