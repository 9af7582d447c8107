import argparse
import json
import signal
import threading
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

from auctionwatch import store
from auctionwatch.bid_tracker import BidTracker
from auctionwatch.errors import AuctionWatchError
from auctionwatch.providers import default_enricher
from auctionwatch.scheduler import UpdateScheduler
from auctionwatch.services import END_ID, START_ID, ingest_listings, scrape_listings
from auctionwatch.utils import logger


def parse_args():
    parser = argparse.ArgumentParser(description="Scrape Wayne County auction listings and track bids.")
    sub = parser.add_subparsers(dest="command", required=True)

    scrape = sub.add_parser("scrape", help="Scrape an ID range once, save it and record a bid snapshot")
    scrape.add_argument("start", type=int, nargs="?", default=START_ID)
    scrape.add_argument("end", type=int, nargs="?", default=END_ID)
    scrape.add_argument("--workers", type=int, default=None)

    sub.add_parser("once", help="Run one full update cycle and exit")
    sub.add_parser("quick", help="Run one quick (scrape + bids) cycle and exit")
    sub.add_parser("status", help="Print scheduler status and bid summary")
    monitor = sub.add_parser("monitor", help="Start urgency-based scheduling until interrupted")
    monitor.add_argument("--skip-initial", action="store_true", help="Do not run a full update first")
    return parser.parse_args()


def run_scrape(args):
    try:
        records = scrape_listings(start_id=args.start, end_id=args.end, worker_count=args.workers)
    except AuctionWatchError as e:
        raise SystemExit(f"Scrape failed: {e}")
    result = ingest_listings(records, BidTracker())
    individual, bundles = store.split_bundles(records)
    print(f"Individual listings: {len(individual)}")
    print(f"Bundle listings: {len(bundles)}")
    print(f"Bid changes detected: {result.new_changes}")


def run_monitor(updates, skip_initial):
    stop = threading.Event()

    def _handle(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
    updates.start(run_initial=not skip_initial)
    print("Monitoring active. Press Ctrl+C to stop.")
    stop.wait()
    updates.stop()


if __name__ == "__main__":
    args = parse_args()

    if args.command == "scrape":
        run_scrape(args)
        raise SystemExit(0)

    updates = UpdateScheduler(analytics=default_enricher())
    if args.command == "once":
        record = updates.perform_full_update()
        raise SystemExit(0 if record and record.success else 1)
    if args.command == "quick":
        record = updates.perform_quick_update()
        raise SystemExit(0 if record and record.success else 1)
    if args.command == "status":
        print(json.dumps({
            "scheduler": updates.get_status().to_json_dict(),
            "bids": updates.tracker.get_summary(),
        }, indent=2))
        raise SystemExit(0)

    run_monitor(updates, args.skip_initial)
