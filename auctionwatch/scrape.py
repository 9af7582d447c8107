# auctionwatch/scrape.py
"""Worker unit: scrape a contiguous range of auction detail pages.

A worker owns one browser seeded from a copy of the shared session and walks
its ID range in ascending order, yielding typed events. Per-ID failures are
reported and skipped; anything that breaks the worker itself propagates and
ends the process with a non-zero exit code.
"""
import os, re
from time import sleep
from typing import Iterator, Optional
from dotenv import load_dotenv
from playwright.sync_api import sync_playwright, TimeoutError as PWTimeout, Error as PWError
from bs4 import BeautifulSoup

from .errors import NavigationError, ParseError
from .schemas import (
    CompleteEvent, ErrorEvent, ListingRecord, ProgressEvent, ResultEvent, ScrapeJob,
)
from .session import VIEWPORT, detail_url
from .utils import has_bids, logger, now_utc, parse_currency

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except Exception:
    _bs_parser = "html.parser"

load_dotenv()
HEADLESS = os.getenv("HEADLESS", "1") == "1"
NAV_TIMEOUT_MS = int(os.getenv("NAV_TIMEOUT_MS", "10000"))
PACE_SECONDS = float(os.getenv("SCRAPE_PACE_SECONDS", "0.1"))
PACE_EVERY = 10

BLOCKED_RESOURCES = "**/*.{png,jpg,jpeg,gif,svg,css,woff,woff2,ttf}"
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

NOT_FOUND = re.compile(r"property not found", re.I)
REMOVED_MARKER = "removed"

# ListingRecord attribute -> ASP.NET label id
FIELD_IDS = {
    "parcel_id": "ContentPlaceHolder1_lblPIN",
    "address": "ContentPlaceHolder1_lblAddress",
    "city": "ContentPlaceHolder1_lblCity",
    "zip": "ContentPlaceHolder1_lblZip",
    "legal_description": "ContentPlaceHolder1_lblLegalDesc",
    "sev_value": "ContentPlaceHolder1_lblSEV",
    "auction_id": "ContentPlaceHolder1_lblAI_ID",
    "status": "ContentPlaceHolder1_lblStatus",
    "bidding_starts": "ContentPlaceHolder1_lblAuctionStarts",
    "bidding_closes": "ContentPlaceHolder1_lblAuctionCloses",
    "current_bid": "ContentPlaceHolder1_lblCurrent_Bid",
    "minimum_bid": "ContentPlaceHolder1_lblMinBid",
    "summer_tax": "ContentPlaceHolder1_lblSummerTax",
    "winter_tax": "ContentPlaceHolder1_lblWinterTax",
    "total_tax": "ContentPlaceHolder1_lblTotalTax",
    "bid_count": "ContentPlaceHolder1_lblBidCount",
}


def is_not_found(soup: BeautifulSoup) -> bool:
    return bool(soup.find(string=NOT_FOUND))


def is_removed(status: Optional[str]) -> bool:
    return bool(status) and REMOVED_MARKER in status.lower()


def extract_fields(soup: BeautifulSoup) -> dict:
    fields = {}
    for attr, element_id in FIELD_IDS.items():
        el = soup.find(id=element_id)
        fields[attr] = el.get_text(strip=True) if el else None
    return fields


def parse_detail_page(html: str, auction_id) -> Optional[ListingRecord]:
    """Build a ListingRecord from a detail page, or None for pages to skip.

    Skipped: the not-found page, pages with neither an id nor an address,
    and listings whose status says they were removed from the auction.
    """
    soup = BeautifulSoup(html, _bs_parser)
    if is_not_found(soup):
        return None
    fields = extract_fields(soup)
    if not fields["auction_id"] and not fields["address"]:
        return None
    if is_removed(fields["status"]):
        return None

    fields["auction_id"] = str(auction_id)
    fields["minimum_bid_amount"] = parse_currency(fields["minimum_bid"])
    fields["current_bid_amount"] = parse_currency(fields["current_bid"])
    fields["sev_value_amount"] = parse_currency(fields["sev_value"])
    fields["has_bids"] = has_bids(fields["current_bid"], fields["current_bid_amount"])
    fields["scraped_at"] = now_utc()
    return ListingRecord(**fields)


def fetch_detail_html(page, base_url: str, auction_id) -> str:
    try:
        page.goto(detail_url(base_url, auction_id), wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)
        return page.content()
    except PWTimeout as e:
        raise NavigationError(auction_id, f"timed out: {e}") from e
    except PWError as e:
        raise NavigationError(auction_id, str(e)) from e


def scrape_ids(page, job: ScrapeJob, pace_seconds: float = PACE_SECONDS, pause=sleep) -> Iterator:
    """Walk the job's range on an already-prepared page, yielding events."""
    scraped = 0
    for position, auction_id in enumerate(job.ids(), start=1):
        try:
            html = fetch_detail_html(page, job.session.base_url, auction_id)
            try:
                record = parse_detail_page(html, auction_id)
            except Exception as e:
                raise ParseError(auction_id, str(e)) from e
            if record is not None:
                scraped += 1
                yield ResultEvent(worker_id=job.worker_id, record=record)
        except (NavigationError, ParseError) as e:
            logger.warning("Worker %s failed on %s: %s", job.worker_id, auction_id, e)
            yield ErrorEvent(worker_id=job.worker_id, auction_id=str(auction_id), message=str(e))
        yield ProgressEvent(worker_id=job.worker_id, auction_id=str(auction_id),
                            current=position, total=job.total)
        if position % PACE_EVERY == 0:
            pause(pace_seconds)
    yield CompleteEvent(worker_id=job.worker_id, scraped=scraped)


def run_worker(job: ScrapeJob, headless: bool = HEADLESS) -> Iterator:
    """Launch an isolated browser for ``job`` and stream its events."""
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=headless, args=BROWSER_ARGS)
        # each worker gets its own context built from a copy of the session
        storage = job.session.model_copy(deep=True).storage_state
        context = browser.new_context(
            storage_state=storage or None,
            user_agent=f"Mozilla/5.0 Worker{job.worker_id} (Windows NT 10.0; Win64; x64)",
            viewport=VIEWPORT,
        )
        try:
            if job.session.cookies:
                context.add_cookies([dict(c) for c in job.session.cookies])
            page = context.new_page()
            page.set_default_timeout(15000)
            page.route(BLOCKED_RESOURCES, lambda route: route.abort())
            logger.info("Worker %s started: %s to %s", job.worker_id, job.start_id, job.end_id)
            yield from scrape_ids(page, job)
        finally:
            context.close()
            browser.close()


def worker_main(job_payload: dict, queue) -> None:
    """Process entry point: rebuild the job from its serialized form and
    forward every event to the coordinator's queue."""
    job = ScrapeJob.model_validate(job_payload)
    try:
        for event in run_worker(job):
            queue.put(event)
    except Exception as e:
        logger.exception("Worker %s fatal error: %s", job.worker_id, e)
        queue.put(ErrorEvent(worker_id=job.worker_id, message=f"worker {job.worker_id} fatal: {e}"))
        raise
