# tests/test_scrape.py
import pytest
from playwright.sync_api import TimeoutError as PWTimeout
from auctionwatch import scrape
from auctionwatch.schemas import (
    CompleteEvent, ErrorEvent, ProgressEvent, ResultEvent, ScrapeJob, SessionState,
)

BASE = "https://auction.example"


def detail_html(auction_id="250900001", status="Open", current_bid="$1,250.00",
                closes="9/17/2025 9:15:00 AM ET", address="123 MAIN ST"):
    labels = {
        "lblPIN": "22012345.",
        "lblAddress": address,
        "lblCity": "DETROIT",
        "lblZip": "48201",
        "lblSEV": "$20,000",
        "lblAI_ID": auction_id,
        "lblStatus": status,
        "lblAuctionCloses": closes,
        "lblCurrent_Bid": current_bid,
        "lblMinBid": "$1,000.00",
        "lblSummerTax": "$300.00",
    }
    spans = "".join(f'<span id="ContentPlaceHolder1_{k}"> {v} </span>' for k, v in labels.items())
    return f"<html><body><form>{spans}</form></body></html>"


NOT_FOUND_HTML = "<html><body><h2>Property Not Found</h2></body></html>"


class FakePage:
    """Serves canned HTML per auction id; a value may also be an exception."""

    def __init__(self, pages):
        self.pages = pages
        self.visited = []
        self._current = None

    def goto(self, url, wait_until=None, timeout=None):
        assert wait_until == "domcontentloaded"
        auction_id = int(url.rsplit("=", 1)[1])
        self.visited.append(auction_id)
        value = self.pages.get(auction_id, NOT_FOUND_HTML)
        if isinstance(value, Exception):
            raise value
        self._current = value

    def content(self):
        return self._current


def make_job(start, end, worker_id=0):
    return ScrapeJob(worker_id=worker_id, start_id=start, end_id=end,
                     session=SessionState(base_url=BASE, cookies=[{"name": "ASP.NET_SessionId", "value": "x"}]))


def test_parse_detail_page_normalizes_fields():
    rec = scrape.parse_detail_page(detail_html(), 250900001)
    assert rec.auction_id == "250900001"
    assert rec.parcel_id == "22012345."
    assert rec.address == "123 MAIN ST"
    assert rec.current_bid_amount == 1250.0
    assert rec.minimum_bid_amount == 1000.0
    assert rec.sev_value_amount == 20000.0
    assert rec.has_bids is True
    assert rec.total_tax is None
    assert rec.scraped_at is not None


def test_parse_detail_page_no_bids_sentinel():
    rec = scrape.parse_detail_page(detail_html(current_bid="NONE"), 7)
    assert rec.current_bid_amount == 0
    assert rec.has_bids is False
    assert rec.bid_amount == 1000.0


def test_parse_detail_page_skips_removed_and_not_found():
    assert scrape.parse_detail_page(detail_html(status="REMOVED FROM AUCTION"), 1) is None
    assert scrape.parse_detail_page(NOT_FOUND_HTML, 1) is None


def test_single_not_found_id_yields_one_progress_event():
    events = list(scrape.scrape_ids(FakePage({}), make_job(1, 1), pause=lambda s: None))
    assert [type(e) for e in events] == [ProgressEvent, CompleteEvent]
    progress = events[0]
    assert (progress.current, progress.total) == (1, 1)
    assert events[-1].scraped == 0


def test_removed_listing_still_advances_progress():
    page = FakePage({10: detail_html(auction_id="10", status="Removed from Auction")})
    events = list(scrape.scrape_ids(page, make_job(10, 10), pause=lambda s: None))
    assert not any(isinstance(e, ResultEvent) for e in events)
    assert sum(isinstance(e, ProgressEvent) for e in events) == 1


def test_failed_id_is_reported_and_loop_continues():
    page = FakePage({
        1: detail_html(auction_id="1"),
        2: PWTimeout("Timeout 10000ms exceeded"),
        3: detail_html(auction_id="3"),
    })
    events = list(scrape.scrape_ids(page, make_job(1, 3), pause=lambda s: None))

    results = [e.record.auction_id for e in events if isinstance(e, ResultEvent)]
    errors = [e for e in events if isinstance(e, ErrorEvent)]
    progress = [e.current for e in events if isinstance(e, ProgressEvent)]
    assert results == ["1", "3"]
    assert len(errors) == 1 and errors[0].auction_id == "2"
    assert "timed out" in errors[0].message
    assert progress == [1, 2, 3]
    assert page.visited == [1, 2, 3]
    assert events[-1] == CompleteEvent(worker_id=0, scraped=2)


def test_result_precedes_progress_for_each_id():
    page = FakePage({5: detail_html(auction_id="5")})
    events = list(scrape.scrape_ids(page, make_job(5, 5), pause=lambda s: None))
    assert [e.kind for e in events] == ["result", "progress", "complete"]


def test_pause_after_every_tenth_id():
    pauses = []
    list(scrape.scrape_ids(FakePage({}), make_job(100, 124), pace_seconds=0.25, pause=pauses.append))
    assert pauses == [0.25, 0.25]


def test_worker_main_forwards_events_to_queue(monkeypatch):
    sent = []

    class ListQueue:
        def put(self, item):
            sent.append(item)

    def fake_run_worker(job):
        yield ProgressEvent(worker_id=job.worker_id, auction_id="1", current=1, total=1)
        yield CompleteEvent(worker_id=job.worker_id)

    monkeypatch.setattr(scrape, "run_worker", fake_run_worker)
    scrape.worker_main(make_job(1, 1, worker_id=4).model_dump(mode="json"), ListQueue())
    assert [e.kind for e in sent] == ["progress", "complete"]
    assert sent[0].worker_id == 4


def test_worker_main_reports_fatal_error_and_reraises(monkeypatch):
    sent = []

    class ListQueue:
        def put(self, item):
            sent.append(item)

    def broken_run_worker(job):
        raise RuntimeError("browser failed to launch")
        yield  # pragma: no cover

    monkeypatch.setattr(scrape, "run_worker", broken_run_worker)
    with pytest.raises(RuntimeError):
        scrape.worker_main(make_job(1, 1).model_dump(mode="json"), ListQueue())
    assert isinstance(sent[0], ErrorEvent)
    assert "browser failed to launch" in sent[0].message
