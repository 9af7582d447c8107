# auctionwatch/api/routes.py
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from typing import List
from .. import store
from ..scheduler import UpdateScheduler
from ..schemas import ListingHistory, ListingRecord, SchedulerStatus, ScrapeStatus
from ..utils import logger

router = APIRouter()


def get_scheduler(request: Request) -> UpdateScheduler:
    return request.app.state.updates


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/listings", response_model=List[ListingRecord], response_model_by_alias=True)
def listings(
    skip: int = 0,
    limit: int = 100,
    min_bid: float | None = Query(None),
    max_bid: float | None = Query(None),
    city: str | None = Query(None),
    has_bids: bool | None = Query(None),
    updates: UpdateScheduler = Depends(get_scheduler),
):
    records = store.filter_listings(store.load_listings(updates.data_dir), min_bid=min_bid,
                                    max_bid=max_bid, city=city, has_bids=has_bids)
    return records[skip:skip + limit]


@router.get("/listings/{auction_id}/history", response_model=ListingHistory, response_model_by_alias=True)
def listing_history(auction_id: str, updates: UpdateScheduler = Depends(get_scheduler)):
    entry = updates.tracker.get_history(auction_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Listing not tracked")
    return entry


@router.get("/listings/{auction_id}/competition")
def listing_competition(auction_id: str, updates: UpdateScheduler = Depends(get_scheduler)):
    report = updates.tracker.get_listing_competition(auction_id)
    if not report:
        raise HTTPException(status_code=404, detail="Listing not tracked")
    return report


@router.get("/bids/summary")
def bid_summary(updates: UpdateScheduler = Depends(get_scheduler)):
    return updates.tracker.get_summary()


@router.get("/bids/hot")
def hot_listings(limit: int = Query(20, ge=1, le=200), updates: UpdateScheduler = Depends(get_scheduler)):
    return updates.tracker.get_hot_listings(limit)


@router.get("/bids/no-competition")
def no_competition_listings(limit: int = Query(20, ge=1, le=200),
                            updates: UpdateScheduler = Depends(get_scheduler)):
    return updates.tracker.get_no_competition_listings(limit)


@router.get("/status", response_model=ScrapeStatus, response_model_by_alias=True)
def scrape_status(updates: UpdateScheduler = Depends(get_scheduler)):
    return updates.scrape_status()


@router.get("/scheduler/status", response_model=SchedulerStatus, response_model_by_alias=True)
def scheduler_status(updates: UpdateScheduler = Depends(get_scheduler)):
    return updates.get_status()


@router.post("/scrape")
def trigger_scrape(background: BackgroundTasks, updates: UpdateScheduler = Depends(get_scheduler)):
    if updates.is_running:
        raise HTTPException(status_code=409, detail="Scraping already in progress")
    logger.info("Quick update requested over HTTP")
    background.add_task(updates.perform_quick_update)
    return {"status": "started", "range": {"startId": updates.start_id, "endId": updates.end_id}}
