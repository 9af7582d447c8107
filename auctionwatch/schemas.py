# auctionwatch/schemas.py
"""Pydantic models for listings, sessions, worker events and bid history.

JSON documents on disk use camelCase keys (``auctionId``, ``minimumBidAmount``)
because the dashboard reads them directly; attributes stay snake_case.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
import os

from .utils import is_bundle_closing, parse_closing_time


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ListingRecord(CamelModel):
    auction_id: str = Field(..., max_length=64)
    parcel_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    legal_description: Optional[str] = None
    status: Optional[str] = None
    minimum_bid: Optional[str] = None
    minimum_bid_amount: float = 0.0
    current_bid: Optional[str] = None
    current_bid_amount: float = 0.0
    has_bids: bool = False
    bidding_starts: Optional[str] = None
    bidding_closes: Optional[str] = None
    sev_value: Optional[str] = None
    sev_value_amount: float = 0.0
    summer_tax: Optional[str] = None
    winter_tax: Optional[str] = None
    total_tax: Optional[str] = None
    bid_count: Optional[str] = None
    scraped_at: Optional[datetime] = None

    @property
    def is_bundle(self) -> bool:
        return is_bundle_closing(self.bidding_closes)

    @property
    def bid_amount(self) -> float:
        return self.current_bid_amount or self.minimum_bid_amount

    def closing_time(self) -> Optional[datetime]:
        return parse_closing_time(self.bidding_closes)


class Credentials(BaseModel):
    username: str
    password: str

    @classmethod
    def from_env(cls) -> Optional["Credentials"]:
        username = os.getenv("AUCTION_USER")
        password = os.getenv("AUCTION_PASSWORD")
        if not username or not password:
            return None
        return cls(username=username, password=password)


class SessionState(CamelModel):
    """Authenticated browser state handed by value to every worker."""
    model_config = ConfigDict(frozen=True)

    base_url: str
    cookies: List[Dict[str, Any]] = Field(default_factory=list)
    storage_state: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ScrapeJob(CamelModel):
    worker_id: int
    start_id: int
    end_id: int
    session: SessionState

    @property
    def total(self) -> int:
        return self.end_id - self.start_id + 1

    def ids(self):
        return range(self.start_id, self.end_id + 1)


# worker -> coordinator messages

class ProgressEvent(CamelModel):
    kind: Literal["progress"] = "progress"
    worker_id: int
    auction_id: str
    current: int
    total: int


class ResultEvent(CamelModel):
    kind: Literal["result"] = "result"
    worker_id: int
    record: ListingRecord


class ErrorEvent(CamelModel):
    kind: Literal["error"] = "error"
    worker_id: int
    auction_id: Optional[str] = None
    message: str


class CompleteEvent(CamelModel):
    kind: Literal["complete"] = "complete"
    worker_id: int
    scraped: int = 0


WorkerEvent = Annotated[
    Union[ProgressEvent, ResultEvent, ErrorEvent, CompleteEvent],
    Field(discriminator="kind"),
]


class WorkerProgress(CamelModel):
    current: int = 0
    total: int = 0


class ScrapeStatus(CamelModel):
    is_running: bool = False
    completed: int = 0
    total: int = 0
    per_worker_progress: Dict[int, WorkerProgress] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    properties_per_second: float = 0.0
    estimated_seconds_remaining: Optional[int] = None
    result_count: int = 0


# bid tracking

class BidSnapshot(CamelModel):
    timestamp: datetime
    current_bid: float
    minimum_bid: float = 0.0
    has_bids: bool = False
    status: Optional[str] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None


class Metrics(CamelModel):
    total_changes: int = 0
    bid_velocity: float = 0.0
    last_change_hours: Optional[float] = None
    total_increase: float = 0.0
    total_increase_percent: float = 0.0
    first_bid: float = 0.0
    competition_score: int = 0


class ListingHistory(CamelModel):
    auction_id: str
    address: Optional[str] = None
    city: Optional[str] = None
    history: List[BidSnapshot] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)


class SnapshotResult(CamelModel):
    timestamp: datetime
    total_tracked: int
    new_changes: int


# scheduler

class RunRecord(CamelModel):
    timestamp: datetime
    type: Literal["quick", "full"]
    success: bool = False
    duration_seconds: float = 0.0
    changes: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class ActiveJob(CamelModel):
    tier: str
    interval_minutes: int
    next_run_time: Optional[datetime] = None


class SchedulerStatus(CamelModel):
    last_full_run_timestamp: Optional[datetime] = None
    active_jobs: List[ActiveJob] = Field(default_factory=list)
    recent_run_history: List[RunRecord] = Field(default_factory=list)
