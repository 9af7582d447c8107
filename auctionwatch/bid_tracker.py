# auctionwatch/bid_tracker.py
"""Per-listing bid time series and the competition metrics derived from it.

Each ``record_snapshot`` pass appends one BidSnapshot per individual listing,
then recomputes that listing's metrics from its whole history. Histories are
small, so full recomputation is kept over incremental bookkeeping.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from . import store
from .errors import PersistenceError
from .schemas import BidSnapshot, ListingHistory, ListingRecord, Metrics, SnapshotResult
from .utils import logger, now_utc

SPIKE_PERCENT = 20
RECENT_WINDOW = 10


def count_changes(history: List[BidSnapshot]) -> int:
    return sum(1 for prev, cur in zip(history, history[1:]) if cur.current_bid != prev.current_bid)


def last_change_time(history: List[BidSnapshot]) -> Optional[datetime]:
    for i in range(len(history) - 1, 0, -1):
        if history[i].current_bid != history[i - 1].current_bid:
            return history[i].timestamp
    return None


def competition_score(metrics: Metrics, history: List[BidSnapshot]) -> int:
    """Additive 0-100 score; level labels are threshold cuts over this value."""
    score = 0

    changes = metrics.total_changes
    if changes >= 10:
        score += 30
    elif changes >= 5:
        score += 20
    elif changes >= 3:
        score += 10
    elif changes >= 1:
        score += 5

    velocity = metrics.bid_velocity
    if velocity >= 5:
        score += 25
    elif velocity >= 2:
        score += 20
    elif velocity >= 1:
        score += 15
    elif velocity >= 0.5:
        score += 10

    hours = metrics.last_change_hours
    if hours is not None:
        if hours <= 1:
            score += 20
        elif hours <= 6:
            score += 15
        elif hours <= 24:
            score += 10
        elif hours <= 48:
            score += 5

    increase = metrics.total_increase_percent
    if increase >= 50:
        score += 15
    elif increase >= 25:
        score += 10
    elif increase >= 10:
        score += 5

    if any((snap.change_percent or 0) >= SPIKE_PERCENT for snap in history[1:]):
        score += 10

    return min(score, 100)


def compute_metrics(history: List[BidSnapshot], first_bid: float, now: datetime) -> Metrics:
    metrics = Metrics(first_bid=first_bid)
    if len(history) < 2:
        return metrics

    changes = count_changes(history)
    metrics.total_changes = changes

    days = (history[-1].timestamp - history[0].timestamp).total_seconds() / 86400
    metrics.bid_velocity = changes / days if days > 0 else 0.0

    changed_at = last_change_time(history)
    if changed_at is not None:
        metrics.last_change_hours = (now - changed_at).total_seconds() / 3600

    start, latest = history[0].current_bid, history[-1].current_bid
    metrics.total_increase = latest - start
    metrics.total_increase_percent = (latest - start) / start * 100 if start > 0 else 0.0

    metrics.competition_score = competition_score(metrics, history)
    return metrics


def competition_level(score: int) -> str:
    if score >= 70:
        return "VERY HIGH"
    if score >= 50:
        return "HIGH"
    if score >= 30:
        return "MEDIUM"
    if score >= 10:
        return "LOW"
    return "MINIMAL"


def predict_future_activity(entry: ListingHistory, days_remaining: int = 3) -> dict:
    metrics = entry.metrics
    recent = entry.history[-5:]
    is_accelerating = False
    if len(recent) >= 3:
        is_accelerating = sum(1 for snap in recent[1:] if snap.change) >= 2

    current = entry.history[-1].current_bid if entry.history else metrics.first_bid
    estimated = current
    if metrics.bid_velocity > 0 and metrics.total_increase_percent > 0:
        per_day = metrics.total_increase / max(1, len(entry.history) - 1) * metrics.bid_velocity
        estimated = current + per_day * days_remaining

    if metrics.total_changes >= 5:
        confidence = "HIGH"
    elif metrics.total_changes >= 2:
        confidence = "MEDIUM"
    else:
        confidence = "LOW"

    return {
        "isAccelerating": is_accelerating,
        "estimatedFinalPrice": round(estimated),
        "confidenceLevel": confidence,
        "riskOfBiddingWar": metrics.competition_score >= 60,
    }


def generate_insights(entry: ListingHistory) -> List[str]:
    metrics = entry.metrics
    insights = []

    if metrics.competition_score >= 70:
        insights.append("Very high competition - multiple active bidders")
    elif metrics.competition_score >= 50:
        insights.append("High competition - expect bidding activity")

    if metrics.bid_velocity >= 3:
        insights.append("Rapid bidding - price increasing quickly")
    elif metrics.bid_velocity >= 1:
        insights.append("Steady bidding activity")
    elif metrics.total_changes == 0:
        insights.append("No competition yet - potential opportunity")

    hours = metrics.last_change_hours
    if hours is not None and hours <= 1:
        insights.append("Just bid on - very recent activity")
    elif hours is not None and hours <= 6:
        insights.append("Recent activity in last 6 hours")
    elif hours is not None and hours > 48:
        insights.append("No recent activity for 2+ days")

    if metrics.total_increase_percent >= 50:
        insights.append(f"Price up {metrics.total_increase_percent:.0f}% from start")

    return insights


class BidTracker:
    """Owns every ListingHistory; the only writer of the bid-history files."""

    def __init__(self, data_dir=None, retention: int = store.SNAPSHOT_RETENTION):
        self.data_dir = data_dir
        self.retention = retention
        self.history_file = store.history_dir(data_dir) / store.HISTORY_FILE
        self.snapshots_dir = store.snapshots_dir(data_dir)
        self.histories: Dict[str, ListingHistory] = {}
        self.dirty = False
        self.load()

    def load(self) -> None:
        raw = store.read_json(self.history_file, default={})
        self.histories = {key: ListingHistory.model_validate(value) for key, value in raw.items()}
        logger.info("Loaded bid history for %d listings", len(self.histories))

    def save(self) -> None:
        payload = {key: entry.to_json_dict() for key, entry in self.histories.items()}
        try:
            store.write_json(self.history_file, payload)
        except OSError as e:
            self.dirty = True
            raise PersistenceError(f"could not write {self.history_file}: {e}") from e
        self.dirty = False

    def flush(self) -> None:
        """Re-attempt a history save that failed on an earlier pass."""
        if self.dirty:
            logger.warning("Bid history on disk is behind memory, retrying save")
            self.save()

    def record_snapshot(self, listings: Iterable[ListingRecord], now: Optional[datetime] = None) -> SnapshotResult:
        """Append one observation per individual listing and persist."""
        self.flush()
        now = now or now_utc()
        individual = [rec for rec in listings if not rec.is_bundle]
        new_changes = 0

        for rec in individual:
            entry = self.histories.get(rec.auction_id)
            if entry is None:
                entry = ListingHistory(auction_id=rec.auction_id, address=rec.address, city=rec.city,
                                       metrics=Metrics(first_bid=rec.bid_amount))
                self.histories[rec.auction_id] = entry

            bid = rec.bid_amount
            last = entry.history[-1] if entry.history else None
            changed = last is None or last.current_bid != bid
            if changed:
                new_changes += 1

            snap = BidSnapshot(timestamp=now, current_bid=bid, minimum_bid=rec.minimum_bid_amount,
                               has_bids=rec.has_bids, status=rec.status)
            if last is not None and changed:
                snap.change = bid - last.current_bid
                snap.change_percent = (bid - last.current_bid) / last.current_bid * 100 if last.current_bid > 0 else 0.0
            entry.history.append(snap)
            entry.metrics = compute_metrics(entry.history, entry.metrics.first_bid, now)

        # memory is ahead of disk until the history save lands
        self.dirty = True
        self.save()
        self._write_raw_snapshot(individual, now)

        logger.info("Snapshot recorded: %d listings tracked, %d bid changes", len(individual), new_changes)
        return SnapshotResult(timestamp=now, total_tracked=len(individual), new_changes=new_changes)

    def _write_raw_snapshot(self, listings: List[ListingRecord], now: datetime) -> None:
        path = self.snapshots_dir / f"snapshot-{int(now.timestamp() * 1000)}.json"
        payload = {
            "timestamp": now.isoformat(),
            "properties": [
                {"auctionId": rec.auction_id, "currentBid": rec.bid_amount, "hasBids": rec.has_bids}
                for rec in listings
            ],
        }
        try:
            store.write_json(path, payload)
        except OSError as e:
            raise PersistenceError(f"could not write {path}: {e}") from e
        self.clean_old_snapshots()

    def clean_old_snapshots(self) -> int:
        try:
            return store.prune_snapshots(self.snapshots_dir, keep=self.retention)
        except OSError as e:
            raise PersistenceError(f"could not prune {self.snapshots_dir}: {e}") from e

    def get_history(self, auction_id: str) -> Optional[ListingHistory]:
        return self.histories.get(auction_id)

    def get_listing_competition(self, auction_id: str) -> Optional[dict]:
        entry = self.histories.get(auction_id)
        if entry is None:
            return None
        return {
            "auctionId": auction_id,
            "address": entry.address,
            "competitionScore": entry.metrics.competition_score,
            "level": competition_level(entry.metrics.competition_score),
            "metrics": entry.metrics.to_json_dict(),
            "recentHistory": [snap.to_json_dict() for snap in entry.history[-RECENT_WINDOW:]],
            "prediction": predict_future_activity(entry),
            "insights": generate_insights(entry),
        }

    def get_hot_listings(self, limit: int = 20) -> List[dict]:
        def heat(entry):
            hours = entry.metrics.last_change_hours
            return entry.metrics.competition_score + (100 / hours if hours else 0)

        active = [e for e in self.histories.values() if e.metrics.total_changes > 0]
        active.sort(key=heat, reverse=True)
        return [
            {
                "auctionId": e.auction_id,
                "address": e.address,
                "city": e.city,
                "competitionScore": e.metrics.competition_score,
                "totalChanges": e.metrics.total_changes,
                "lastChangeHours": e.metrics.last_change_hours,
                "currentBid": e.history[-1].current_bid,
                "totalIncrease": e.metrics.total_increase,
                "insights": generate_insights(e),
            }
            for e in active[:limit]
        ]

    def get_no_competition_listings(self, limit: int = 20) -> List[dict]:
        quiet = [e for e in self.histories.values() if e.metrics.total_changes == 0 and e.history]
        return [
            {"auctionId": e.auction_id, "address": e.address, "city": e.city,
             "currentBid": e.history[-1].current_bid}
            for e in quiet[:limit]
        ]

    def get_summary(self) -> dict:
        entries = list(self.histories.values())
        total = len(entries)
        return {
            "totalTracked": total,
            "propertiesWithBidChanges": sum(1 for e in entries if e.metrics.total_changes > 0),
            "highCompetitionProperties": sum(1 for e in entries if e.metrics.competition_score >= 50),
            "averageCompetitionScore": round(sum(e.metrics.competition_score for e in entries) / total) if total else 0,
        }
