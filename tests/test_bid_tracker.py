# tests/test_bid_tracker.py
import json
from datetime import datetime, timedelta, timezone
import pytest
from auctionwatch import bid_tracker, store
from auctionwatch.bid_tracker import (
    BidTracker, competition_level, compute_metrics, predict_future_activity,
)
from auctionwatch.errors import PersistenceError
from auctionwatch.schemas import BidSnapshot, ListingRecord

T0 = datetime(2025, 9, 15, 12, 0, tzinfo=timezone.utc)


def listing(auction_id, current=0.0, minimum=1000.0, closes="9/17/2025 9:15:00 AM ET", **extra):
    return ListingRecord(
        auction_id=auction_id, address=f"{auction_id} MAIN ST", city="DETROIT",
        minimum_bid_amount=minimum, current_bid_amount=current, has_bids=current > 0,
        bidding_closes=closes, status="Open", **extra,
    )


@pytest.fixture
def tracker(tmp_path):
    return BidTracker(data_dir=tmp_path)


def test_first_snapshot_seeds_history(tracker):
    result = tracker.record_snapshot([listing("A"), listing("B", current=1500)], now=T0)
    assert result.total_tracked == 2
    assert result.new_changes == 2
    assert tracker.get_history("A").metrics.first_bid == 1000
    assert tracker.get_history("B").metrics.first_bid == 1500
    assert tracker.get_history("B").history[0].change is None


def test_bundles_never_enter_the_tracker(tracker):
    result = tracker.record_snapshot([
        listing("A"),
        listing("BUNDLE1", closes=None),
        listing("BUNDLE2", closes="N/A"),
    ], now=T0)
    assert result.total_tracked == 1
    assert set(tracker.histories) == {"A"}
    raw = json.loads(next(tracker.snapshots_dir.glob("snapshot-*.json")).read_text())
    assert [p["auctionId"] for p in raw["properties"]] == ["A"]


def test_identical_snapshot_is_idempotent(tracker):
    listings = [listing("A", current=1200), listing("B")]
    tracker.record_snapshot(listings, now=T0)
    before = {k: v.metrics.model_copy() for k, v in tracker.histories.items()}

    second = tracker.record_snapshot(listings, now=T0)

    assert second.new_changes == 0
    assert {k: v.metrics for k, v in tracker.histories.items()} == before


def test_bid_change_computes_delta_and_metrics(tracker):
    tracker.record_snapshot([listing("A", current=1000)], now=T0)
    tracker.record_snapshot([listing("A", current=1000)], now=T0 + timedelta(hours=12))
    result = tracker.record_snapshot([listing("A", current=1300)], now=T0 + timedelta(days=1))

    assert result.new_changes == 1
    entry = tracker.get_history("A")
    last = entry.history[-1]
    assert last.change == 300
    assert last.change_percent == pytest.approx(30.0)
    m = entry.metrics
    assert m.total_changes == 1
    assert m.bid_velocity == pytest.approx(1.0)
    assert m.last_change_hours == pytest.approx(0.0)
    assert m.total_increase == 300
    assert m.total_increase_percent == pytest.approx(30.0)
    # 5 (changes) + 15 (velocity) + 20 (recency) + 10 (increase) + 10 (spike)
    assert m.competition_score == 60


def test_change_from_zero_bid_has_zero_percent(tracker):
    tracker.record_snapshot([listing("Z", current=0, minimum=0)], now=T0)
    tracker.record_snapshot([listing("Z", current=500, minimum=0)], now=T0 + timedelta(hours=1))
    assert tracker.get_history("Z").history[-1].change_percent == 0


def build_competitive_history():
    """12 changes across exactly 2 days, first step a 25% jump, +60% overall."""
    bids = [1000, 1250] + [1250 + 30 * i for i in range(1, 11)] + [1600]
    start = T0
    step = timedelta(days=2) / (len(bids) - 1)
    history = []
    for i, bid in enumerate(bids):
        snap = BidSnapshot(timestamp=start + step * i, current_bid=bid)
        if i:
            prev = bids[i - 1]
            snap.change = bid - prev
            snap.change_percent = (bid - prev) / prev * 100
        history.append(snap)
    return history


def test_competition_score_caps_at_100():
    history = build_competitive_history()
    now = history[-1].timestamp + timedelta(minutes=30)
    m = compute_metrics(history, first_bid=1000, now=now)
    assert m.total_changes == 12
    assert m.bid_velocity == pytest.approx(6.0)
    assert m.last_change_hours == pytest.approx(0.5)
    assert m.total_increase_percent == pytest.approx(60.0)
    assert m.competition_score == 100
    assert competition_level(m.competition_score) == "VERY HIGH"


@pytest.mark.parametrize("score,label", [
    (0, "MINIMAL"), (9, "MINIMAL"), (10, "LOW"), (30, "MEDIUM"), (50, "HIGH"), (69, "HIGH"), (70, "VERY HIGH"),
])
def test_competition_levels(score, label):
    assert competition_level(score) == label


def test_metrics_need_two_snapshots():
    m = compute_metrics([BidSnapshot(timestamp=T0, current_bid=10)], first_bid=10, now=T0)
    assert m.total_changes == 0
    assert m.last_change_hours is None
    assert m.competition_score == 0


def test_history_survives_reload(tmp_path):
    first = BidTracker(data_dir=tmp_path)
    first.record_snapshot([listing("A", current=1000)], now=T0)
    first.record_snapshot([listing("A", current=1100)], now=T0 + timedelta(hours=2))

    reloaded = BidTracker(data_dir=tmp_path)
    entry = reloaded.get_history("A")
    assert len(entry.history) == 2
    assert entry.metrics.total_changes == 1
    on_disk = json.loads((tmp_path / "bid-history" / "bid-history.json").read_text())
    assert on_disk["A"]["auctionId"] == "A"
    assert on_disk["A"]["metrics"]["totalChanges"] == 1


def test_raw_snapshots_are_pruned(tmp_path):
    tracker = BidTracker(data_dir=tmp_path, retention=3)
    for i in range(5):
        tracker.record_snapshot([listing("A", current=1000 + i)], now=T0 + timedelta(minutes=i))
    names = sorted(p.name for p in tracker.snapshots_dir.glob("snapshot-*.json"))
    assert len(names) == 3
    assert names[0] == f"snapshot-{int((T0 + timedelta(minutes=2)).timestamp() * 1000)}.json"
    # cumulative history is never pruned
    assert len(tracker.get_history("A").history) == 5


def test_prune_snapshots_keeps_latest(tmp_path):
    for i in range(105):
        (tmp_path / f"snapshot-{1700000000000 + i}.json").write_text("{}")
    assert store.prune_snapshots(tmp_path, keep=100) == 5
    remaining = sorted(p.name for p in tmp_path.glob("snapshot-*.json"))
    assert remaining[0] == "snapshot-1700000000005.json"


def test_persistence_error_keeps_memory_and_retries_next_pass(tracker, monkeypatch):
    real_write = store.write_json
    history_file = tracker.history_file

    def failing_write(path, payload):
        if path == history_file:
            raise OSError("read-only file system")
        return real_write(path, payload)

    monkeypatch.setattr(store, "write_json", failing_write)
    with pytest.raises(PersistenceError):
        tracker.record_snapshot([listing("A", current=1000)], now=T0)
    assert "A" in tracker.histories
    assert tracker.dirty is True
    assert not history_file.exists()

    monkeypatch.setattr(store, "write_json", real_write)
    tracker.record_snapshot([listing("A", current=1000)], now=T0 + timedelta(hours=1))
    assert tracker.dirty is False
    assert "A" in json.loads(history_file.read_text())


def test_failed_raw_snapshot_still_persists_history(tracker, monkeypatch):
    real_write = store.write_json

    def failing_write(path, payload):
        if path.name.startswith("snapshot-"):
            raise OSError("disk full")
        return real_write(path, payload)

    monkeypatch.setattr(store, "write_json", failing_write)
    with pytest.raises(PersistenceError):
        tracker.record_snapshot([listing("A", current=1000)], now=T0)

    assert tracker.dirty is False
    assert "A" in json.loads(tracker.history_file.read_text())
    assert list(tracker.snapshots_dir.glob("snapshot-*.json")) == []


def test_prune_failure_is_a_persistence_error(tracker, monkeypatch):
    def failing_prune(directory, keep):
        raise OSError("permission denied")

    monkeypatch.setattr(store, "prune_snapshots", failing_prune)
    with pytest.raises(PersistenceError):
        tracker.clean_old_snapshots()


def test_hot_and_quiet_listings_and_summary(tracker):
    tracker.record_snapshot([listing("HOT", current=1000), listing("QUIET")], now=T0)
    tracker.record_snapshot([listing("HOT", current=1500), listing("QUIET")], now=T0 + timedelta(hours=3))

    hot = tracker.get_hot_listings()
    assert [h["auctionId"] for h in hot] == ["HOT"]
    assert hot[0]["currentBid"] == 1500
    assert [q["auctionId"] for q in tracker.get_no_competition_listings()] == ["QUIET"]

    summary = tracker.get_summary()
    assert summary["totalTracked"] == 2
    assert summary["propertiesWithBidChanges"] == 1


def test_listing_competition_report(tracker):
    assert tracker.get_listing_competition("missing") is None
    tracker.record_snapshot([listing("A", current=1000)], now=T0)
    tracker.record_snapshot([listing("A", current=1600)], now=T0 + timedelta(hours=6))
    report = tracker.get_listing_competition("A")
    assert report["level"] == competition_level(report["competitionScore"])
    assert report["prediction"]["confidenceLevel"] == "LOW"
    assert any("Price up 60%" in line for line in report["insights"])
    assert len(report["recentHistory"]) == 2


def test_prediction_detects_acceleration():
    entry = bid_tracker.ListingHistory(auction_id="A", history=build_competitive_history())
    entry.metrics = compute_metrics(entry.history, 1000, entry.history[-1].timestamp)
    prediction = predict_future_activity(entry)
    assert prediction["isAccelerating"] is True
    assert prediction["confidenceLevel"] == "HIGH"
    assert prediction["riskOfBiddingWar"] is True
    assert prediction["estimatedFinalPrice"] > 1600
