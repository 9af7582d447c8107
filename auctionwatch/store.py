# auctionwatch/store.py
"""JSON document store for listings, bid history and raw snapshots.

Every document is rewritten whole (last writer wins). Writes go through a
temporary file and ``os.replace`` so a failed write leaves the previous
document intact.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
from dotenv import load_dotenv

from .schemas import ListingRecord
from .utils import logger, retry

load_dotenv()

DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
SNAPSHOT_RETENTION = int(os.getenv("SNAPSHOT_RETENTION", "100"))

PROPERTIES_FILE = "properties.json"
BUNDLES_FILE = "bundle-properties.json"
SCHEDULE_FILE = "update-schedule.json"
HISTORY_DIR = "bid-history"
HISTORY_FILE = "bid-history.json"
SNAPSHOTS_DIR = "snapshots"


def resolve_data_dir(data_dir=None) -> Path:
    path = Path(data_dir) if data_dir is not None else DATA_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def read_json(path: Path, default=None):
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return default


@retry(OSError, tries=3, delay=0.5, backoff=2)
def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
    os.replace(tmp, path)


def split_bundles(records: Iterable[ListingRecord]) -> Tuple[List[ListingRecord], List[ListingRecord]]:
    individual, bundles = [], []
    for rec in records:
        (bundles if rec.is_bundle else individual).append(rec)
    return individual, bundles


def save_listings(records: Iterable[ListingRecord], data_dir=None) -> Dict[str, int]:
    """Overwrite the current listing set; bundles go to their own document."""
    base = resolve_data_dir(data_dir)
    individual, bundles = split_bundles(records)
    write_json(base / PROPERTIES_FILE, [r.to_json_dict() for r in individual])
    if bundles:
        write_json(base / BUNDLES_FILE, [r.to_json_dict() for r in bundles])
    logger.info("Saved %d listings (%d bundles set aside)", len(individual), len(bundles))
    return {"individual": len(individual), "bundles": len(bundles)}


def load_listings(data_dir=None) -> List[ListingRecord]:
    base = resolve_data_dir(data_dir)
    raw = read_json(base / PROPERTIES_FILE, default=[])
    return [ListingRecord.model_validate(item) for item in raw]


def filter_listings(
    records: Iterable[ListingRecord],
    min_bid: Optional[float] = None,
    max_bid: Optional[float] = None,
    city: Optional[str] = None,
    has_bids: Optional[bool] = None,
) -> List[ListingRecord]:
    out = []
    for rec in records:
        if min_bid is not None and rec.bid_amount < min_bid:
            continue
        if max_bid is not None and rec.bid_amount > max_bid:
            continue
        if city and city.lower() not in (rec.city or "").lower():
            continue
        if has_bids is not None and rec.has_bids != has_bids:
            continue
        out.append(rec)
    return out


def history_dir(data_dir=None) -> Path:
    return resolve_data_dir(data_dir) / HISTORY_DIR


def snapshots_dir(data_dir=None) -> Path:
    path = history_dir(data_dir) / SNAPSHOTS_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def prune_snapshots(directory: Path, keep: int = SNAPSHOT_RETENTION) -> int:
    """Delete the oldest raw snapshot files beyond ``keep``."""
    files = sorted(p for p in directory.glob("snapshot-*.json"))
    if len(files) <= keep:
        return 0
    stale = files[: len(files) - keep]
    for path in stale:
        path.unlink()
    logger.info("Cleaned %d old snapshots", len(stale))
    return len(stale)
