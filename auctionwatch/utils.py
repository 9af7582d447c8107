# auctionwatch/utils.py
"""Shared utilities: logging, retry decorator and value normalization.

The detail pages render money as ``"$1,234.56"`` and closing times as local
wall-clock strings with a trailing zone abbreviation (``"9/17/2025 9:15:00 AM ET"``),
so the helpers here turn both into values the tracker can compare.
"""
import os
import logging
import re
import time
from contextlib import suppress
from datetime import datetime, timezone
from functools import wraps
from zoneinfo import ZoneInfo
from dotenv import load_dotenv

load_dotenv()

LOCAL_TZ = ZoneInfo("America/Detroit")
NO_BID_SENTINELS = ("", "NONE")
BUNDLE_SENTINEL = "N/A"

_ZONE_SUFFIX = re.compile(r"\s+(ET|EST|EDT)\s*$", re.I)
_CLOSING_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%Y-%m-%d %H:%M:%S",
)


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("auctionwatch")

def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_currency(value) -> float:
    """Turn ``"$1,234.56"`` into ``1234.56``; anything unparseable becomes 0."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace("$", "").replace(",", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def has_bids(raw_current_bid, amount: float) -> bool:
    if raw_current_bid is None:
        return False
    if raw_current_bid.strip().upper() in NO_BID_SENTINELS:
        return False
    return amount > 0


def is_bundle_closing(bidding_closes) -> bool:
    """Bundle listings have no individual closing time."""
    return not bidding_closes or bidding_closes.strip() == BUNDLE_SENTINEL


def strip_zone_abbreviation(value: str) -> str:
    return _ZONE_SUFFIX.sub("", value.strip())


def parse_closing_time(value):
    """Parse a site closing time into an aware datetime, or None.

    ISO strings (as written by older exports) are accepted too; naive values
    are interpreted in the auction's local zone.
    """
    if not value or is_bundle_closing(value):
        return None
    raw = strip_zone_abbreviation(value)
    with suppress(ValueError):
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=LOCAL_TZ)
    for fmt in _CLOSING_FORMATS:
        with suppress(ValueError):
            return datetime.strptime(raw, fmt).replace(tzinfo=LOCAL_TZ)
    return None
