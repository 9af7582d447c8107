# auctionwatch/providers.py
"""Valuation and geocoding enrichment for full update cycles.

Addresses are keyed by ``address_key``; both providers sit behind JSON-file
caches in the data directory, and a cached miss is never looked up again.
Geocoding uses the City of Detroit ArcGIS geocoder, valuations the RapidAPI
Zillow endpoint (only when ``RAPIDAPI_KEY`` is set).
"""
import os
import re
from time import sleep
from typing import Callable, Iterable, Optional
import requests
from dotenv import load_dotenv
from pydantic import BaseModel

from . import store
from .utils import logger

load_dotenv()
GEOCODER_URL = os.getenv(
    "GEOCODER_URL",
    "https://opengis.detroitmi.gov/opengis/rest/services/BaseUnits/BaseUnitGeocoder/GeocodeServer/findAddressCandidates",
)
VALUATION_URL = os.getenv("VALUATION_URL", "https://zillow-com1.p.rapidapi.com/property")
RAPIDAPI_KEY = os.getenv("RAPIDAPI_KEY")
ENABLE_ENRICHMENT = os.getenv("ENABLE_ENRICHMENT", "1") == "1"
REQUEST_TIMEOUT = 30

GEOCODE_MIN_SCORE = 80
VALUATION_FILE = "zillow-data.json"
GEOCODE_FILE = "geocoded-properties.json"
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

VALUATION_FIELDS = (
    "zpid", "price", "zestimate", "rentZestimate", "bedrooms", "bathrooms", "livingArea",
    "yearBuilt", "lotSize", "homeType", "homeStatus", "taxAssessedValue", "imgSrc", "hdpUrl",
)


def address_key(street: str, city: str, state: str = "MI", zip: str = "") -> str:
    joined = "_".join([street or "", city or "", state or "", zip or ""]).lower()
    return _NON_ALNUM.sub("_", joined)


class GeocodeMatch(BaseModel):
    latitude: float
    longitude: float
    score: float
    matched_address: Optional[str] = None


def accept_geocode(candidate: Optional[dict], threshold: float = GEOCODE_MIN_SCORE) -> Optional[GeocodeMatch]:
    """Return a match for an ArcGIS-style candidate, or None below threshold."""
    if not candidate:
        return None
    score = candidate.get("score") or 0
    if score < threshold:
        return None
    location = candidate.get("location") or {}
    return GeocodeMatch(latitude=location.get("y"), longitude=location.get("x"),
                        score=score, matched_address=candidate.get("address"))


def key_to_query(key: str) -> str:
    return " ".join(part for part in key.split("_") if part)


def arcgis_lookup(key: str, url: str = GEOCODER_URL) -> Optional[dict]:
    """Top geocoder candidate for an address key, as a cacheable dict."""
    resp = requests.get(url, params={"singleLine": key_to_query(key), "outFields": "*", "f": "json"},
                        timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    candidates = resp.json().get("candidates") or []
    match = accept_geocode(candidates[0] if candidates else None)
    return match.model_dump() if match else None


def zillow_lookup(api_key: str, url: str = VALUATION_URL) -> Callable[[str], Optional[dict]]:
    host = url.split("/")[2]
    headers = {"X-RapidAPI-Key": api_key, "X-RapidAPI-Host": host}

    def lookup(key: str) -> Optional[dict]:
        resp = requests.get(url, params={"address": key_to_query(key)}, headers=headers,
                            timeout=REQUEST_TIMEOUT)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json() or {}
        if not data.get("zpid"):
            return None
        return {field: data.get(field) for field in VALUATION_FIELDS}

    return lookup


class ValuationCache:
    """JSON-file cache keyed by ``address_key``; a cached miss is final."""

    filename = VALUATION_FILE

    def __init__(self, lookup: Callable[[str], Optional[dict]], data_dir=None):
        self.lookup = lookup
        self.path = store.resolve_data_dir(data_dir) / self.filename
        self.entries = store.read_json(self.path, default={}) or {}

    def get(self, street, city, state="MI", zip="") -> Optional[dict]:
        key = address_key(street, city, state, zip)
        if key in self.entries:
            cached = self.entries[key]
            return None if cached.get("notFound") else cached
        result = self.lookup(key)
        if result is None:
            logger.info("No result for %s in %s, caching miss", key, self.filename)
            self.entries[key] = {"addressKey": key, "notFound": True}
        else:
            self.entries[key] = {**result, "addressKey": key}
        store.write_json(self.path, self.entries)
        return None if result is None else self.entries[key]


class GeocodeCache(ValuationCache):
    filename = GEOCODE_FILE


class Enricher:
    """Full-cycle hook: geocode and value every individual listing once.

    Provider failures are logged per listing and retried on the next full
    cycle, since nothing is cached for them.
    """

    def __init__(self, geocodes: Optional[GeocodeCache] = None,
                 valuations: Optional[ValuationCache] = None,
                 pace_seconds: float = 0.1, pause=sleep):
        self.geocodes = geocodes
        self.valuations = valuations
        self.pace_seconds = pace_seconds
        self.pause = pause

    def __call__(self, listings: Iterable, tracker=None) -> dict:
        counts = {"geocoded": 0, "valued": 0, "failed": 0}
        for rec in listings:
            if rec.is_bundle or not rec.address:
                continue
            city = rec.city or "DETROIT"
            key = address_key(rec.address, city, "MI", rec.zip or "")
            for name, cache in (("geocoded", self.geocodes), ("valued", self.valuations)):
                if cache is None:
                    continue
                fresh = key not in cache.entries
                try:
                    if cache.get(rec.address, city, "MI", rec.zip or ""):
                        counts[name] += 1
                except requests.RequestException as e:
                    logger.warning("Enrichment of %s failed: %s", rec.auction_id, e)
                    counts["failed"] += 1
                if fresh:
                    self.pause(self.pace_seconds)
        logger.info("Enrichment done: %(geocoded)d geocoded, %(valued)d valued, %(failed)d failed", counts)
        return counts


def default_enricher(data_dir=None) -> Optional[Enricher]:
    """Enricher wired to the live providers, or None when disabled."""
    if not ENABLE_ENRICHMENT:
        return None
    valuations = ValuationCache(zillow_lookup(RAPIDAPI_KEY), data_dir) if RAPIDAPI_KEY else None
    return Enricher(geocodes=GeocodeCache(arcgis_lookup, data_dir), valuations=valuations)
