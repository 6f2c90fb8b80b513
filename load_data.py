"""
Solar Lamp Survey Data Loader - KoboToolbox Edition

Fetches lamp-distribution submissions from the KoboToolbox API and turns
them into dashboard-ready data via the transformer.

Loading order:
- Local JSON cache, if younger than CACHE_TTL_HOURS
- KoboToolbox API (retries on HTTP 429 with exponential backoff)
- Static mock dataset, when the API cannot be reached

Uploaded spreadsheets/JSON exports go through the same transformer.
"""

import io
import json
import logging
import time
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Any, Optional
from urllib.parse import urljoin

import pandas as pd
import requests

from config import (
    KOBO_BASE_URL, KOBO_API_TOKEN, KOBO_FORM_ID, KOBO_FORM_VERSIONS,
    KOBO_PAGE_LIMIT, KOBO_TIMEOUT_S, KOBO_MAX_RETRIES, KOBO_BACKOFF_S,
    CACHE_PATH, CACHE_TTL_HOURS
)
from kobo_transformer import DashboardData, extract_submissions, transform_kobo_data
from mock_data import build_mock_dashboard_data

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of an API call. Transport errors never escape as exceptions."""
    success: bool
    data: Any = None
    error: Optional[str] = None


# ==================== KOBOTOOLBOX API ====================

class KoboClient:
    """
    Minimal KoboToolbox v2 API client.

    Key ideas:
      - Token auth on a shared requests.Session
      - Retry HTTP 429 with exponential backoff, fail fast on everything else
      - Return FetchResult so callers can fall back without try/except
    """

    def __init__(self,
                 base_url: str = KOBO_BASE_URL,
                 token: str = KOBO_API_TOKEN,
                 timeout_s: float = KOBO_TIMEOUT_S,
                 max_retries: int = KOBO_MAX_RETRIES,
                 backoff_s: float = KOBO_BACKOFF_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.token = token
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

        self.sess = session or requests.Session()
        self.sess.headers.update({"Accept": "application/json"})
        if token:
            self.sess.headers.update({"Authorization": f"Token {token}"})

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """GET with retries on 429. Raises RuntimeError when retries run out."""
        for attempt in range(self.max_retries):
            response = self.sess.get(url, params=params, timeout=self.timeout_s)
            if response.status_code != 429:
                return response
            if attempt == self.max_retries - 1:
                break
            sleep_s = self.backoff_s * (2 ** attempt)
            logger.warning("Rate limited by KoboToolbox, retrying in %.1fs (attempt %d/%d)",
                           sleep_s, attempt + 1, self.max_retries)
            time.sleep(sleep_s)
        raise RuntimeError("Max retries reached")

    def _fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> FetchResult:
        if not self.token:
            return FetchResult(success=False, error="KoboToolbox API token is not set")

        try:
            response = self._get(url, params=params)
        except requests.RequestException as e:
            logger.error("Request to %s failed: %s", url, e)
            return FetchResult(success=False, error=f"Could not reach KoboToolbox: {e}")
        except RuntimeError as e:
            return FetchResult(success=False, error=str(e))

        if response.status_code == 404:
            # An unknown form or version just has no submissions
            return FetchResult(success=True, data={
                'results': [],
                'count': 0,
                'message': "No submissions found for this form. Check URL, permissions, or version."
            })
        if response.status_code == 403:
            return FetchResult(success=False, error="Unauthorized access to this form's submissions")
        if not response.ok:
            logger.error("Error fetching %s: %s - %s", url, response.status_code, response.text[:200])
            return FetchResult(success=False,
                               error=f"Failed to fetch data: {response.status_code} {response.reason}")

        try:
            return FetchResult(success=True, data=response.json())
        except ValueError as e:
            return FetchResult(success=False, error=f"Invalid JSON from KoboToolbox: {e}")

    def fetch_submissions(self, form_uid: str = KOBO_FORM_ID) -> FetchResult:
        """
        Fetch all submissions of a form.

        Returns:
            FetchResult whose data is the paginated API response ({results, count, ...})
        """
        if not form_uid:
            return FetchResult(success=False, error="Form UID not provided")

        url = urljoin(self.base_url, f"api/v2/assets/{form_uid}/data/")
        params: Dict[str, Any] = {"format": "json", "limit": KOBO_PAGE_LIMIT}
        version = KOBO_FORM_VERSIONS.get(form_uid)
        if version:
            params["version"] = version

        logger.info("Fetching submissions for form %s", form_uid)
        result = self._fetch_json(url, params=params)
        if result.success and isinstance(result.data, dict):
            logger.info("Submission count: %s", result.data.get('count'))
        return result

    def list_forms(self) -> FetchResult:
        """Fetch the forms (assets) visible to the token."""
        url = urljoin(self.base_url, "api/v2/assets/")
        result = self._fetch_json(url, params={"format": "json"})
        if result.success:
            result.data = extract_submissions(result.data) or []
        return result


# ==================== CACHE ====================

def save_dashboard_data(data: DashboardData,
                        output_path: str = CACHE_PATH,
                        now: Optional[datetime] = None) -> None:
    """Save transformed data to the JSON cache, stamped with the save time."""
    payload = data.to_dict()
    payload['cached_at'] = (now or datetime.now(timezone.utc)).isoformat()

    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        json.dump(payload, f, indent=2)
    logger.info("Dashboard data cached to %s", output_path)


def load_cached_dashboard_data(json_path: str = CACHE_PATH,
                               ttl_hours: float = CACHE_TTL_HOURS,
                               now: Optional[datetime] = None) -> Optional[DashboardData]:
    """
    Load cached data if present and younger than `ttl_hours`.

    Returns:
        DashboardData with source "cache", or None on a miss (missing,
        expired or unreadable file)
    """
    path = Path(json_path)
    if not path.exists():
        return None

    try:
        with open(path, 'r') as f:
            payload = json.load(f)
        cached_at = datetime.fromisoformat(payload['cached_at'])
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=timezone.utc)

        age = (now or datetime.now(timezone.utc)) - cached_at
        if age > timedelta(hours=ttl_hours):
            logger.info("Cache at %s expired (%s old)", json_path, age)
            return None

        data = DashboardData.from_dict(payload)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring unreadable cache %s: %s", json_path, e)
        return None

    data.source = "cache"
    return data


def clear_cache(json_path: str = CACHE_PATH) -> None:
    Path(json_path).unlink(missing_ok=True)


# ==================== LOADING ====================

class KoboFetchError(Exception):
    """Submissions could not be loaded from KoboToolbox."""


MOCK_FALLBACK_MESSAGE = "Failed to load data from KoboToolbox. Using mock data instead."


def load_live_dashboard_data(form_uid: str = KOBO_FORM_ID,
                             cache_path: str = CACHE_PATH,
                             ttl_hours: float = CACHE_TTL_HOURS,
                             use_cache: bool = True,
                             client: Optional[KoboClient] = None) -> DashboardData:
    """
    Load dashboard data from the JSON cache or the KoboToolbox API.

    Args:
        form_uid: KoboToolbox form (asset) UID
        cache_path: JSON cache location
        ttl_hours: Maximum cache age
        use_cache: Read and write the cache
        client: KoboClient to use (a default one is created if None)

    Returns:
        DashboardData with source "cache" or "kobo"

    Raises:
        KoboFetchError: the API request failed
    """
    if use_cache:
        cached = load_cached_dashboard_data(cache_path, ttl_hours)
        if cached is not None:
            logger.info("Using cached dashboard data from %s", cached.fetched_at)
            return cached

    client = client or KoboClient()
    result = client.fetch_submissions(form_uid)
    if not result.success:
        raise KoboFetchError(result.error)

    data = transform_kobo_data(result.data, source="kobo")
    if use_cache:
        try:
            save_dashboard_data(data, cache_path)
        except OSError as e:
            logger.warning("Could not write cache %s: %s", cache_path, e)
    return data


def mock_fallback_data() -> DashboardData:
    data = build_mock_dashboard_data()
    data.error = MOCK_FALLBACK_MESSAGE
    return data


def build_dashboard_data(form_uid: str = KOBO_FORM_ID,
                         cache_path: str = CACHE_PATH,
                         ttl_hours: float = CACHE_TTL_HOURS,
                         use_cache: bool = True,
                         client: Optional[KoboClient] = None) -> DashboardData:
    """
    Build dashboard data for a form.

    This is the main entry point for data loading. Arguments are the same
    as for `load_live_dashboard_data`.

    Returns:
        DashboardData; source is "cache", "kobo" or "mock". When it is
        "mock", `error` explains why the API data is missing.
    """
    try:
        return load_live_dashboard_data(form_uid, cache_path, ttl_hours, use_cache, client)
    except KoboFetchError as e:
        logger.error("Failed to load data from KoboToolbox: %s", e)
        return mock_fallback_data()


# ==================== UPLOADS ====================

def _dataframe_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    df.columns = [str(c).strip() for c in df.columns]
    df = df.astype(object).where(df.notna(), None)
    return df.to_dict(orient="records")


def parse_uploaded_records(file_name: str, content: bytes) -> List[Dict[str, Any]]:
    """
    Parse an uploaded export into raw submission dicts.

    Supports Kobo XLSX/CSV exports (one row per submission, column names
    as form field names) and JSON (list or API response).

    Raises:
        ValueError: unsupported file type or unreadable content
    """
    suffix = Path(file_name).suffix.lower()
    if suffix not in (".xlsx", ".csv", ".json"):
        raise ValueError(f"Unsupported file type: {suffix or file_name}")

    try:
        if suffix == ".xlsx":
            return _dataframe_to_records(pd.read_excel(io.BytesIO(content), engine="openpyxl"))
        if suffix == ".csv":
            return _dataframe_to_records(pd.read_csv(io.BytesIO(content)))
        records = extract_submissions(json.loads(content.decode('utf-8')))
    except (zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise ValueError(f"Could not read {file_name}: {e}") from e

    if records is None:
        raise ValueError("JSON must be a list of submissions or an object with a 'results' list")
    return records


def transform_uploaded_file(file_name: str, content: bytes) -> DashboardData:
    records = parse_uploaded_records(file_name, content)
    logger.info("Processed %d records from %s", len(records), file_name)
    return transform_kobo_data(records, source="upload")


# CLI entry point
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="  %(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Solar Lamp Survey Data Loader")
    print("=" * 60)

    data = build_dashboard_data(use_cache=False)
    if data.source != "mock":
        save_dashboard_data(data)
        print(f"\nDashboard data saved to {CACHE_PATH}")
    else:
        print(f"\n{data.error}")

    summary = data.summary
    print("\n" + "=" * 60)
    print("Data Summary")
    print("=" * 60)
    print(f"  Source: {data.source}")
    print(f"  Schools: {len(summary.schools)}")
    print(f"  Total Students: {summary.total_students}")
    print(f"  Total Lamps: {summary.total_lamps}")
    print(f"  Average Age: {summary.average_age:.1f}")
    print(f"  Average Meals/Day: {summary.average_meals_per_day:.1f}")
    print(f"  With Smartphones: {summary.percent_with_smartphones:.1f}%")
    print(f"  Without Electricity: {summary.percent_without_electricity:.1f}%")
    for aspiration in summary.career_aspirations:
        print(f"    {aspiration.name}: {aspiration.count}")
