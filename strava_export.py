#!/usr/bin/env python3
"""
Fetch all Strava activities and write a JSON summary for the website dashboard.
Requires env vars (or a .env file):
  STRAVA_CLIENT_ID
  STRAVA_CLIENT_SECRET
  STRAVA_REFRESH_TOKEN
Optional:
  STRAVA_LOG_LEVEL (default INFO)
"""
import argparse
import enum
import json
import logging
import math
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.strava.com/oauth/token"
ACTIVITIES_URL = "https://www.strava.com/api/v3/athlete/activities"
PER_PAGE = 200
RECENT_LIMIT = 10
REQUEST_TIMEOUT = 30
DATA_DIR = Path(__file__).resolve().parent / "data"
OUTPUT_PATH = DATA_DIR / "strava-activities.json"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class StravaExportError(RuntimeError):
    pass


class AuthenticationError(StravaExportError):
    pass


class FetchError(StravaExportError):
    pass


class OutputShape(enum.Enum):
    EXPORT = "export"
    DASHBOARD = "dashboard"


@dataclass(frozen=True)
class StravaCredentials:
    client_id: str
    client_secret: str
    refresh_token: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "StravaCredentials":
        # Missing values are left for the token endpoint to reject.
        keys = ["STRAVA_CLIENT_ID", "STRAVA_CLIENT_SECRET", "STRAVA_REFRESH_TOKEN"]
        missing = [key for key in keys if not environ.get(key)]
        if missing:
            logger.warning("Missing env vars: %s", ", ".join(missing))
        return cls(
            client_id=environ.get("STRAVA_CLIENT_ID", ""),
            client_secret=environ.get("STRAVA_CLIENT_SECRET", ""),
            refresh_token=environ.get("STRAVA_REFRESH_TOKEN", ""),
        )


def setup_logging(level: Optional[str] = None) -> None:
    level = (level or os.getenv("STRAVA_LOG_LEVEL", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise SystemExit(f"Error: invalid STRAVA_LOG_LEVEL {level!r}")
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def round_half_up(value: float) -> int:
    """Round like JavaScript's Math.round: halves go up, not to even."""
    return math.floor(value + 0.5)


def parse_start_date(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_activity_date(raw: Optional[str]) -> str:
    """Format an ISO start date as e.g. "Sep 2, 2025, 4:37:58 AM" (UTC)."""
    parsed = parse_start_date(raw)
    if parsed is None:
        return ""
    parsed = parsed.astimezone(timezone.utc)
    hour = parsed.hour % 12 or 12
    meridiem = "AM" if parsed.hour < 12 else "PM"
    return (
        f"{parsed:%b} {parsed.day}, {parsed.year}, "
        f"{hour}:{parsed:%M}:{parsed:%S} {meridiem}"
    )


def js_iso_timestamp(moment: datetime) -> str:
    moment = moment.astimezone(timezone.utc)
    return f"{moment:%Y-%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}Z"


def exchange_refresh_token(credentials: StravaCredentials) -> str:
    logger.info("Exchanging refresh token for an access token")
    resp = requests.post(
        TOKEN_URL,
        json={
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "refresh_token": credentials.refresh_token,
            "grant_type": "refresh_token",
        },
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise AuthenticationError(
            f"Failed to get access token: {resp.status_code} {resp.reason} - {resp.text}"
        )
    payload = resp.json()
    if "access_token" not in payload:
        raise AuthenticationError("Failed to get access token: response has no access_token")
    return payload["access_token"]


def fetch_activities(
    access_token: str,
    per_page: int = PER_PAGE,
    max_pages: Optional[int] = None,
) -> List[Dict[str, Any]]:
    activities: List[Dict[str, Any]] = []
    page = 1
    headers = {"Authorization": f"Bearer {access_token}"}
    while True:
        if max_pages is not None and page > max_pages:
            logger.warning("Stopped after %d pages without reaching an empty page", max_pages)
            break
        params = {"per_page": per_page, "page": page}
        resp = requests.get(ACTIVITIES_URL, headers=headers, params=params, timeout=REQUEST_TIMEOUT)
        if not resp.ok:
            raise FetchError(f"Failed to fetch activities: {resp.status_code} {resp.reason}")
        batch = resp.json()
        if not batch:
            break
        activities.extend(batch)
        logger.info("Fetched page %d (%d activities)", page, len(batch))
        page += 1
    return activities


def _km_two_decimals(meters: float):
    # Whole kilometres stay ints so they serialize as 5, not 5.0.
    hundredths = round_half_up(meters / 10)
    if hundredths % 100 == 0:
        return hundredths // 100
    return hundredths / 100


def to_export_record(activity: Dict[str, Any]) -> Dict[str, Any]:
    act_id = activity.get("id")
    return {
        "Activity ID": act_id,
        "Activity Date": format_activity_date(activity.get("start_date")),
        "Activity Name": activity.get("name"),
        "Activity Type": activity.get("type"),
        "Activity Description": activity.get("description") or "",
        "Elapsed Time": activity.get("elapsed_time") or 0,
        "Distance": _km_two_decimals(activity.get("distance") or 0),
        "Filename": f"activities/{act_id}.gpx",
        "Moving Time": activity.get("moving_time") or 0,
        "Max Speed": activity.get("max_speed") or 0,
        "Average Speed": activity.get("average_speed") or 0,
        "Elevation Gain": activity.get("total_elevation_gain") or 0,
        # Not supplied by the API.
        "Elevation Loss": 0,
        "Elevation Low": activity.get("elev_low") or 0,
        "Elevation High": activity.get("elev_high") or 0,
        "Calories": activity.get("calories") or 0,
    }


def to_dashboard_record(activity: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": activity.get("name"),
        "type": activity.get("type"),
        "date": activity.get("start_date"),
        "distance": round_half_up((activity.get("distance") or 0) / 1000),
        "movingTime": round_half_up((activity.get("moving_time") or 0) / 60),
        "elevationGain": round_half_up(activity.get("total_elevation_gain") or 0),
    }


def transform_activity(activity: Dict[str, Any], shape: OutputShape) -> Dict[str, Any]:
    if shape is OutputShape.EXPORT:
        return to_export_record(activity)
    return to_dashboard_record(activity)


def _stat_fields(activity: Dict[str, Any], shape: OutputShape):
    """Return (type, distance km, moving seconds, elevation m) for one record."""
    if shape is OutputShape.EXPORT:
        return (
            activity.get("Activity Type"),
            activity.get("Distance") or 0,
            activity.get("Moving Time") or 0,
            activity.get("Elevation Gain") or 0,
        )
    return (
        activity.get("type"),
        (activity.get("distance") or 0) / 1000,
        activity.get("moving_time") or 0,
        activity.get("total_elevation_gain") or 0,
    )


def aggregate_stats(activities: Sequence[Dict[str, Any]], shape: OutputShape) -> Dict[str, Any]:
    """Fold activities into totals.

    Export-shape input is the transformed records, dashboard-shape input is the
    raw provider records. Totals are rounded once, after summing.
    """
    by_type: Dict[str, int] = {}
    total_distance = 0.0
    total_time = 0.0
    total_elevation = 0.0
    for activity in activities:
        act_type, distance_km, moving_s, elevation_m = _stat_fields(activity, shape)
        act_type = act_type or "Unknown"
        by_type[act_type] = by_type.get(act_type, 0) + 1
        total_distance += distance_km
        total_time += moving_s / 3600
        total_elevation += elevation_m
    return {
        "totalActivities": len(activities),
        "byType": by_type,
        "totalDistance": round_half_up(total_distance),
        "totalTime": round_half_up(total_time),
        "totalElevation": round_half_up(total_elevation),
    }


def _start_sort_key(activity: Dict[str, Any]) -> float:
    parsed = parse_start_date(activity.get("start_date"))
    return parsed.timestamp() if parsed else 0


def sort_newest_first(activities: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(activities, key=_start_sort_key, reverse=True)


def recent_activities(activities: Sequence[Dict[str, Any]], limit: int = RECENT_LIMIT) -> List[Dict[str, Any]]:
    return [to_dashboard_record(act) for act in sort_newest_first(activities)[:limit]]


def build_document(
    raw_activities: Sequence[Dict[str, Any]],
    shape: OutputShape,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Transform and aggregate raw activities into the output document for ``shape``."""
    last_updated = js_iso_timestamp(now or datetime.now(timezone.utc))
    if shape is OutputShape.EXPORT:
        # Ordered on start_date, not the formatted display date.
        ordered = sort_newest_first(raw_activities)
        records = [transform_activity(act, shape) for act in ordered]
        return {
            "lastUpdated": last_updated,
            "stats": aggregate_stats(records, shape),
            "activities": records,
        }

    document = aggregate_stats(raw_activities, shape)
    document["lastUpdated"] = last_updated
    document["recentActivities"] = recent_activities(raw_activities)
    return document


def save_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)


def print_summary(document: Dict[str, Any], shape: OutputShape, path: Path) -> None:
    stats = document["stats"] if shape is OutputShape.EXPORT else document
    print(f"Done! Data saved to {path}")
    print("Summary:")
    print(f"   Total activities: {stats['totalActivities']}")
    print(f"   Total distance: {stats['totalDistance']} km")
    print(f"   Total time: {stats['totalTime']} hours")
    print(f"   Total elevation: {stats['totalElevation']} m")
    print("   By type:")
    for act_type, count in sorted(stats["byType"].items(), key=lambda item: (-item[1], item[0])):
        print(f"     {act_type}: {count}")


def run(
    credentials: StravaCredentials,
    shape: OutputShape,
    output: Path,
    max_pages: Optional[int] = None,
) -> Dict[str, Any]:
    access_token = exchange_refresh_token(credentials)
    activities = fetch_activities(access_token, max_pages=max_pages)
    logger.info("Fetched %d activities in total", len(activities))

    document = build_document(activities, shape)
    logger.info("Saving %s document to %s", shape.value, output)
    save_json(output, document)
    return document


def main(argv: Optional[Sequence[str]] = None) -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Fetch Strava activities and write a JSON summary.")
    parser.add_argument(
        "--shape",
        choices=[shape.value for shape in OutputShape],
        default=OutputShape.DASHBOARD.value,
        help="Output schema: per-activity export records or dashboard stats.",
    )
    parser.add_argument("--output", type=Path, default=OUTPUT_PATH, help="Where to write the JSON document.")
    parser.add_argument(
        "--max-pages",
        type=int,
        help="Stop after this many pages even if Strava has not returned an empty page.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    shape = OutputShape(args.shape)
    credentials = StravaCredentials.from_env(os.environ)

    try:
        document = run(credentials, shape, args.output, max_pages=args.max_pages)
    except (StravaExportError, requests.RequestException, OSError) as exc:
        raise SystemExit(f"Error: {exc}") from exc

    print_summary(document, shape, args.output)


if __name__ == "__main__":
    main()
