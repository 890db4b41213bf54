import logging
import time
from datetime import date, datetime
from typing import Iterable, List

import httpx
import requests
from requests.adapters import HTTPAdapter
from sqlalchemy.orm import Session
from urllib3.util import Retry

from . import config, models, risk

logger = logging.getLogger(__name__)

# session with retry for webhook alerts
webhook_session = requests.Session()
retries = Retry(total=3, backoff_factor=1, status_forcelist=[500, 502, 503, 504])
webhook_session.mount("https://", HTTPAdapter(max_retries=retries))

CRITICAL_PERCENT = 20.0
WARNING_PERCENT = 5.0


def fetch_feed(start: date, end: date) -> dict:
    """Fetch the raw NeoWs feed for an inclusive date window."""

    params = {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "api_key": config.NASA_API_KEY,
    }
    resp = httpx.get(config.NASA_FEED_URL, params=params, timeout=config.FEED_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def _approach_date(item: dict) -> date | None:
    approaches = item.get("close_approach_data")
    if not isinstance(approaches, list) or not approaches:
        return None
    raw = approaches[0].get("close_approach_date") if isinstance(approaches[0], dict) else None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def flatten_item(item: dict) -> dict:
    """One feed item as a flat record. Metrics go through the scorer's normalizer."""

    metrics = risk.normalize(item)
    return {
        "id": str(item["id"]),
        "name": str(item.get("name") or item["id"]),
        "close_approach_date": _approach_date(item),
        "diameter_max_meters": metrics.diameter_meters,
        "miss_distance_astronomical": metrics.miss_distance_au,
        "miss_distance_km": metrics.miss_distance_au * risk.KM_PER_AU,
        "velocity_kps": metrics.velocity_kps,
        "velocity_kph": metrics.velocity_kps * risk.SECONDS_PER_HOUR,
        "hazardous": bool(item.get("is_potentially_hazardous_asteroid")),
    }


def flatten_feed(payload: dict) -> List[dict]:
    """Flatten the day -> objects mapping of a feed response, in day order."""

    days = payload.get("near_earth_objects") or {}
    records: List[dict] = []
    for day in sorted(days):
        for item in days[day] or []:
            if not isinstance(item, dict) or item.get("id") is None:
                logger.warning("skipping feed item without id on %s", day)
                continue
            records.append(flatten_item(item))
    return records


def fetch_neos(day: datetime) -> List[dict]:
    """Fetch one day of NEOs, shaped for the ``neos`` table."""

    target = day.date() if isinstance(day, datetime) else day
    neos: List[dict] = []
    for record in flatten_feed(fetch_feed(target, target)):
        neos.append(
            {
                "neo_id": record["id"],
                "name": record["name"],
                "close_approach_date": record["close_approach_date"] or target,
                "diameter_max_meters": record["diameter_max_meters"],
                "velocity_kps": record["velocity_kps"],
                "miss_distance_astronomical": record["miss_distance_astronomical"],
                "hazardous": record["hazardous"],
            }
        )
    return neos


def summarize(records: Iterable[dict]) -> dict:
    """Headline figures for a set of flattened feed records."""

    records = list(records)
    total = len(records)
    if total == 0:
        return {
            "total": 0,
            "hazardous_count": 0,
            "safe_count": 0,
            "hazardous_percent": 0.0,
            "closest": None,
            "largest": None,
            "average_velocity_kps": 0.0,
            "average_velocity_kph": 0.0,
            "assessment": {"status": "NO_DATA", "message": "No data available for analysis."},
        }

    hazardous = sum(
        1 for r in records if risk.is_high_risk(risk.score(r), r.get("hazardous"))
    )
    percent = round(hazardous / total * 100, 1)
    closest = min(records, key=lambda r: r["miss_distance_km"])
    largest = max(records, key=lambda r: r["diameter_max_meters"])
    avg_kps = sum(r["velocity_kps"] for r in records) / total

    if percent > CRITICAL_PERCENT:
        assessment = {
            "status": "CRITICAL",
            "message": "High density of hazardous objects detected.",
        }
    elif percent > WARNING_PERCENT:
        assessment = {
            "status": "WARNING",
            "message": "Elevated threat level. Monitoring recommended.",
        }
    else:
        assessment = {
            "status": "CLEAR",
            "message": "Sector relatively clear. Routine monitoring active.",
        }

    return {
        "total": total,
        "hazardous_count": hazardous,
        "safe_count": total - hazardous,
        "hazardous_percent": percent,
        "closest": {
            "id": closest["id"],
            "name": risk.display_name(closest["name"]),
            "miss_distance_km": round(closest["miss_distance_km"], 1),
        },
        "largest": {
            "id": largest["id"],
            "name": risk.display_name(largest["name"]),
            "diameter_max_meters": round(largest["diameter_max_meters"], 1),
        },
        "average_velocity_kps": round(avg_kps, 1),
        "average_velocity_kph": round(avg_kps * risk.SECONDS_PER_HOUR),
        "assessment": assessment,
    }


def _alert_payload(obj: models.Neo, risk_score: int) -> dict:
    return {
        "neo_id": obj.neo_id,
        "name": obj.name,
        "close_approach_date": obj.close_approach_date.isoformat() if obj.close_approach_date else None,
        "diameter_max_meters": obj.diameter_max_meters,
        "velocity_kps": obj.velocity_kps,
        "miss_distance_astronomical": obj.miss_distance_astronomical,
        "hazardous": obj.hazardous,
        "risk_score": risk_score,
    }


def notify_subscribers(db: Session, objs: List[models.Neo]) -> int:
    """Post high-risk objects to every subscriber; returns deliveries made."""

    subscribers = db.query(models.Subscriber).all()
    delivered = 0
    for obj in objs:
        risk_score = risk.score(obj)
        if not risk.is_high_risk(risk_score, obj.hazardous):
            continue
        payload = _alert_payload(obj, risk_score)
        for sub in subscribers:
            delay = 1.0
            for attempt in range(3):
                try:
                    webhook_session.post(sub.url, json=payload, timeout=5)
                    delivered += 1
                    break
                except requests.RequestException as exc:
                    if attempt == 2:
                        logger.warning("alert to %s failed: %s", sub.url, exc)
                        break
                    time.sleep(delay)
                    delay *= 2
    return delivered


def store_neos(db: Session, neos: List[dict]) -> List[models.Neo]:
    """Insert new NEOs and alert subscribers about high-risk ones."""

    stored: List[models.Neo] = []
    seen = set()
    for data in neos:
        if data["neo_id"] in seen:
            continue
        seen.add(data["neo_id"])
        existing = db.query(models.Neo).filter_by(neo_id=data["neo_id"]).first()
        if existing:
            continue
        obj = models.Neo(**data)
        db.add(obj)
        stored.append(obj)

    db.commit()
    for obj in stored:
        db.refresh(obj)
    logger.info("stored %d new neos out of %d", len(stored), len(neos))

    notify_subscribers(db, stored)
    return stored
