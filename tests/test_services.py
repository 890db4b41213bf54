from datetime import datetime, date

import pytest
import requests

from cosmic_watch import services, models, risk
from cosmic_watch.database import SessionLocal


def neows_item(neo_id, name, diameter, au, kps, hazardous=False, day="2026-10-18"):
    return {
        "id": neo_id,
        "name": name,
        "close_approach_data": [
            {
                "close_approach_date": day,
                "relative_velocity": {
                    "kilometers_per_second": str(kps),
                    "kilometers_per_hour": str(kps * 3600),
                },
                "miss_distance": {
                    "astronomical": str(au),
                    "kilometers": str(au * risk.KM_PER_AU),
                },
            }
        ],
        "estimated_diameter": {"meters": {"estimated_diameter_max": diameter}},
        "is_potentially_hazardous_asteroid": hazardous,
    }


class Resp:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


def test_fetch_neos(monkeypatch):
    today = datetime.utcnow().strftime("%Y-%m-%d")
    payload = {"near_earth_objects": {today: [neows_item("42", "Apophis", 370, 0.04, 1, day=today)]}}

    def fake_get(url, params, timeout):
        assert params["start_date"] == today
        assert params["end_date"] == today
        assert "api_key" in params
        return Resp(payload)

    monkeypatch.setattr(services.httpx, "get", fake_get)
    result = services.fetch_neos(datetime.utcnow())
    assert result == [
        {
            "neo_id": "42",
            "name": "Apophis",
            "close_approach_date": date.fromisoformat(today),
            "diameter_max_meters": 370,
            "velocity_kps": 1.0,
            "miss_distance_astronomical": 0.04,
            "hazardous": False,
        }
    ]


def test_fetch_feed_raises_for_status(monkeypatch):
    class Failing(Resp):
        def raise_for_status(self):
            raise services.httpx.HTTPStatusError("429", request=None, response=None)

    monkeypatch.setattr(services.httpx, "get", lambda url, params, timeout: Failing({}))
    with pytest.raises(services.httpx.HTTPError):
        services.fetch_feed(date(2026, 10, 18), date(2026, 10, 19))


def test_flatten_feed_orders_days_and_keeps_malformed_items(caplog):
    payload = {
        "near_earth_objects": {
            "2026-10-19": [neows_item("2", "(2026 BB)", 10, 0.3, 5, day="2026-10-19")],
            "2026-10-18": [
                neows_item("1", "(2026 AA)", 1000, 0.01, 30, hazardous=True),
                {"id": "3", "name": "Broken", "close_approach_data": "??"},
                {"name": "no id"},
            ],
        }
    }
    records = services.flatten_feed(payload)
    assert [r["id"] for r in records] == ["1", "3", "2"]

    first = records[0]
    assert first["diameter_max_meters"] == 1000
    assert first["miss_distance_astronomical"] == 0.01
    assert first["miss_distance_km"] == pytest.approx(0.01 * risk.KM_PER_AU)
    assert first["velocity_kph"] == pytest.approx(30 * 3600)
    assert first["hazardous"] is True
    assert first["close_approach_date"] == date(2026, 10, 18)

    broken = records[1]
    assert broken["close_approach_date"] is None
    assert risk.score(broken) == 0
    assert "without id" in caplog.text


def test_flattened_record_scores_like_feed_item():
    item = neows_item("7", "Seven", 612.3, 0.0321, 22.4)
    assert risk.score(services.flatten_item(item)) == risk.score(item)


def test_flatten_empty_feed():
    assert services.flatten_feed({}) == []
    assert services.flatten_feed({"near_earth_objects": {"2026-10-18": []}}) == []


def test_summarize():
    records = services.flatten_feed(
        {
            "near_earth_objects": {
                "2026-10-18": [
                    neows_item("1", "(Big)", 1200, 0.2, 10),
                    neows_item("2", "(Close)", 20, 0.001, 10),
                    neows_item("3", "(Small)", 5, 0.4, 10),
                    neows_item("4", "(Flagged)", 5, 0.4, 10, hazardous=True),
                ]
            }
        }
    )
    summary = services.summarize(records)
    # Big: 40 + 0 + 5 = 45, moderate. Close: 0.8 + 39.2 + 5 = 45, moderate.
    assert summary["total"] == 4
    assert summary["hazardous_count"] == 1
    assert summary["safe_count"] == 3
    assert summary["hazardous_percent"] == 25.0
    assert summary["closest"]["id"] == "2"
    assert summary["closest"]["name"] == "Close"
    assert summary["largest"] == {"id": "1", "name": "Big", "diameter_max_meters": 1200}
    assert summary["average_velocity_kps"] == 10.0
    assert summary["average_velocity_kph"] == 36000
    assert summary["assessment"]["status"] == "CRITICAL"


def test_summarize_assessment_bands():
    def record(i, diameter):
        return {
            "id": str(i),
            "name": f"N{i}",
            "diameter_max_meters": diameter,
            "miss_distance_astronomical": 1.0,
            "miss_distance_km": risk.KM_PER_AU,
            "velocity_kps": 40.0,
            "hazardous": False,
        }

    # 1000 m at 40 km/s scores 60; 0 m scores 20
    warning = [record(0, 1000)] + [record(i, 0) for i in range(1, 10)]
    assert services.summarize(warning)["assessment"]["status"] == "WARNING"

    clear = [record(0, 1000)] + [record(i, 0) for i in range(1, 30)]
    assert services.summarize(clear)["assessment"]["status"] == "CLEAR"


def test_summarize_empty():
    summary = services.summarize([])
    assert summary["total"] == 0
    assert summary["closest"] is None
    assert summary["assessment"]["status"] == "NO_DATA"


def neo_row(neo_id, name, diameter, au, kps, hazardous):
    return {
        "neo_id": neo_id,
        "name": name,
        "close_approach_date": date.today(),
        "diameter_max_meters": diameter,
        "velocity_kps": kps,
        "miss_distance_astronomical": au,
        "hazardous": hazardous,
    }


def add_subscriber(url="http://example.com"):
    db = SessionLocal()
    try:
        db.add(models.Subscriber(url=url))
        db.commit()
    finally:
        db.close()


def test_store_neos(monkeypatch):
    add_subscriber()

    sent = []
    calls = {"n": 0}

    def fake_post(url, json, timeout):
        calls["n"] += 1
        if calls["n"] == 1:
            raise requests.ConnectionError("boom")
        sent.append((url, json["neo_id"], json["risk_score"]))

    monkeypatch.setattr(services.webhook_session, "post", fake_post)
    monkeypatch.setattr(services.time, "sleep", lambda s: None)

    db = SessionLocal()
    try:
        neos = [
            neo_row("1", "One", 1000.0, 0.01, 20.0, False),
            neo_row("2", "Two", 10.0, 0.5, 1.0, False),
            neo_row("1", "One again", 1000.0, 0.01, 20.0, False),
        ]
        stored = services.store_neos(db, neos)
        assert len(stored) == 2
        # only the high-risk object is sent, after one failed attempt
        assert sent == [("http://example.com", "1", 82)]
        assert calls["n"] == 2

        again = services.store_neos(db, neos)
        assert len(again) == 0
    finally:
        db.close()


def test_hazardous_flag_alone_triggers_alert(monkeypatch):
    add_subscriber()
    sent = []
    monkeypatch.setattr(services.webhook_session, "post", lambda url, json, timeout: sent.append(json))

    db = SessionLocal()
    try:
        services.store_neos(db, [neo_row("h", "Flagged", 1.0, 0.9, 1.0, True)])
    finally:
        db.close()
    assert [p["neo_id"] for p in sent] == ["h"]
    assert sent[0]["risk_score"] == 1


def test_store_neos_retries(monkeypatch):
    add_subscriber()

    calls = {"n": 0}
    delays = []

    def always_fail(url, json, timeout):
        calls["n"] += 1
        raise requests.Timeout("boom")

    monkeypatch.setattr(services.webhook_session, "post", always_fail)
    monkeypatch.setattr(services.time, "sleep", delays.append)

    db = SessionLocal()
    try:
        services.store_neos(db, [neo_row("x", "Fail", 1000.0, 0.001, 30.0, True)])
        assert calls["n"] == 3
        assert delays == [1.0, 2.0]
    finally:
        db.close()


def test_model_repr():
    n = models.Neo(**neo_row("r", "Rep", 1.0, 0.1, 1.0, False))
    s = models.Subscriber(url="http://example.com")
    w = models.WatchlistEntry(owner_id="u1", asteroid_id="r", name="Rep")
    assert "<Neo r Rep>" == repr(n)
    assert "<Subscriber http://example.com>" == repr(s)
    assert "<WatchlistEntry u1 r>" == repr(w)
