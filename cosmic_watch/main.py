import asyncio
import json
import logging
import time
from datetime import date, timedelta
from pathlib import Path

import httpx
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool

from . import config, models, schemas, services
from .auth import CurrentUser, get_current_user
from .chat import chat_endpoint
from .database import SessionLocal, engine
from .events import event_queue
from .scheduler import scheduled_ingest, scheduler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Cosmic Watch")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "http_status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_latency_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
)


@app.on_event("startup")
async def startup_event():
    scheduler.start()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    method = request.method
    endpoint = request.url.path
    start_time = time.monotonic()
    response = await call_next(request)
    duration = time.monotonic() - start_time
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, http_status=response.status_code).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong!"})


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date")


def feed_window(start_date: str | None, end_date: str | None) -> tuple[date, date]:
    start = parse_date(start_date) if start_date else date.today()
    end = parse_date(end_date) if end_date else start
    if end < start:
        raise HTTPException(status_code=400, detail="end_date before start_date")
    if end - start > timedelta(days=config.MAX_FEED_DAYS):
        raise HTTPException(
            status_code=400,
            detail=f"Date range limited to {config.MAX_FEED_DAYS} days",
        )
    return start, end


async def load_feed(start: date, end: date) -> list[schemas.NearEarthObject]:
    try:
        payload = await run_in_threadpool(services.fetch_feed, start, end)
    except httpx.HTTPError as exc:
        logger.error("feed fetch failed for %s..%s: %s", start, end, exc)
        raise HTTPException(status_code=502, detail="Upstream feed unavailable")
    return [schemas.NearEarthObject(**r) for r in services.flatten_feed(payload)]


SORT_KEYS = {
    "name": lambda n: n.display_name.lower(),
    "risk": lambda n: n.risk_score,
}


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    return templates.TemplateResponse(request, "index.html", {"title": "Cosmic Watch"})


@app.get("/api/asteroids/feed")
async def get_feed(
    start_date: str | None = None,
    end_date: str | None = None,
    q: str | None = None,
    sort: str = "name",
    order: str = "asc",
):
    if sort not in SORT_KEYS:
        raise HTTPException(status_code=400, detail="Invalid sort")
    if order not in {"asc", "desc"}:
        raise HTTPException(status_code=400, detail="Invalid order")

    start, end = feed_window(start_date, end_date)
    neos = await load_feed(start, end)

    if q:
        needle = q.lower()
        neos = [n for n in neos if needle in n.name.lower()]

    neos.sort(key=SORT_KEYS[sort], reverse=order == "desc")
    return [n.model_dump(mode="json") for n in neos]


@app.get("/api/asteroids/analytics")
async def get_analytics(start_date: str | None = None, end_date: str | None = None):
    start, end = feed_window(start_date, end_date)
    neos = await load_feed(start, end)
    summary = services.summarize(n.model_dump() for n in neos)
    summary["start_date"] = start.isoformat()
    summary["end_date"] = end.isoformat()
    return summary


@app.get("/api/asteroids/watchlist")
async def get_watchlist(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entries = (
        db.query(models.WatchlistEntry)
        .filter(models.WatchlistEntry.owner_id == user.uid)
        .order_by(models.WatchlistEntry.saved_at.desc(), models.WatchlistEntry.id.desc())
        .all()
    )
    resp = schemas.WatchlistResponse(
        watchlist=[schemas.WatchlistRead.model_validate(e) for e in entries]
    )
    return resp.model_dump(mode="json")


@app.post("/api/asteroids/watchlist", status_code=201)
async def add_to_watchlist(
    item: schemas.WatchlistCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    existing = (
        db.query(models.WatchlistEntry)
        .filter_by(owner_id=user.uid, asteroid_id=item.asteroid_id)
        .first()
    )
    if existing:
        raise HTTPException(status_code=400, detail="Asteroid already in watchlist")

    entry = models.WatchlistEntry(owner_id=user.uid, **item.model_dump())
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Asteroid already in watchlist")
    db.refresh(entry)
    logger.info("watchlist add %s by %s", item.asteroid_id, user.uid)
    return schemas.WatchlistRead.model_validate(entry).model_dump(mode="json")


@app.delete("/api/asteroids/watchlist/{asteroid_id}", status_code=204)
async def remove_from_watchlist(
    asteroid_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entry = (
        db.query(models.WatchlistEntry)
        .filter_by(owner_id=user.uid, asteroid_id=asteroid_id)
        .first()
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Not Found")
    db.delete(entry)
    db.commit()
    return Response(status_code=204)


@app.get("/neos")
async def get_neos(
    start_date: str | None = None,
    end_date: str | None = None,
    hazardous: str | None = None,
    db: Session = Depends(get_db),
):
    start = parse_date(start_date) if start_date else None
    end = parse_date(end_date) if end_date else None

    if hazardous is not None:
        if hazardous.lower() in {"true", "1"}:
            hazard_bool = True
        elif hazardous.lower() in {"false", "0"}:
            hazard_bool = False
        else:
            raise HTTPException(status_code=400, detail="Invalid hazardous")
    else:
        hazard_bool = None

    q = db.query(models.Neo)
    if start:
        q = q.filter(models.Neo.close_approach_date >= start)
    if end:
        q = q.filter(models.Neo.close_approach_date <= end)
    if hazard_bool is not None:
        q = q.filter(models.Neo.hazardous == hazard_bool)
    neos = q.all()
    return [schemas.NeoRead.model_validate(n).model_dump(mode="json") for n in neos]


@app.get("/neos/{neo_id}")
async def get_neo(neo_id: int, db: Session = Depends(get_db)):
    n = db.query(models.Neo).filter(models.Neo.id == neo_id).first()
    if not n:
        raise HTTPException(status_code=404, detail="Not Found")
    return schemas.NeoRead.model_validate(n).model_dump(mode="json")


@app.post("/subscribe", status_code=201)
async def subscribe(sub: schemas.SubscriberCreate, db: Session = Depends(get_db)):
    if db.query(models.Subscriber).filter_by(url=sub.url).first():
        raise HTTPException(status_code=400, detail="Already subscribed")
    obj = models.Subscriber(url=sub.url)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return schemas.SubscriberRead.model_validate(obj)


@app.get("/subscribers")
async def get_subscribers(db: Session = Depends(get_db)):
    subs = db.query(models.Subscriber).all()
    return [schemas.SubscriberRead.model_validate(s) for s in subs]


@app.delete("/subscribers/{sub_id}", status_code=204)
async def delete_subscriber(sub_id: int, db: Session = Depends(get_db)):
    sub = db.query(models.Subscriber).filter(models.Subscriber.id == sub_id).first()
    if not sub:
        raise HTTPException(status_code=404, detail="Not Found")
    db.delete(sub)
    db.commit()
    return Response(status_code=204)


@app.get("/stream/neos")
async def stream_neos(request: Request):
    async def event_generator():
        while True:
            if await request.is_disconnected():
                break
            try:
                data = await asyncio.wait_for(event_queue.get(), timeout=15)
                yield {"event": "message", "data": json.dumps(data)}
            except asyncio.TimeoutError:
                yield {"event": "heartbeat", "data": "ping"}
    return EventSourceResponse(event_generator())


@app.post("/ingest")
async def ingest(background_tasks: BackgroundTasks):
    background_tasks.add_task(scheduled_ingest)
    return {"status": "started"}


@app.websocket("/ws/chat")
async def chat(websocket: WebSocket):
    await chat_endpoint(websocket)


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
