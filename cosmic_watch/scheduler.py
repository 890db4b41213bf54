import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from starlette.concurrency import run_in_threadpool

from . import config, services, schemas
from .database import SessionLocal
from .events import event_queue

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def _fetch_and_store(day: datetime) -> list[dict]:
    db = SessionLocal()
    try:
        stored = services.store_neos(db, services.fetch_neos(day))
        return [schemas.NeoRead.model_validate(n).model_dump(mode="json") for n in stored]
    finally:
        db.close()


async def ingest_once() -> int:
    """Fetch today's objects, store them and publish each to the event stream.

    The network and database work runs in the threadpool; the queue is only
    touched from the event loop it belongs to.
    """
    events = await run_in_threadpool(_fetch_and_store, datetime.utcnow())
    for event in events:
        event_queue.put_nowait(event)
    logger.info("ingested %d objects", len(events))
    return len(events)


@scheduler.scheduled_job(IntervalTrigger(hours=config.INGEST_INTERVAL_HOURS))
async def scheduled_ingest():
    try:
        await ingest_once()
    except Exception:
        logger.exception("scheduled ingest failed")
