import os
os.environ['TEST_DB_URL'] = 'sqlite:///test.db'
os.environ['AUTH_SECRET'] = 'test-secret-key-for-cosmic-watch-tests'
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from cosmic_watch.main import app, scheduler, event_queue
from cosmic_watch import config, models
from cosmic_watch.chat import room
from cosmic_watch.database import engine


import pytest_asyncio


def make_token(uid="user-1", **claims):
    payload = {
        "sub": uid,
        "email": f"{uid}@example.com",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, config.AUTH_SECRET, algorithm=config.AUTH_ALGORITHM)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    monkeypatch.setattr(scheduler, "start", lambda: None)
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    # reset queue and chat room between tests
    while not event_queue.empty():
        event_queue.get_nowait()
    room.members.clear()


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def token_for():
    return make_token
