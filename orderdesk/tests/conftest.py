"""Shared fixtures for the ordering API tests."""

import pathlib
import sys

import fakeredis.aioredis
import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from config import Settings  # noqa: E402
from orderdesk.app.db import create_engine, init_models, session_factory  # noqa: E402
from orderdesk.app.events import ChangeNotifier  # noqa: E402
from orderdesk.app.security.cooldown import CooldownGate  # noqa: E402
from orderdesk.app.services.order_intake import OrderIntake  # noqa: E402

from factories import STORE  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        business_timezone="UTC",
        courier_api_key="pk_test",
        courier_api_secret="sk_test",
        courier_market="PH",
        store_name=STORE.name,
        store_phone=STORE.phone,
        store_address=STORE.address,
        store_latitude=STORE.latitude,
        store_longitude=STORE.longitude,
    )


@pytest.fixture
async def sessions(settings):
    engine = create_engine(settings.database_url, label="test")
    await init_models(engine)
    yield session_factory(engine)
    await engine.dispose()


@pytest.fixture
def redis():
    return fakeredis.aioredis.FakeRedis()


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def intake(sessions, redis, notifier, settings):
    return OrderIntake(
        sessions,
        CooldownGate(redis),
        notifier=notifier,
        store=STORE,
        settings=settings,
    )
