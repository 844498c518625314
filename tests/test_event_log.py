# tests/test_event_log.py
from datetime import timedelta

import pytest

from conftest import NOW
from marketplace_analytics.core.db import build_engine, build_session_factory, init_models
from marketplace_analytics.models.activity import ActivityEvent, EventType
from marketplace_analytics.services.event_log import EventLogError, SqlAlchemyEventLog


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}", echo=False)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def log(engine):
    return SqlAlchemyEventLog(build_session_factory(engine))


def event(listing_id, event_type=EventType.VIEW, age=timedelta(0), **metadata):
    return ActivityEvent(listing_id=listing_id, event_type=event_type, created_at=NOW - age, metadata=metadata)


async def test_batch_round_trip_keeps_metadata_and_assigns_ids(log):
    await log.insert_batch([event("a", ip="200.1.1.1", user_agent="UA"), event("a", EventType.CONTACT_PHONE)])

    stored = await log.query_events(["a"], since=NOW - timedelta(days=1))

    assert len(stored) == 2
    assert all(item.id for item in stored)
    by_type = {item.event_type: item for item in stored}
    assert by_type[EventType.VIEW].metadata == {"ip": "200.1.1.1", "user_agent": "UA"}
    assert by_type[EventType.VIEW].created_at == NOW


async def test_query_filters_window_types_and_orders_newest_first(log):
    await log.insert_batch([
        event("a", age=timedelta(hours=3)),
        event("a", age=timedelta(hours=1)),
        event("a", EventType.SHARE, age=timedelta(hours=2)),
        event("a", age=timedelta(days=40)),
        event("b", age=timedelta(hours=1)),
    ])

    views = await log.query_events(["a"], since=NOW - timedelta(days=30), event_types=[EventType.VIEW])
    newest = await log.query_events(["a", "b"], since=NOW - timedelta(days=30), limit=2)

    assert [NOW - item.created_at for item in views] == [timedelta(hours=1), timedelta(hours=3)]
    assert len(newest) == 2
    assert all(NOW - item.created_at == timedelta(hours=1) for item in newest)


async def test_empty_inputs(log):
    await log.insert_batch([])

    assert await log.query_events([], since=NOW) == []


async def test_duplicate_id_fails_whole_batch(log):
    await log.insert_batch([event("a").model_copy(update={"id": "fixed"})])

    with pytest.raises(EventLogError):
        await log.insert_batch([event("b"), event("c").model_copy(update={"id": "fixed"})])

    assert await log.query_events(["b"], since=NOW - timedelta(days=1)) == []
