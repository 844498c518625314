# marketplace_analytics/services/event_log.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Collection, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from marketplace_analytics.core.utils import parse_datetime
from marketplace_analytics.models.activity import ActivityEvent, EventType
from marketplace_analytics.models.activity_log import ActivityEventRecord

logger = logging.getLogger(__name__)


class EventLogError(Exception):
    """Ошибка записи или чтения журнала событий."""
    def __init__(self, message="Ошибка при работе с журналом событий", details=None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class EventLog(Protocol):
    """
    Контракт постоянного журнала событий.

    insert_batch: одна пакетная запись, либо полный успех, либо EventLogError
    (частичный успех не сообщается и не обрабатывается).
    query_events: события по набору объявлений с created_at >= since,
    опционально по типам, от новых к старым.
    """

    async def insert_batch(self, events: Sequence[ActivityEvent]) -> None:
        ...

    async def query_events(
        self,
        listing_ids: Sequence[str],
        since: datetime,
        event_types: Optional[Collection[EventType]] = None,
        limit: Optional[int] = None,
    ) -> List[ActivityEvent]:
        ...


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlAlchemyEventLog:
    """Журнал событий поверх асинхронного SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def insert_batch(self, events: Sequence[ActivityEvent]) -> None:
        if not events:
            return
        records = [
            ActivityEventRecord(
                id=event.id or str(uuid.uuid4()),
                listing_id=event.listing_id,
                user_id=event.user_id,
                event_type=EventType(event.event_type).value,
                event_metadata=dict(event.metadata),
                created_at=_to_utc(event.created_at),
            )
            for event in events
        ]
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add_all(records)
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert batch of {len(records)} activity events: {e}")
            raise EventLogError("Не удалось сохранить пакет событий", details={"batch_size": len(records)}) from e
        logger.debug(f"Inserted batch of {len(records)} activity events.")

    async def query_events(
        self,
        listing_ids: Sequence[str],
        since: datetime,
        event_types: Optional[Collection[EventType]] = None,
        limit: Optional[int] = None,
    ) -> List[ActivityEvent]:
        if not listing_ids:
            return []
        query = (
            select(ActivityEventRecord)
            .where(ActivityEventRecord.listing_id.in_(list(listing_ids)))
            .where(ActivityEventRecord.created_at >= _to_utc(since))
        )
        if event_types:
            query = query.where(ActivityEventRecord.event_type.in_([EventType(t).value for t in event_types]))
        query = query.order_by(ActivityEventRecord.created_at.desc())
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to query activity events for {len(listing_ids)} listings: {e}")
            raise EventLogError("Не удалось прочитать журнал событий") from e

        return [self._to_event(row) for row in rows]

    @staticmethod
    def _to_event(row: ActivityEventRecord) -> ActivityEvent:
        return ActivityEvent(
            id=row.id,
            listing_id=row.listing_id,
            user_id=row.user_id,
            event_type=EventType(row.event_type),
            created_at=parse_datetime(row.created_at),
            metadata=row.event_metadata or {},
        )
