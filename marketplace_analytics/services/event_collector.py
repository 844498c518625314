# marketplace_analytics/services/event_collector.py
import asyncio
import logging
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, Union

from pydantic import ValidationError

from marketplace_analytics.core.clock import Clock, utc_now
from marketplace_analytics.core.constants import BATCH_SIZE, QUEUE_FLUSH_INTERVAL_SECONDS
from marketplace_analytics.models.activity import ActivityEvent, ActivityEventCreate, ClientContext, EventType
from marketplace_analytics.services.event_log import EventLog

logger = logging.getLogger(__name__)

IpResolver = Callable[[], Awaitable[Optional[str]]]


@dataclass
class _QueuedEvent:
    event: ActivityEvent
    attempts: int = 0


@dataclass(frozen=True)
class FlushReport:
    """Итог одной попытки сброса очереди."""
    submitted: int = 0
    succeeded: bool = True
    skipped: bool = False
    requeued: int = 0
    dead_lettered: int = 0


class EventCollector:
    """
    Буфер событий активности с пакетной отправкой в журнал.

    События копятся в FIFO-очереди процесса и уходят пачками по batch_size:
    либо когда очередь заполнилась, либо по таймеру. Во время сброса новый
    сброс пропускается (флаг, а не блокировка). При ошибке записи пачка
    возвращается в голову очереди в исходном порядке, поэтому доставка
    "как минимум один раз": при неоднозначном сбое возможны дубликаты.

    max_attempts=None сохраняет бесконечные повторы. Целое значение
    ограничивает число попыток на событие; исчерпавшие лимит события
    перекладываются в dead_letters, иначе одно "ядовитое" событие
    навсегда блокирует голову очереди.
    """

    def __init__(
        self,
        event_log: EventLog,
        *,
        clock: Clock = utc_now,
        ip_resolver: Optional[IpResolver] = None,
        default_context: Optional[ClientContext] = None,
        batch_size: int = BATCH_SIZE,
        flush_interval: float = QUEUE_FLUSH_INTERVAL_SECONDS,
        max_attempts: Optional[int] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        self._event_log = event_log
        self._clock = clock
        self._ip_resolver = ip_resolver
        self._resolved_ip: Optional[str] = None
        self.default_context = default_context or ClientContext()
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_attempts = max_attempts

        self._queue: Deque[_QueuedEvent] = deque()
        self._dead_letters: List[ActivityEvent] = []
        self._is_flushing = False
        self._timer_task: Optional[asyncio.Task] = None
        self._flush_tasks: Set[asyncio.Task] = set()

    # --- Состояние ---

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def pending_events(self) -> Tuple[ActivityEvent, ...]:
        return tuple(item.event for item in self._queue)

    @property
    def is_flushing(self) -> bool:
        return self._is_flushing

    @property
    def dead_letters(self) -> Tuple[ActivityEvent, ...]:
        return tuple(self._dead_letters)

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    # --- Прием событий ---

    async def track_event(
        self,
        event: Union[ActivityEventCreate, Dict[str, Any]],
        context: Optional[ClientContext] = None,
    ) -> None:
        """
        Ставит событие в очередь. Никогда не бросает исключений: некорректное
        событие логируется и отбрасывается.
        """
        try:
            payload = event if isinstance(event, ActivityEventCreate) else ActivityEventCreate.model_validate(event)
        except ValidationError as e:
            logger.warning(f"Dropping invalid activity event: {e.error_count()} validation errors ({e.errors()[0]['msg']})")
            return

        ctx = context or self.default_context
        metadata = dict(payload.metadata)
        if ctx.user_agent:
            metadata.setdefault("user_agent", ctx.user_agent)
        if ctx.referrer:
            metadata.setdefault("referrer", ctx.referrer)
        if "ip" not in metadata:
            ip = ctx.ip or await self._resolve_ip()
            if ip:
                metadata["ip"] = ip

        queued = ActivityEvent(
            listing_id=payload.listing_id,
            user_id=payload.user_id,
            event_type=payload.event_type,
            created_at=self._clock(),
            metadata=metadata,
        )
        self._queue.append(_QueuedEvent(queued))
        logger.debug(f"Queued '{queued.event_type.value}' event for listing {queued.listing_id}. Queue size: {len(self._queue)}")

        if len(self._queue) >= self.batch_size:
            self._schedule_flush()

    async def _resolve_ip(self) -> Optional[str]:
        """Best-effort определение IP; любая ошибка означает "IP неизвестен"."""
        if self._resolved_ip or not self._ip_resolver:
            return self._resolved_ip
        try:
            self._resolved_ip = await self._ip_resolver()
        except Exception as e:
            logger.debug(f"Client IP lookup failed, continuing without IP: {e}")
            return None
        return self._resolved_ip

    def _schedule_flush(self) -> None:
        # Запись идет в фоне, вызывающий код не ждет сеть
        task = asyncio.create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def wait_for_pending_flushes(self) -> None:
        """Дожидается сбросов, запущенных из track_event."""
        while self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)

    # --- Сброс очереди ---

    async def flush(self) -> FlushReport:
        """
        Отправляет до batch_size событий из головы очереди одной пачкой.
        Если сброс уже идет, вызов пропускается, а не ставится в ожидание.
        """
        if self._is_flushing:
            logger.debug("Flush already in progress, skipping.")
            return FlushReport(succeeded=False, skipped=True)
        if not self._queue:
            return FlushReport()

        self._is_flushing = True
        count = min(self.batch_size, len(self._queue))
        batch = [self._queue.popleft() for _ in range(count)]
        try:
            await self._event_log.insert_batch([item.event for item in batch])
        except asyncio.CancelledError:
            self._queue.extendleft(reversed(batch))
            raise
        except Exception as e:
            logger.warning(f"Failed to persist batch of {len(batch)} events, requeueing: {e}")
            return self._requeue(batch)
        finally:
            self._is_flushing = False

        logger.info(f"Flushed {len(batch)} activity events. Remaining in queue: {len(self._queue)}")
        return FlushReport(submitted=len(batch))

    def _requeue(self, batch: List[_QueuedEvent]) -> FlushReport:
        for item in batch:
            item.attempts += 1

        retry = batch
        dead: List[_QueuedEvent] = []
        if self.max_attempts is not None:
            retry = [item for item in batch if item.attempts < self.max_attempts]
            dead = [item for item in batch if item.attempts >= self.max_attempts]

        # extendleft разворачивает порядок, поэтому подаем пачку задом наперед
        self._queue.extendleft(reversed(retry))

        if dead:
            self._dead_letters.extend(item.event for item in dead)
            logger.error(
                f"Moved {len(dead)} events to dead letters after {self.max_attempts} failed attempts "
                f"(listings: {sorted({item.event.listing_id for item in dead})})"
            )
        return FlushReport(submitted=len(batch), succeeded=False, requeued=len(retry), dead_lettered=len(dead))

    async def tick(self) -> FlushReport:
        """Срабатывание таймера."""
        return await self.flush()

    # --- Таймер ---

    def start(self) -> None:
        if self.is_running:
            return
        self._timer_task = asyncio.create_task(self._run_timer(), name="activity-event-flush")
        logger.info(f"Event collector started (batch size {self.batch_size}, interval {self.flush_interval}s).")

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.tick()

    async def stop(self, drain: bool = True) -> None:
        """Останавливает таймер и, по умолчанию, пытается отправить остаток очереди."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None
        await self.wait_for_pending_flushes()

        if drain:
            while self._queue:
                report = await self.flush()
                if not report.succeeded:
                    logger.warning(f"Stopping with {len(self._queue)} undelivered events in queue.")
                    break
        logger.info("Event collector stopped.")

    def clear_dead_letters(self) -> List[ActivityEvent]:
        dead, self._dead_letters = self._dead_letters, []
        return dead

    # --- Удобные методы для мест инструментирования ---

    async def _track(self, listing_id: str, event_type: EventType, user_id: Optional[str] = None, **metadata: Any) -> None:
        await self.track_event({
            "listing_id": listing_id,
            "user_id": user_id,
            "event_type": event_type,
            "metadata": {k: v for k, v in metadata.items() if v is not None},
        })

    async def track_view(self, listing_id: str) -> None:
        await self._track(listing_id, EventType.VIEW)

    async def track_whatsapp_contact(self, listing_id: str, user_id: Optional[str] = None) -> None:
        await self._track(listing_id, EventType.CONTACT_WHATSAPP, user_id)

    async def track_phone_contact(self, listing_id: str, user_id: Optional[str] = None) -> None:
        await self._track(listing_id, EventType.CONTACT_PHONE, user_id)

    async def track_email_contact(self, listing_id: str, user_id: Optional[str] = None) -> None:
        await self._track(listing_id, EventType.CONTACT_EMAIL, user_id)

    async def track_favorite_add(self, listing_id: str, user_id: str) -> None:
        await self._track(listing_id, EventType.FAVORITE_ADD, user_id)

    async def track_favorite_remove(self, listing_id: str, user_id: str) -> None:
        await self._track(listing_id, EventType.FAVORITE_REMOVE, user_id)

    async def track_review(self, listing_id: str, user_id: str) -> None:
        await self._track(listing_id, EventType.REVIEW, user_id)

    async def track_share(self, listing_id: str, platform: str) -> None:
        await self._track(listing_id, EventType.SHARE, platform=platform)

    async def track_listing_created(self, listing_id: str, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self._track(listing_id, EventType.LISTING_CREATED, user_id, **(metadata or {}))

    async def track_listing_updated(
        self, listing_id: str, user_id: str, changed_fields: List[str], metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        await self._track(listing_id, EventType.LISTING_UPDATED, user_id, changedFields=changed_fields, **(metadata or {}))

    async def track_price_updated(self, listing_id: str, user_id: str, old_price: float, new_price: float) -> None:
        await self._track(listing_id, EventType.PRICE_UPDATED, user_id, oldPrice=old_price, newPrice=new_price)

    async def track_photos_updated(
        self, listing_id: str, user_id: str, action: str, photo_count: Optional[int] = None
    ) -> None:
        # action: 'added' | 'removed' | 'updated'
        await self._track(listing_id, EventType.PHOTOS_UPDATED, user_id, action=action, photoCount=photo_count)

    async def track_description_updated(self, listing_id: str, user_id: str) -> None:
        await self._track(listing_id, EventType.DESCRIPTION_UPDATED, user_id)

    async def track_contact_updated(self, listing_id: str, user_id: str, updated_fields: List[str]) -> None:
        await self._track(listing_id, EventType.CONTACT_UPDATED, user_id, updatedFields=updated_fields)
