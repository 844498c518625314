# marketplace_analytics/api/v1/endpoints/events.py
import logging

from fastapi import APIRouter, Depends, status

from marketplace_analytics.dependencies import get_client_context, get_event_collector
from marketplace_analytics.models.activity import ActivityEventCreate, ClientContext
from marketplace_analytics.services.event_collector import EventCollector

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=status.HTTP_202_ACCEPTED, summary="Зарегистрировать событие активности")
async def track_event(
    payload: ActivityEventCreate,
    context: ClientContext = Depends(get_client_context),
    collector: EventCollector = Depends(get_event_collector),
):
    """
    Принимает событие от фронтенда и ставит его в очередь на пакетную запись.
    Ошибки записи клиенту не возвращаются.
    """
    await collector.track_event(payload, context=context)
    return {"message": "Event accepted"}
