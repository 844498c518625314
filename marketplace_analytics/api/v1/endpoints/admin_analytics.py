# marketplace_analytics/api/v1/endpoints/admin_analytics.py
from fastapi import APIRouter, Depends

from marketplace_analytics.dependencies import (
    get_competitor_service,
    get_event_collector,
    get_geolocation_service,
    verify_admin_api_key,
)
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.event_collector import EventCollector
from marketplace_analytics.services.geolocation import GeolocationService

router = APIRouter(prefix="/admin/analytics", tags=["Admin Analytics"], dependencies=[Depends(verify_admin_api_key)])


@router.get("/queue")
async def get_queue_status(collector: EventCollector = Depends(get_event_collector)):
    """Состояние очереди событий текущего воркера."""
    return {
        "queue_size": collector.queue_size,
        "is_flushing": collector.is_flushing,
        "is_running": collector.is_running,
        "dead_letters": len(collector.dead_letters),
    }


@router.post("/flush")
async def flush_queue(collector: EventCollector = Depends(get_event_collector)):
    """Внеочередной сброс одной пачки событий."""
    report = await collector.flush()
    return {
        "submitted": report.submitted,
        "succeeded": report.succeeded,
        "skipped": report.skipped,
        "requeued": report.requeued,
        "dead_lettered": report.dead_lettered,
        "queue_size": collector.queue_size,
    }


@router.post("/cache/clear")
async def clear_caches(
    geolocation: GeolocationService = Depends(get_geolocation_service),
    competitor: CompetitorAnalysisService = Depends(get_competitor_service),
):
    """Сбрасывает кэши геолокации и бенчмарков в этом процессе."""
    cleared = {"geolocation": geolocation.cache_size, "benchmarks": competitor.cache_size}
    geolocation.clear_cache()
    competitor.clear_cache()
    return {"cleared": cleared}
