# marketplace_analytics/dependencies.py
import hmac
import logging

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from marketplace_analytics.core.config import settings
from marketplace_analytics.core.utils import client_ip_from_headers
from marketplace_analytics.models.activity import ClientContext
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.event_collector import EventCollector
from marketplace_analytics.services.geolocation import GeolocationService
from marketplace_analytics.services.insights import InsightComposer
from marketplace_analytics.services.metrics import MetricsAggregator

logger = logging.getLogger(__name__)

# Определяем схему для заголовка X-Admin-API-Key
api_key_header_admin = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def verify_admin_api_key(api_key: str = Security(api_key_header_admin)):
    """
    Зависимость для проверки секретного ключа доступа к админским API.
    Сравнивает значение из заголовка X-Admin-API-Key с ключом из настроек.
    """
    if not settings.ADMIN_API_KEY:
        logger.critical("Admin API Key is not configured on the server!")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Функция администратора временно недоступна."
        )
    if not api_key or not hmac.compare_digest(api_key, settings.ADMIN_API_KEY):
        logger.warning("Invalid or missing Admin API Key received.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Недействительный или отсутствующий ключ API администратора."
        )
    return True


def _get_state_service(request: Request, name: str, expected_type: type, label: str):
    service = getattr(request.app.state, name, None)
    if not service or not isinstance(service, expected_type):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Сервис {label} недоступен."
        )
    return service


async def get_event_collector(request: Request) -> EventCollector:
    return _get_state_service(request, "event_collector", EventCollector, "сбора событий")


async def get_metrics_aggregator(request: Request) -> MetricsAggregator:
    return _get_state_service(request, "metrics_aggregator", MetricsAggregator, "метрик")


async def get_geolocation_service(request: Request) -> GeolocationService:
    return _get_state_service(request, "geolocation_service", GeolocationService, "геолокации")


async def get_competitor_service(request: Request) -> CompetitorAnalysisService:
    return _get_state_service(request, "competitor_service", CompetitorAnalysisService, "конкурентного анализа")


async def get_insight_composer(request: Request) -> InsightComposer:
    return _get_state_service(request, "insight_composer", InsightComposer, "инсайтов")


async def get_client_context(request: Request) -> ClientContext:
    """Контекст клиента из заголовков запроса: User-Agent, Referer и IP."""
    peer_host = request.client.host if request.client else None
    return ClientContext(
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
        ip=client_ip_from_headers(request.headers, peer_host),
    )
