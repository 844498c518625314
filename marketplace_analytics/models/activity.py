# marketplace_analytics/models/activity.py
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from marketplace_analytics.models.competitive import CompetitiveInsight
from marketplace_analytics.models.geolocation import GeographicInsight


class EventType(str, Enum):
    """Фиксированный набор типов событий активности."""
    VIEW = "view"
    CONTACT_WHATSAPP = "contact_whatsapp"
    CONTACT_PHONE = "contact_phone"
    CONTACT_EMAIL = "contact_email"
    FAVORITE_ADD = "favorite_add"
    FAVORITE_REMOVE = "favorite_remove"
    REVIEW = "review"
    SHARE = "share"
    LISTING_CREATED = "listing_created"
    LISTING_UPDATED = "listing_updated"
    PRICE_UPDATED = "price_updated"
    PHOTOS_UPDATED = "photos_updated"
    DESCRIPTION_UPDATED = "description_updated"
    CONTACT_UPDATED = "contact_updated"
    STATUS_CHANGE = "status_change"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    PAYMENT_SUCCEEDED = "payment_succeeded"


# Три канала связи сворачиваются в одну метрику "контакты"
CONTACT_EVENT_TYPES: FrozenSet[EventType] = frozenset({
    EventType.CONTACT_WHATSAPP,
    EventType.CONTACT_PHONE,
    EventType.CONTACT_EMAIL,
})


class ClientContext(BaseModel):
    """Контекст клиента, которым дополняется каждое событие."""
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    ip: Optional[str] = None


class ActivityEventCreate(BaseModel):
    """Событие от места инструментирования, до получения id и created_at."""
    listing_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    event_type: EventType
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("listing_id")
    @classmethod
    def listing_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("listing_id must not be blank")
        return value


class ActivityEvent(BaseModel):
    """Неизменяемая запись о действии пользователя/посетителя с объявлением."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    listing_id: str
    user_id: Optional[str] = None
    event_type: EventType
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ip(self) -> Optional[str]:
        value = self.metadata.get("ip")
        return value if isinstance(value, str) and value else None

    @property
    def location(self) -> Optional[Dict[str, Any]]:
        value = self.metadata.get("location")
        return value if isinstance(value, dict) else None


class MetricsSummary(BaseModel):
    """Дневная сводка по объявлению. Производное представление журнала, не источник истины."""
    id: Optional[str] = None
    listing_id: str
    date: date
    views_count: int = 0
    contacts_count: int = 0
    favorites_count: int = 0
    reviews_count: int = 0
    shares_count: int = 0
    updated_at: Optional[datetime] = None


class RealTimeMetrics(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_views: int = 0
    total_contacts: int = 0
    total_favorites: int = 0
    total_reviews: int = 0
    recent_events: List[ActivityEvent] = []
    # Зарезервировано: дневные агрегаты не хранятся, всегда пусто
    daily_metrics: List[MetricsSummary] = []
    geographic_insights: Optional[GeographicInsight] = None
    competitive_insights: Optional[List[CompetitiveInsight]] = None

    @classmethod
    def empty(cls) -> "RealTimeMetrics":
        return cls()
