# marketplace_analytics/models/activity_log.py
from sqlalchemy import JSON, Column, DateTime, Index, String

from marketplace_analytics.core.db import Base


class ActivityEventRecord(Base):
    """Строка журнала событий. Записи только добавляются, не изменяются и не удаляются."""
    __tablename__ = "activity_events"

    id = Column(String(36), primary_key=True)
    listing_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=True, index=True)
    event_type = Column(String(32), nullable=False, index=True)  # 'view', 'contact_whatsapp', ...
    # Атрибут не может называться metadata (зарезервировано в declarative)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_activity_events_listing_created", "listing_id", "created_at"),
    )
