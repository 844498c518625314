# marketplace_analytics/models/listing.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

# Упрощенные модели каталога: берем только поля, нужные аналитике


class Category(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    name: str
    slug: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        # В API маркетплейса id категорий числовые
        return str(value)


class Listing(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    user_id: str
    category_id: str
    title: str = ""
    status: str = "active"  # 'active', 'inactive', 'pending', 'rejected', 'suspended'

    @field_validator("id", "user_id", "category_id", mode="before")
    @classmethod
    def coerce_ids(cls, value):
        return str(value)

    @property
    def is_active(self) -> bool:
        return self.status == "active"
