# marketplace_analytics/core/constants.py
"""
Фиксированные параметры конвейера аналитики.

Не читаются из окружения: конструкторы сервисов принимают переопределения
только для тестов.
"""
from datetime import timedelta

# --- Сборщик событий ---
BATCH_SIZE = 10
QUEUE_FLUSH_INTERVAL_SECONDS = 5.0

# --- Кэши ---
GEOLOCATION_CACHE_TTL = timedelta(hours=24)
BENCHMARK_CACHE_TTL = timedelta(hours=6)

# --- Окна агрегации ---
RECENT_WINDOW = timedelta(hours=24)
TOTALS_WINDOW = timedelta(days=30)
RECENT_EVENTS_LIMIT = 50
GEO_TREND_WINDOW = timedelta(days=7)

# --- Размеры выдачи ---
TOP_CITIES_LIMIT = 10
TOP_REGIONS_LIMIT = 5
TOP_PERFORMERS_LIMIT = 5

ACTIVE_PERIOD_LABEL = "30 days"
GEO_TREND_PERIOD_LABEL = "last 7 days"
