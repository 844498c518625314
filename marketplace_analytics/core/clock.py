# marketplace_analytics/core/clock.py
from datetime import datetime, timezone
from typing import Callable

# Все сервисы получают часы через конструктор, чтобы окна и TTL были детерминированы в тестах
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
