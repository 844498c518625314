# marketplace_analytics/core/cache.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Generic, Hashable, Optional, TypeVar

from marketplace_analytics.core.clock import Clock, utc_now

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    stored_at: datetime
    expires_at: datetime


class TTLCache(Generic[K, V]):
    """
    Простой in-memory TTL кэш в пределах процесса.

    Ключи типизированные (кортежи / NamedTuple), срок жизни хранится в записи.
    Просроченные записи удаляются лениво: при чтении ключа и при каждой
    записи (тогда вычищаются все истекшие). Таймеров и фонового обновления
    нет. Между воркерами кэш не разделяется.
    """

    def __init__(self, ttl: timedelta, clock: Clock = utc_now):
        if ttl <= timedelta(0):
            raise ValueError("TTL must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[K, CacheEntry[V]] = {}

    def get_entry(self, key: K) -> Optional[CacheEntry[V]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry

    def get(self, key: K) -> Optional[V]:
        entry = self.get_entry(key)
        return entry.value if entry else None

    def set(self, key: K, value: V) -> CacheEntry[V]:
        self.purge_expired()
        now = self._clock()
        entry = CacheEntry(value=value, stored_at=now, expires_at=now + self.ttl)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Удаляет все просроченные записи, возвращает их количество."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get_entry(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        """Число живых записей."""
        now = self._clock()
        return sum(1 for entry in self._entries.values() if entry.expires_at > now)
