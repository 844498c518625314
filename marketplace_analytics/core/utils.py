# marketplace_analytics/core/utils.py
import ipaddress
import logging
import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """
    Округление до ближайшего целого, половины округляются вверх (к +inf).
    Встроенный round() округляет половины к четному, для процентов это дает 12 вместо 13.
    """
    return int(math.floor(value + 0.5))


def is_public_ip(ip: Optional[str]) -> bool:
    """True, если адрес имеет смысл отправлять провайдеру геолокации."""
    if not ip:
        return False
    candidate = ip.strip()
    if not candidate or candidate.lower() == "localhost":
        return False
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        logger.debug(f"Value '{candidate}' is not a valid IP address, skipping lookup.")
        return False
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


def client_ip_from_headers(headers: Mapping[str, str], peer_host: Optional[str] = None) -> Optional[str]:
    """
    Определяет IP клиента: первый адрес из X-Forwarded-For, затем X-Real-IP,
    затем адрес соединения.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer_host or None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Разбирает datetime или ISO-строку (в т.ч. с 'Z'); naive значения считаются UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
