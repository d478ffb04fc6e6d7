"""Quota service — per-organization admission limits backed by Redis counters.

Three limits are enforced before a job is created:
- maximum file size
- monthly conversions (one unit reserved with INCR at admission, refunded
  if the job does not complete)
- concurrent conversions (a slot reserved with INCR, released when the job ends)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from mutate.core.config import settings
from mutate.core.models import QuotaDecision
from mutate.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)

MONTHLY_KEY_TTL_SECONDS = 40 * 24 * 60 * 60


def _active_key(organization_id: str) -> str:
    return f"mutate:quota:{organization_id}:active"


def _monthly_key(organization_id: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"mutate:quota:{organization_id}:usage:{now:%Y-%m}"


def _to_int(value) -> int:
    return int(value) if value is not None else 0


def _decrement_floor(client, key: str) -> int:
    remaining = client.decr(key)
    if remaining < 0:
        client.set(key, 0)
        logger.warning(f"Counter {key} went negative; reset to 0")
        return 0
    return remaining


def get_usage(organization_id: str) -> dict:
    client = get_redis_client()
    return {
        "activeConversions": _to_int(client.get(_active_key(organization_id))),
        "currentUsage": _to_int(client.get(_monthly_key(organization_id))),
        "concurrentConversionLimit": settings.concurrent_conversion_limit,
        "monthlyConversionLimit": settings.monthly_conversion_limit,
        "maxFileSizeMb": settings.max_file_size_mb,
    }


def check_and_reserve(organization_id: str, file_size_bytes: int) -> QuotaDecision:
    """Admit a conversion, reserving one monthly unit and one concurrency slot.

    Both counters are taken with INCR and handed back with DECR when over the
    limit, so concurrent admissions can never both take the last unit.
    """
    client = get_redis_client()
    file_size_mb = file_size_bytes / (1024 * 1024)

    if settings.max_file_size_mb and file_size_mb > settings.max_file_size_mb:
        return QuotaDecision(
            allowed=False,
            reason=f"File size ({file_size_mb:.1f}MB) exceeds plan limit of {settings.max_file_size_mb:g}MB",
        )

    monthly_key = _monthly_key(organization_id)
    monthly = client.incr(monthly_key)
    if monthly == 1:
        client.expire(monthly_key, MONTHLY_KEY_TTL_SECONDS)
    if settings.monthly_conversion_limit and monthly > settings.monthly_conversion_limit:
        client.decr(monthly_key)
        return QuotaDecision(
            allowed=False,
            reason=f"Monthly conversion limit reached ({settings.monthly_conversion_limit})",
            usage={"currentUsage": monthly - 1},
        )

    active_key = _active_key(organization_id)
    active = client.incr(active_key)
    if settings.concurrent_conversion_limit and active > settings.concurrent_conversion_limit:
        client.decr(active_key)
        client.decr(monthly_key)
        return QuotaDecision(
            allowed=False,
            reason=f"Concurrent conversion limit reached ({settings.concurrent_conversion_limit})",
            usage={"activeConversions": active - 1},
        )

    return QuotaDecision(
        allowed=True,
        usage={"activeConversions": active, "currentUsage": monthly},
    )


def release_slot(organization_id: str) -> None:
    """Hand back a concurrency slot taken by check_and_reserve."""
    _decrement_floor(get_redis_client(), _active_key(organization_id))


def refund_usage(organization_id: str) -> int:
    """Return the monthly unit of a conversion that did not complete."""
    return _decrement_floor(get_redis_client(), _monthly_key(organization_id))
