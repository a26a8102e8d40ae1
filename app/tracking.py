"""
tracking.py — Account Activity Tracking & Retention
Water Quality Tracker

Tracking is best-effort: a failed write is logged and dropped, never retried
and never surfaced to the request that triggered it.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional
from fastapi import Request
from loguru import logger
from app.models.db_models import TrackingAction
from app.repository import Repository
from app.utils import utcnow


def request_meta(request: Request) -> Dict[str, Optional[str]]:
    """Client address and user agent of the current request."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def track_event(
    repository: Repository,
    user_id: str,
    action: TrackingAction,
    meta: Dict[str, Optional[str]],
    metadata: Optional[Dict] = None,
) -> None:
    try:
        await repository.append_tracking_event({
            "user_id": user_id,
            "action": TrackingAction(action).value,
            "ip_address": meta.get("ip_address"),
            "user_agent": meta.get("user_agent"),
            "metadata": metadata or {},
        })
        logger.debug(f"Tracked {TrackingAction(action).value} for user {user_id} ({repository.mode})")
    except Exception as e:
        logger.error(f"Error tracking {action} for user {user_id}: {e!r}")


async def purge_expired_events(
    repository: Repository,
    retention_days: int,
    now: Optional[datetime] = None,
) -> int:
    """Delete tracking events older than the retention window."""
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    removed = await repository.purge_tracking_events(cutoff)
    logger.info(f"Tracking cleanup: removed {removed} events recorded before {cutoff.isoformat()}.")
    return removed
