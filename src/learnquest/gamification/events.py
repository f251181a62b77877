"""Best-effort Redis pub/sub broadcast of engine events.

Notification delivery belongs to downstream consumers; publishing failures
are logged and never surface to the caller.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

logger = structlog.get_logger()

POINTS_CHANNEL = "pubsub:points_awarded"
BADGE_CHANNEL = "pubsub:badge_earned"
STREAK_CHANNEL = "pubsub:streak_update"


async def publish_event(redis: object, channel: str, payload: dict[str, Any]) -> bool:
    """Publish ``payload`` as JSON on ``channel``. Returns True if sent."""
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("event_publish_failed", channel=channel, exc_info=True)
        return False
    return True
