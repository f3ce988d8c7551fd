"""
Realtime Notification Service.

Publishes broadcast events on redis channels (one per order) for clients
listening for payment updates. Fire-and-forget: failures are logged only.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger("dinetrack.notifications")


def order_topic(order_id: str) -> str:
    return f"order-{order_id}"


class RealtimeNotifier:

    def __init__(self, redis):
        self.redis = redis

    async def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Publish one broadcast message.

        Returns:
            True if the message reached redis, False otherwise
        """
        message = json.dumps({
            "type": "broadcast",
            "event": event,
            "payload": payload,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }, default=str)
        try:
            await self.redis.publish(topic, message)
        except Exception:
            logger.exception("Realtime publish failed on %s (%s)", topic, event)
            return False

        logger.info("Realtime %s sent on %s", event, topic)
        return True
