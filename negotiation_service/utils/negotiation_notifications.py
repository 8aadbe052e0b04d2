# negotiation_service/utils/negotiation_notifications.py
"""
Fire-and-forget notification hook for negotiation state changes.

Events are published to Kafka; delivery to email / in-app is handled by the
consumers of NEGOTIATION_EVENTS_TOPIC. Nothing here ever raises: a failed
publish is logged and reported as False.
"""
import logging
from datetime import datetime, timezone
from functools import partial

from negotiation_service.core.config import settings

logger = logging.getLogger(__name__)

NEGOTIATION_EVENTS = {
    "negotiation_requested",
    "negotiation_responded",
    "negotiation_resolved",
    "negotiation_cancelled",
    "negotiation_expired",
}


def notify(event: str, payload: dict, producer=None) -> bool:
    """Publish one negotiation event. Returns True when handed to Kafka."""
    if not settings.NOTIFICATIONS_ENABLED:
        logger.debug(f"Skipping {event} notification - notifications disabled")
        return False
    if event not in NEGOTIATION_EVENTS:
        logger.warning(f"Unknown negotiation event '{event}'; not published")
        return False
    if producer is None:
        logger.debug(f"Skipping {event} notification - no Kafka producer")
        return False

    message = {
        "event": event,
        "payload": payload,
        "emitted_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        producer.send(
            settings.NEGOTIATION_EVENTS_TOPIC,
            key=str(payload.get("session_id", "")).encode("utf-8"),
            value=message,
        )
        logger.info(f"Published {event} for session {payload.get('session_id')}")
        return True
    except Exception as e:
        logger.error(f"Failed to publish {event} notification: {e}", exc_info=True)
        return False


def make_notifier(producer=None):
    """Bind a producer so the engine can call notifier(event, payload)."""
    return partial(notify, producer=producer)

