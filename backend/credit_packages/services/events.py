"""
backend/credit_packages/services/events.py

Event emitter: pushes package lifecycle events to a Redis queue for the
notification consumers.

Queue (settings.events_queue, default `events:p2p`): one JSON document per
event: {"type": ..., "company_id": ..., <payload>, "ts": <unix seconds>}.

Emission is fire-and-forget: the ledger state is already committed when an
event is emitted, so a Redis failure is logged and never raised.
"""

import json
import time
import logging

from ..config import settings
from ..redis_client import redis_client

logger = logging.getLogger(__name__)


def emit_event(event_type: str, payload: dict) -> None:
    """Emit a package event to the events queue."""
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis_client.rpush(settings.events_queue, json.dumps(event, default=str))
        logger.info(f"Event emitted: {event_type} → {settings.events_queue}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")
