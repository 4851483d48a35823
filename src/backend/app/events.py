from datetime import datetime, timezone
from typing import Dict, Any
import json
import logging
import redis

from .cache import _client as _get_redis

logger = logging.getLogger(__name__)


def emit_event(name: str, payload: Dict[str, Any]) -> None:
    event = {
        "name": name,
        "ts": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    logger.info("EVENT %s %s: %s", event["ts"], name, payload)
    # optional Redis publish
    client = _get_redis()
    if client is not None:
        try:
            client.publish("docbot.events", json.dumps(event))
        except redis.RedisError:
            logger.warning("event_publish_failed", extra={"event_name": name}, exc_info=True)
