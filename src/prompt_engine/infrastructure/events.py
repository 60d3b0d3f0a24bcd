from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger("prompt_engine.events")

CHANNEL_PREFIX = "prompt_engine.events"


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client: Optional[redis.Redis] = None
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except Exception as exc:
            logger.debug("event publisher offline: %s", exc)
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        if not self._client:
            self._connect()
        if not self._client:
            return
        try:
            self._client.publish(channel, json.dumps(payload))
        except Exception as exc:
            logger.debug("event publish failed on %s: %s", channel, exc)
            self._client = None


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(event_type: str, payload: Dict[str, Any]) -> None:
    """Fire-and-forget notification for other subscribers (collaborators, dashboards)."""
    publisher = _get_publisher()
    if not publisher:
        return
    publisher.publish(f"{CHANNEL_PREFIX}.{event_type}", payload)


def load_event_client() -> Optional[_RedisPublisher]:
    return _get_publisher()
