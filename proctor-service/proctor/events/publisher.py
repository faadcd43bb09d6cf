"""
Forwards proctor events to RabbitMQ for downstream audit and notification
services.

Exchange: ``settings.events_exchange`` (topic), routing key = event name.

Message contract (JSON):
{
    "event":     "proctor.violation.recorded",
    "session":   {...},            # session snapshot, violations included
    "violation": {...} | null,     # present for violation events
    "reason":    "..." | null      # present for terminations
}
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import pika
from pydantic import BaseModel

from proctor.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Thread-local storage so each worker thread has its own publisher connection
_local = threading.local()


def _get_channel() -> pika.adapters.blocking_connection.BlockingChannel:
    """
    Returns a per-thread pika channel, reconnecting if the connection is closed.
    BlockingConnection is not thread-safe, and publishes run on the default
    executor's threads.
    """
    conn: pika.BlockingConnection | None = getattr(_local, "connection", None)
    if conn is None or conn.is_closed:
        params = pika.URLParameters(settings.rabbitmq_url)
        params.heartbeat = 60
        params.blocked_connection_timeout = 30
        _local.connection = pika.BlockingConnection(params)
        _local.channel = _local.connection.channel()
        _local.channel.exchange_declare(
            exchange=settings.events_exchange,
            exchange_type="topic",
            durable=True,
        )
        logger.info("Publisher: connected to RabbitMQ (thread %s)", threading.get_ident())

    return _local.channel


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses / enums / datetimes / pydantic models into JSON types."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def publish_event(event_name: str, payload: dict[str, Any]) -> None:
    """Publish one proctor event. Retries once on connection failure."""
    body = {
        "event":     event_name,
        "session":   to_jsonable(payload.get("session")),
        "violation": to_jsonable(payload.get("violation")),
        "reason":    payload.get("reason"),
    }
    _publish_with_retry(event_name, body)


def _publish_with_retry(routing_key: str, body: dict, attempts: int = 2) -> None:
    payload = json.dumps(body).encode()
    for attempt in range(1, attempts + 1):
        try:
            channel = _get_channel()
            channel.basic_publish(
                exchange=settings.events_exchange,
                routing_key=routing_key,
                body=payload,
                properties=pika.BasicProperties(
                    content_type="application/json",
                    delivery_mode=pika.DeliveryMode.Persistent,
                ),
            )
            logger.debug("Published %s → sessionId=%s",
                         routing_key, (body.get("session") or {}).get("id"))
            return
        except Exception as exc:
            logger.warning("Publish attempt %d/%d failed: %s", attempt, attempts, exc)
            # Reset the thread-local connection so it is recreated on next call
            _local.connection = None
            if attempt == attempts:
                logger.error(
                    "Failed to publish %s after %d attempts, message dropped",
                    routing_key, attempts,
                )


class RabbitEventPublisher:
    """EventBus subscriber that forwards every event to RabbitMQ off the loop."""

    async def __call__(self, event_name: str, payload: dict[str, Any]) -> None:
        # Snapshot now; the session may change once the caller releases its lock.
        snapshot = {
            "session":   to_jsonable(payload.get("session")),
            "violation": to_jsonable(payload.get("violation")),
            "reason":    payload.get("reason"),
        }
        await asyncio.to_thread(publish_event, event_name, snapshot)
