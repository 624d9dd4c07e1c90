from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from microlend.utils.redis_client import get_redis_client, redis_key

CHANNEL_PREFIX = "events"

BORROWER_CHANGED = "borrower.changed"
LOAN_CHANGED = "loan.changed"
REPAYMENT_CREATED = "repayment.created"
SAVINGS_CHANGED = "savings.changed"
REPORT_READY = "report.ready"

logger = logging.getLogger(__name__)


def channel_for_tenant(tenant_id: str) -> str:
    return redis_key(CHANNEL_PREFIX, tenant_id)


def build_message(event: str, data: dict[str, Any]) -> str:
    return json.dumps(
        jsonable_encoder(
            {"event": event, "data": data, "at": datetime.now(timezone.utc).isoformat()}
        )
    )


async def publish(tenant_id: str, event: str, data: dict[str, Any]) -> None:
    """Fan an event out to every open stream for the tenant.

    Publishing happens after the business commit, so a Redis outage only costs
    the live notification.
    """
    try:
        await get_redis_client().publish(channel_for_tenant(tenant_id), build_message(event, data))
    except (RedisError, OSError) as exc:
        logger.warning("Event publish failed", extra={"event": event, "error": str(exc)})


async def subscribe(channel: str) -> PubSub:
    redis = get_redis_client()
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    return pubsub


async def unsubscribe(pubsub: PubSub, channel: str) -> None:
    try:
        # Redis/network blips should not block app shutdown/reload.
        await asyncio.wait_for(pubsub.unsubscribe(channel), timeout=2.0)
    except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
        logger.warning("Event unsubscribe failed: %s", exc)
    finally:
        try:
            await asyncio.wait_for(pubsub.close(), timeout=2.0)
        except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
            logger.warning("Event pubsub close failed: %s", exc)


def format_sse(message: dict[str, Any] | str) -> str:
    if isinstance(message, str):
        try:
            message = json.loads(message)
        except json.JSONDecodeError:
            return f"data: {message}\n\n"
    event = message.get("event") or "message"
    return f"event: {event}\ndata: {json.dumps(message)}\n\n"
