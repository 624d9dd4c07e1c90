import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from redis.exceptions import RedisError

from microlend.api import deps
from microlend.core.settings import settings
from microlend.models.user import User
from microlend.services import event_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/stream", summary="Stream tenant events (SSE)")
async def stream_events(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_authenticated_user),
):
    channel = event_stream.channel_for_tenant(ctx.tenant_id)
    try:
        pubsub = await event_stream.subscribe(channel)
    except RedisError as exc:
        logger.warning("Event stream subscribe failed for tenant %s: %s", ctx.tenant_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "event_stream_unavailable", "message": "Live events are temporarily unavailable"},
        ) from exc

    async def event_generator():
        try:
            yield ": connected\n\n"
            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=settings.event_stream_keepalive_seconds
                )
                if message and message.get("data"):
                    yield event_stream.format_sse(message["data"])
                else:
                    yield ": keep-alive\n\n"
                await asyncio.sleep(0)
        finally:
            await event_stream.unsubscribe(pubsub, channel)

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=headers)
