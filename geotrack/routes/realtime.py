"""
Real-time Location Routes

    WS  /ws?token=...&subjects=1,2    WebSocket stream of location:updated events
    GET /events?subjects=1,2          the same stream as Server-Sent Events

Both transports are for operators. Every forwarded event is redacted
against the subject's current consent and audited as a view_current
disclosure; events for subjects without consent are not forwarded.
Events are cache-invalidation hints: after (re)connecting, dashboards
must re-query /current.

WebSocket messages (client -> server):
    {"type": "ping"}
    {"type": "subscribe", "subject_id": 7}
    {"type": "unsubscribe", "subject_id": 7}
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse

from geotrack.auth import client_ip, get_user_from_token, require_operator
from geotrack.config import settings
from geotrack.database import get_db_context
from geotrack.exceptions import GeoTrackError
from geotrack.schemas.caller import Caller
from geotrack.services.location_query_service import LocationQueryService, get_location_query_service
from geotrack.services.realtime_notifier import (
    LocationEvent,
    RealtimeNotifier,
    Subscription,
    get_realtime_notifier,
)

router = APIRouter(tags=["Real-time"])
logger = logging.getLogger(__name__)


def parse_subjects(raw: str | None) -> set[int] | None:
    """Parse a comma-separated subject id list; None means every subject."""
    if not raw:
        return None
    try:
        return {int(part) for part in raw.split(",") if part.strip()}
    except ValueError:
        return None


async def _disclose(queries: LocationQueryService, caller: Caller, event: LocationEvent) -> dict | None:
    async with get_db_context() as db:
        data = await queries.disclose_event(caller, event, db)
    if data is None:
        return None
    return {
        "type": event.type,
        "data": data,
        "timestamp": event.published_at.isoformat(),
    }


# ── WebSocket ─────────────────────────────────────────────────────────────────


async def _forward_events(
    websocket: WebSocket,
    subscription: Subscription,
    queries: LocationQueryService,
    caller: Caller,
) -> None:
    while True:
        event = await subscription.get()
        message = await _disclose(queries, caller, event)
        if message is not None:
            await websocket.send_json(message)


async def _receive_commands(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        data = await websocket.receive_text()
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            await websocket.send_json({"type": "error", "message": "Invalid JSON"})
            continue
        if not isinstance(message, dict):
            await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
            continue

        msg_type = message.get("type")
        if msg_type in ("ping", "heartbeat"):
            await websocket.send_json({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})
        elif msg_type in ("subscribe", "unsubscribe") and isinstance(message.get("subject_id"), int):
            subject_id = message["subject_id"]
            if msg_type == "subscribe":
                subscription.follow(subject_id)
            else:
                subscription.unfollow(subject_id)
            await websocket.send_json({"type": f"{msg_type}d", "subject_id": subject_id})
        else:
            await websocket.send_json({"type": "error", "message": f"Unsupported message type: {msg_type}"})


@router.websocket("/ws")
async def location_websocket(
    websocket: WebSocket,
    token: Annotated[str | None, Query()] = None,
    subjects: Annotated[str | None, Query()] = None,
    notifier: RealtimeNotifier = Depends(get_realtime_notifier),
    queries: LocationQueryService = Depends(get_location_query_service),
):
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        async with get_db_context() as db:
            user = await get_user_from_token(token, db)
    except GeoTrackError as exc:
        logger.info("Location websocket rejected: %s", exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    caller = Caller(user_id=user.id, role=user.role, ip_address=client_ip(websocket))
    if not caller.is_operator:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = notifier.subscribe(parse_subjects(subjects))
    await websocket.send_json(
        {
            "type": "connected",
            "subscription_id": subscription.id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )

    tasks = [
        asyncio.create_task(_forward_events(websocket, subscription, queries, caller)),
        asyncio.create_task(_receive_commands(websocket, subscription)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"Location websocket error: {exc}")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        notifier.unsubscribe(subscription)
        logger.info("Location websocket closed for operator %d", caller.user_id)


# ── Server-Sent Events ────────────────────────────────────────────────────────


async def _event_stream(
    request: Request,
    subscription: Subscription,
    notifier: RealtimeNotifier,
    queries: LocationQueryService,
    caller: Caller,
):
    """Yield SSE-formatted events with a keepalive comment while idle.

    Unsubscribes on client disconnect or generator exhaustion.
    """
    try:
        connected = json.dumps(
            {
                "type": "connected",
                "data": {"subscription_id": subscription.id},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )
        yield f"data: {connected}\n\n"

        while True:
            if await request.is_disconnected():
                logger.debug("SSE client disconnected")
                break
            try:
                event = await asyncio.wait_for(
                    subscription.get(),
                    timeout=float(settings.sse_keepalive_interval),
                )
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue

            message = await _disclose(queries, caller, event)
            if message is not None:
                yield f"event: {event.type}\ndata: {json.dumps(message)}\n\n"
    finally:
        notifier.unsubscribe(subscription)


@router.get("/events")
async def location_events(
    request: Request,
    subjects: str | None = None,
    caller: Caller = Depends(require_operator),
    notifier: RealtimeNotifier = Depends(get_realtime_notifier),
    queries: LocationQueryService = Depends(get_location_query_service),
) -> StreamingResponse:
    subscription = notifier.subscribe(parse_subjects(subjects))
    return StreamingResponse(
        _event_stream(request, subscription, notifier, queries, caller),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/events/stats")
async def location_event_stats(
    caller: Caller = Depends(require_operator),
    notifier: RealtimeNotifier = Depends(get_realtime_notifier),
) -> dict:
    return notifier.get_stats()
