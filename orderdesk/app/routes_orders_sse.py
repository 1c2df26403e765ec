"""Server-Sent Events stream of order changes for staff dashboards.

Each change is sent as ``event: order_change`` with the notifier's
monotonically increasing sequence as ``id``. The first event on every
connection is a ``resync`` so a (re)connecting dashboard always reloads its
view; later ``resync`` events mean the client fell behind and must reload
again. Comment lines are sent as keep-alives while idle.
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from .deps import get_notifier
from .events import ALL, ChangeEvent, ChangeNotifier
from .routes_metrics import sse_clients_gauge

KEEPALIVE_INTERVAL = 15

router = APIRouter()


def format_event(event: ChangeEvent) -> str:
    return f"event: order_change\nid: {event.seq}\ndata: {json.dumps(event.as_dict())}\n\n"


async def order_change_stream(
    notifier: ChangeNotifier,
    *,
    keepalive: float = KEEPALIVE_INTERVAL,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for every change published on ``notifier``."""

    sub = notifier.subscribe(ALL)
    sse_clients_gauge.inc()
    try:
        yield format_event(notifier.resync_event(ALL))
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            event = await sub.get(timeout=keepalive)
            if event is None:
                if sub.closed:
                    break
                yield ":keepalive\n\n"
                continue
            yield format_event(event)
    finally:
        sub.close()
        sse_clients_gauge.dec()


@router.get(
    "/admin/orders/stream",
    response_class=StreamingResponse,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def stream_orders(
    request: Request, notifier: ChangeNotifier = Depends(get_notifier)
) -> StreamingResponse:
    """Stream order changes via SSE."""

    return StreamingResponse(
        order_change_stream(notifier, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
