# src/services/dispatch_api/routes/notifications.py
"""
Роуты уведомлений и WebSocket-канал push-доставки.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, WebSocket, WebSocketDisconnect, status

from src.common.errors import ValidationError
from src.core.notifications.service import NotificationDispatcher
from src.core.users.models import Actor
from src.services.dispatch_api.dependencies import get_actor, get_notifier, get_push_hub, parse_actor

router = APIRouter(prefix="/notifications", tags=["Notifications"])
ws_router = APIRouter(tags=["Push"])


@router.get("", response_model=dict)
async def list_notifications(
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> dict[str, Any]:
    return await notifier.list_for_user(actor.id, page, limit, unread_only=unread_only)


@router.get("/unread-count", response_model=dict)
async def unread_count(
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> dict[str, int]:
    return {"unread": await notifier.unread_count(actor.id)}


@router.post("/read-all", response_model=dict)
async def mark_all_read(
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> dict[str, int]:
    return {"updated": await notifier.mark_all_read(actor.id)}


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: int,
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> None:
    await notifier.mark_read(actor.id, notification_id)


@ws_router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    user_id: Optional[int] = Query(None),
    role: Optional[str] = Query(None),
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> None:
    """
    Push-канал уведомлений.

    Браузер не может выставить заголовки при открытии WebSocket,
    поэтому идентичность принимается и из query-параметров.
    """
    uid = x_user_id if x_user_id is not None else user_id
    role_value = x_user_role or role
    if uid is None or not role_value:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        actor = parse_actor(uid, role_value)
    except ValidationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub = get_push_hub()
    connection_id = await hub.manager.register(websocket, actor.id, actor.role)
    try:
        while True:
            # Входящие сообщения клиента (pong и т.п.) не обрабатываются
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.manager.unregister(connection_id)
