import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.api.deps import get_current_principal, get_notifier
from slotbook.core.exceptions import NotFound
from slotbook.core.security import Principal, decode_token
from slotbook.models.notification import Notification
from slotbook.services.notifier import Notifier, WebSocketConnection
from slotbook.schemas.notification import Notification as NotificationSchema
from slotbook.schemas.common import PaginatedResponse

router = APIRouter(prefix="/me", tags=["Me"])
ws_router = APIRouter(tags=["Me"])


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.get("/notifications", response_model=PaginatedResponse[NotificationSchema])
def list_notifications(
    unread_only: bool = Query(False, description="Return only unread notifications"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Return the current user's notifications, newest first."""
    query = db.query(Notification).filter(Notification.user_id == principal.user_id)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712

    total = query.count()
    notifications = (
        query.order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return PaginatedResponse(
        data=notifications,
        total=total,
        page=page,
        limit=limit,
        total_pages=-(-total // limit) if total else 0,
    )


@router.patch("/notifications/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Mark all notifications for the current user as read."""
    updated = db.query(Notification).filter(
        Notification.user_id == principal.user_id,
        Notification.is_read == False,  # noqa: E712
    ).update({"is_read": True}, synchronize_session="fetch")
    db.commit()
    return {"marked_read": updated}


@router.patch("/notifications/{notif_id}/read", response_model=NotificationSchema)
def mark_notification_read(
    notif_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Mark a single notification as read."""
    notif = db.query(Notification).filter(
        Notification.id == notif_id,
        Notification.user_id == principal.user_id,
    ).first()
    if not notif:
        raise NotFound("Notification not found.", notification_id=str(notif_id))
    notif.is_read = True
    db.commit()
    db.refresh(notif)
    return notif


# ---------------------------------------------------------------------------
# Live push: /ws/notifications?token=<access token>
# ---------------------------------------------------------------------------


@ws_router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    token: str = Query(...),
    notifier: Notifier = Depends(get_notifier),
):
    principal = decode_token(token)
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    handle = WebSocketConnection(websocket, asyncio.get_running_loop())
    notifier.registry.register(principal.user_id, handle)
    try:
        # Clients only listen; drain anything they send until they go away
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        notifier.registry.unregister(principal.user_id, handle)
