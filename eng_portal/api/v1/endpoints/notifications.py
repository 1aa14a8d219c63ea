from fastapi import APIRouter, Depends

from eng_portal.api.deps import CurrentUser, get_store
from eng_portal.api.v1.endpoints.auth import get_current_user
from eng_portal.services.notifications import get_inbox, mark_seen

router = APIRouter()

@router.get("/")
async def get_my_notifications(user: CurrentUser = Depends(get_current_user), store=Depends(get_store)):
    """The caller's latest notifications (own, role-wide and broadcast) and whether any is unseen."""
    inbox = await get_inbox(store, user.uid, user.role)
    return {
        "hasUnread": inbox.has_unread,
        "notifications": [
            {
                "id": n.id,
                "title": n.title,
                "message": n.message,
                "createdAt": n.created_at.isoformat() if n.created_at else None,
                "seen": n.id in inbox.seen,
            }
            for n in inbox.notifications
        ],
    }

@router.post("/{notification_id}/seen")
async def mark_notification_seen(notification_id: str, user: CurrentUser = Depends(get_current_user),
                                 store=Depends(get_store)):
    await mark_seen(store, user.uid, notification_id)
    return {"status": "success"}
