import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from auth import get_current_user
from database import db, get_by_id, insert_with_id, list_many, require_db, serialize, utcnow
from schemas import Notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def notify(user_id: str, type_: str, title: str, message: str, link: Optional[str] = None) -> str:
    doc = Notification(userId=str(user_id), type=type_, title=title, message=message, link=link,
                       createdAt=utcnow()).model_dump()
    nid = insert_with_id("notification", doc)
    logger.debug("Notification %s (%s) for user %s", nid, type_, user_id)
    return nid


def unread_count(user_id: str) -> int:
    require_db()
    return db["notification"].count_documents({"userId": user_id, "read": False})


def _own_notification(notification_id: str, user: dict) -> dict:
    note = get_by_id("notification", notification_id)
    if not note or note.get("userId") != user["id"]:
        raise HTTPException(status_code=404, detail="Notification not found")
    return note


@router.get("")
def list_notifications(unread_only: bool = False, limit: int = 50, user=Depends(get_current_user)):
    query = {"userId": user["id"]}
    if unread_only:
        query["read"] = False
    notes = list_many("notification", query, sort=[("createdAt", -1)], limit=max(1, min(limit, 200)))
    return {
        "success": True,
        "data": [serialize(n) for n in notes],
        "unreadCount": unread_count(user["id"]),
    }


@router.put("/read-all")
def mark_all_read(user=Depends(get_current_user)):
    res = db["notification"].update_many({"userId": user["id"], "read": False}, {"$set": {"read": True}})
    return {"success": True, "message": "All notifications marked as read", "data": {"updated": res.modified_count}}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, user=Depends(get_current_user)):
    note = _own_notification(notification_id, user)
    db["notification"].update_one({"id": note["id"]}, {"$set": {"read": True}})
    return {"success": True, "message": "Notification marked as read", "data": {"id": note["id"], "read": True}}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user=Depends(get_current_user)):
    note = _own_notification(notification_id, user)
    db["notification"].delete_one({"id": note["id"]})
    return {"success": True, "message": "Notification deleted"}
