"""
Factory <-> HHM partnership invitations.

Either side may invite the other. The receiver answers once; acceptance
links the two users through `associatedHHMs` (factory) and
`associatedFactories` (HHM). A pair can hold only one live invitation at a
time, and a pair that is already associated cannot be invited again.
"""

import logging
import os
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import require_roles
from database import as_utc, db, get_by_id, list_many, serialize, utcnow
from notifications import notify
from schemas import INVITATION_STATUSES
from workflow import ACCEPT, StatusFlow, normalize_decision

logger = logging.getLogger(__name__)

INVITATION_EXPIRY_DAYS = int(os.getenv("INVITATION_EXPIRY_DAYS", 7))
MAX_INVITATION_REMINDERS = int(os.getenv("MAX_INVITATION_REMINDERS", 3))
REMINDER_COOLDOWN_MINUTES = int(os.getenv("REMINDER_COOLDOWN_MINUTES", 60))

FACTORY_TO_HHM = "factory-to-hhm"
HHM_TO_FACTORY = "hhm-to-factory"

invitations = StatusFlow("invitation", "pending", "accepted", "declined", label="Invitation")

router = APIRouter(tags=["invitations"])


class InviteHHMBody(BaseModel):
    hhmId: str
    message: Optional[str] = Field(None, max_length=500)


class InviteFactoryBody(BaseModel):
    factoryId: str
    message: Optional[str] = Field(None, max_length=500)


class RespondBody(BaseModel):
    status: Optional[str] = None
    decision: Optional[str] = None
    action: Optional[str] = None
    responseMessage: Optional[str] = Field(None, max_length=300)


# ------------------------- helpers -------------------------

def is_expired(invitation: dict) -> bool:
    expires = as_utc(invitation.get("expiresAt"))
    return bool(expires and expires < utcnow())


def are_associated(factory_id: str, hhm_id: str) -> bool:
    factory = get_by_id("user", factory_id) or {}
    return hhm_id in (factory.get("associatedHHMs") or [])


def live_invitation(factory_id: str, hhm_id: str):
    """The pending, unexpired invitation between the pair, in either direction."""
    for inv in list_many("invitation", {"factoryId": factory_id, "hhmId": hhm_id, "status": "pending"}):
        if not is_expired(inv):
            return inv
    return None


def ensure_pair_free(factory_id: str, hhm_id: str):
    if live_invitation(factory_id, hhm_id):
        raise HTTPException(status_code=409, detail="A pending invitation already exists between this factory and HHM")
    if are_associated(factory_id, hhm_id):
        raise HTTPException(status_code=409, detail="This factory and HHM are already associated")


def get_target(user_id: str, role: str) -> dict:
    target = get_by_id("user", user_id)
    if not target:
        raise HTTPException(status_code=404, detail=f"{role} not found")
    if target.get("role") != role:
        raise HTTPException(status_code=400, detail=f"Referenced user must have {role} role")
    if target.get("isActive") is False:
        raise HTTPException(status_code=400, detail=f"{role} account is not active")
    target["id"] = target.get("id") or str(target.get("_id"))
    return target


def display_name(user: dict) -> str:
    return user.get("factoryName") or user.get("name") or user.get("username", "")


def associate(factory_id: str, hhm_id: str):
    db["user"].update_one({"id": factory_id}, {"$addToSet": {"associatedHHMs": hhm_id}})
    db["user"].update_one({"id": hhm_id}, {"$addToSet": {"associatedFactories": factory_id}})
    logger.info("Associated factory %s with HHM %s", factory_id, hhm_id)


def dissociate(factory_id: str, hhm_id: str):
    db["user"].update_one({"id": factory_id}, {"$pull": {"associatedHHMs": hhm_id}})
    db["user"].update_one({"id": hhm_id}, {"$pull": {"associatedFactories": factory_id}})
    logger.info("Dissociated factory %s from HHM %s", factory_id, hhm_id)


def invitation_view(inv: dict) -> dict:
    d = serialize(inv)
    d["isExpired"] = d["status"] == "pending" and is_expired(inv)
    d["isResponded"] = d["status"] != "pending"
    return d


def with_party(inv: dict, party_field: str) -> dict:
    d = invitation_view(inv)
    party = get_by_id("user", inv.get(party_field)) or {}
    d["party"] = {
        "id": inv.get(party_field),
        "name": party.get("name"),
        "displayName": display_name(party) if party else None,
        "email": party.get("email"),
        "phone": party.get("phone"),
        "location": party.get("location") or party.get("factoryLocation"),
    }
    return d


def send_invitation(sender: dict, receiver: dict, factory_id: str, hhm_id: str, kind: str,
                    message: Optional[str]) -> dict:
    ensure_pair_free(factory_id, hhm_id)
    now = utcnow()
    doc = {
        "invitationType": kind,
        "factoryId": factory_id,
        "hhmId": hhm_id,
        "senderId": sender["id"],
        "receiverId": receiver["id"],
        "personalMessage": (message or "").strip() or None,
        "expiresAt": now + timedelta(days=INVITATION_EXPIRY_DAYS),
        "remindersSent": 0,
        "lastReminderAt": None,
        "sentAt": now,
    }
    invitation = invitations.create(doc)
    notify(receiver["id"], "invitation_received", "New partnership invitation",
           f"{display_name(sender)} invited you to partner with them.", link=f"/invitations/{invitation['id']}")
    logger.info("Invitation %s (%s) from %s to %s", invitation["id"], kind, sender["id"], receiver["id"])
    return invitation


def sent_invitations(user: dict, party_field: str, status: Optional[str]):
    query = {"senderId": user["id"]}
    if status:
        if status not in INVITATION_STATUSES:
            raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(INVITATION_STATUSES)}")
        query["status"] = status
    invs = list_many("invitation", query, sort=[("createdAt", -1)])
    return {"success": True, "data": [with_party(i, party_field) for i in invs], "count": len(invs)}


def received_invitations(user: dict, party_field: str, status: Optional[str]):
    query = {"receiverId": user["id"]}
    if status:
        if status not in INVITATION_STATUSES:
            raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(INVITATION_STATUSES)}")
        query["status"] = status
    invs = list_many("invitation", query, sort=[("createdAt", -1)])
    return {"success": True, "data": [with_party(i, party_field) for i in invs], "count": len(invs)}


def respond_to_invitation(invitation_id: str, body: RespondBody, user: dict) -> dict:
    invitation = invitations.get(invitation_id)
    if invitation.get("receiverId") != user["id"]:
        raise HTTPException(status_code=403, detail="You are not authorized to respond to this invitation")
    decision = normalize_decision(body.decision or body.status or body.action)
    if invitation.get("status") == "pending" and is_expired(invitation):
        raise HTTPException(status_code=400, detail="This invitation has expired")
    if decision == ACCEPT and invitation.get("status") == "pending":
        # A different invitation may have linked the pair in the meantime.
        if are_associated(invitation["factoryId"], invitation["hhmId"]):
            raise HTTPException(status_code=409, detail="This factory and HHM are already associated")
    updated = invitations.respond(invitation, decision, body.responseMessage)
    if updated["status"] == "accepted":
        associate(updated["factoryId"], updated["hhmId"])
    notify(updated["senderId"], f"invitation_{updated['status']}", f"Invitation {updated['status']}",
           f"{display_name(user)} {updated['status']} your partnership invitation.",
           link=f"/invitations/{updated['id']}")
    return {"success": True, "message": f"Invitation {updated['status']} successfully", "data": invitation_view(updated)}


def withdraw_invitation(invitation_id: str, user: dict) -> dict:
    invitation = invitations.get(invitation_id)
    if invitation.get("senderId") != user["id"]:
        raise HTTPException(status_code=403, detail="You can only withdraw invitations you sent")
    if invitation.get("status") != "pending":
        raise HTTPException(status_code=400, detail=f"Invitation is already {invitation['status']} and cannot be withdrawn")
    res = db["invitation"].delete_one({"id": invitation["id"], "status": "pending"})
    if res.deleted_count == 0:
        raise HTTPException(status_code=400, detail="Invitation has already been responded to")
    logger.info("Invitation %s withdrawn by %s", invitation["id"], user["id"])
    return {"success": True, "message": "Invitation withdrawn successfully"}


def resend_invitation(invitation_id: str, user: dict) -> dict:
    invitation = invitations.get(invitation_id)
    if invitation.get("senderId") != user["id"]:
        raise HTTPException(status_code=403, detail="You can only resend invitations you sent")
    if invitation.get("status") != "pending":
        raise HTTPException(status_code=400, detail=f"Invitation is already {invitation['status']} and cannot be resent")
    sent = invitation.get("remindersSent", 0)
    if sent >= MAX_INVITATION_REMINDERS:
        raise HTTPException(status_code=429, detail="Maximum number of reminders already sent for this invitation")
    now = utcnow()
    last = as_utc(invitation.get("lastReminderAt") or invitation.get("sentAt"))
    if last and now - last < timedelta(minutes=REMINDER_COOLDOWN_MINUTES):
        raise HTTPException(status_code=429, detail="Please wait before resending this invitation")
    if is_expired(invitation):
        # renewing an expired invitation must not create a second live one for the pair
        live = live_invitation(invitation["factoryId"], invitation["hhmId"])
        if live and live["id"] != invitation["id"]:
            raise HTTPException(status_code=409, detail="A newer invitation is already pending between this factory and HHM")
        if are_associated(invitation["factoryId"], invitation["hhmId"]):
            raise HTTPException(status_code=409, detail="This factory and HHM are already associated")
    update = {
        "remindersSent": sent + 1,
        "lastReminderAt": now,
        "expiresAt": now + timedelta(days=INVITATION_EXPIRY_DAYS),
        "updatedAt": now,
    }
    res = db["invitation"].update_one({"id": invitation["id"], "status": "pending", "remindersSent": sent}, {"$set": update})
    if res.modified_count == 0:
        raise HTTPException(status_code=429, detail="Please wait before resending this invitation")
    notify(invitation["receiverId"], "invitation_reminder", "Invitation reminder",
           f"{display_name(user)} is waiting for your answer to their partnership invitation.",
           link=f"/invitations/{invitation['id']}")
    logger.info("Invitation %s resent (%d/%d)", invitation["id"], sent + 1, MAX_INVITATION_REMINDERS)
    return {"success": True, "message": "Invitation resent successfully", "data": invitation_view({**invitation, **update})}


def associated_users(ids) -> list:
    users = list_many("user", {"id": {"$in": list(ids or [])}, "isActive": True}, sort=[("name", 1)])
    result = []
    for u in users:
        d = serialize(u)
        d.pop("associatedFactories", None)
        d.pop("associatedHHMs", None)
        d["displayName"] = display_name(u)
        result.append(d)
    return result


# ------------------------- Factory endpoints -------------------------

@router.post("/api/factory/invite-hhm", status_code=201)
def factory_invite_hhm(body: InviteHHMBody, user=Depends(require_roles("Factory"))):
    hhm = get_target(body.hhmId, "HHM")
    invitation = send_invitation(user, hhm, user["id"], hhm["id"], FACTORY_TO_HHM, body.message)
    return {"success": True, "message": "Invitation sent successfully", "data": invitation_view(invitation)}


@router.get("/api/factory/invitations")
def factory_sent_invitations(status: Optional[str] = None, user=Depends(require_roles("Factory"))):
    return sent_invitations(user, "hhmId", status)


@router.delete("/api/factory/invitations/{invitation_id}")
def factory_withdraw_invitation(invitation_id: str, user=Depends(require_roles("Factory"))):
    return withdraw_invitation(invitation_id, user)


@router.post("/api/factory/invitations/{invitation_id}/resend")
def factory_resend_invitation(invitation_id: str, user=Depends(require_roles("Factory"))):
    return resend_invitation(invitation_id, user)


@router.get("/api/factory/received-invitations")
def factory_received_invitations(status: Optional[str] = None, user=Depends(require_roles("Factory"))):
    return received_invitations(user, "hhmId", status)


@router.put("/api/factory/received-invitations/{invitation_id}")
def factory_respond_invitation(invitation_id: str, body: RespondBody, user=Depends(require_roles("Factory"))):
    return respond_to_invitation(invitation_id, body, user)


@router.get("/api/factory/associated-hhms")
def factory_associated_hhms(user=Depends(require_roles("Factory"))):
    data = associated_users(user.get("associatedHHMs"))
    return {"success": True, "data": data, "count": len(data)}


# ------------------------- HHM endpoints -------------------------

@router.post("/api/hhm/invite-factory", status_code=201)
def hhm_invite_factory(body: InviteFactoryBody, user=Depends(require_roles("HHM"))):
    factory = get_target(body.factoryId, "Factory")
    invitation = send_invitation(user, factory, factory["id"], user["id"], HHM_TO_FACTORY, body.message)
    return {"success": True, "message": "Invitation sent successfully", "data": invitation_view(invitation)}


@router.get("/api/hhm/my-factory-invitations")
def hhm_sent_invitations(status: Optional[str] = None, user=Depends(require_roles("HHM"))):
    return sent_invitations(user, "factoryId", status)


@router.delete("/api/hhm/my-factory-invitations/{invitation_id}")
def hhm_withdraw_invitation(invitation_id: str, user=Depends(require_roles("HHM"))):
    return withdraw_invitation(invitation_id, user)


@router.post("/api/hhm/my-factory-invitations/{invitation_id}/resend")
def hhm_resend_invitation(invitation_id: str, user=Depends(require_roles("HHM"))):
    return resend_invitation(invitation_id, user)


@router.get("/api/hhm/factory-invitations")
def hhm_received_invitations(status: Optional[str] = None, user=Depends(require_roles("HHM"))):
    return received_invitations(user, "factoryId", status)


@router.put("/api/hhm/factory-invitations/{invitation_id}")
def hhm_respond_invitation(invitation_id: str, body: RespondBody, user=Depends(require_roles("HHM"))):
    return respond_to_invitation(invitation_id, body, user)


@router.get("/api/hhm/associated-factories")
def hhm_associated_factories(user=Depends(require_roles("HHM"))):
    data = associated_users(user.get("associatedFactories"))
    return {"success": True, "data": data, "count": len(data)}


@router.delete("/api/hhm/associated-factories/{factory_id}")
def hhm_remove_factory(factory_id: str, user=Depends(require_roles("HHM"))):
    if factory_id not in (user.get("associatedFactories") or []):
        raise HTTPException(status_code=404, detail="Factory is not associated with you")
    dissociate(factory_id, user["id"])
    notify(factory_id, "association_removed", "Partnership ended",
           f"{display_name(user)} removed the partnership with your factory.")
    return {"success": True, "message": "Factory removed from your associations"}
