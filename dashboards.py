import logging

from fastapi import APIRouter, Depends

from auth import require_roles
from contracts import expire_stale_contracts
from database import count_by_status, db, list_many
from invitations import is_expired
from listings import total_value
from notifications import unread_count
from schemas import APPLICATION_STATUSES, CONTRACT_STATUSES, INVITATION_STATUSES, LISTING_STATUSES, ORDER_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dashboards"])


def pending_received_invitations(user_id: str) -> int:
    received = list_many("invitation", {"receiverId": user_id, "status": "pending"})
    return len([inv for inv in received if not is_expired(inv)])


@router.get("/api/farmer/dashboard")
def farmer_dashboard(user=Depends(require_roles("Farmer"))):
    uid = user["id"]
    expire_stale_contracts({"farmer_id": uid})
    active = list_many("listing", {"farmer_id": uid, "status": "active"})
    return {
        "success": True,
        "data": {
            "listings": {
                "byStatus": count_by_status("listing", {"farmer_id": uid}, LISTING_STATUSES),
                "activeValue": sum(total_value(l) for l in active),
            },
            "ordersReceived": count_by_status("order", {"farmerId": uid}, ORDER_STATUSES),
            "ordersSent": db["order"].count_documents({"buyerId": uid}),
            "contracts": count_by_status("farmercontract", {"farmer_id": uid}, CONTRACT_STATUSES),
            "unreadNotifications": unread_count(uid),
        },
    }


@router.get("/api/hhm/dashboard")
def hhm_dashboard(user=Depends(require_roles("HHM"))):
    uid = user["id"]
    expire_stale_contracts({"hhm_id": uid})
    return {
        "success": True,
        "data": {
            "contracts": count_by_status("farmercontract", {"hhm_id": uid}, CONTRACT_STATUSES),
            "pendingFactoryInvitations": pending_received_invitations(uid),
            "associatedFactories": len(user.get("associatedFactories") or []),
            "openSchedules": db["schedule"].count_documents({"hhmId": uid, "status": "open"}),
            "pendingApplications": db["application"].count_documents({"hhmId": uid, "status": "pending"}),
            "unreadNotifications": unread_count(uid),
        },
    }


@router.get("/api/factory/dashboard")
def factory_dashboard(user=Depends(require_roles("Factory"))):
    uid = user["id"]
    return {
        "success": True,
        "data": {
            "invitationsSent": count_by_status("invitation", {"senderId": uid}, INVITATION_STATUSES),
            "pendingReceivedInvitations": pending_received_invitations(uid),
            "associatedHHMs": len(user.get("associatedHHMs") or []),
            "ordersSent": count_by_status("order", {"buyerId": uid}, ORDER_STATUSES),
            "unreadNotifications": unread_count(uid),
        },
    }


@router.get("/api/worker/dashboard")
def worker_dashboard(user=Depends(require_roles("Worker"))):
    uid = user["id"]
    return {
        "success": True,
        "data": {
            "applications": count_by_status("application", {"workerId": uid}, APPLICATION_STATUSES),
            "openJobs": db["schedule"].count_documents({"status": "open"}),
            "availability": user.get("availability"),
            "unreadNotifications": unread_count(uid),
        },
    }
