"""
Farmer -> HHM work contracts.

A farmer asks an HHM to take on harvest work. The HHM accepts or rejects;
accepting one contract cancels the farmer's other pending requests
(farmer exclusivity). Requests nobody answers within their grace period
are cancelled lazily, whenever contracts are read or written.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import get_current_user, require_roles
from database import as_utc, db, get_by_id, list_many, paginate, serialize, utcnow
from notifications import notify
from schemas import CONTRACT_STATUSES, ContractDetails
from workflow import ACCEPT, StatusFlow, normalize_decision

logger = logging.getLogger(__name__)

PENDING = "farmer_pending"
ACCEPTED = "hhm_accepted"
REJECTED = "hhm_rejected"
AUTO_CANCELLED = "auto_cancelled"

contracts = StatusFlow("farmercontract", PENDING, ACCEPTED, REJECTED, label="Contract")

router = APIRouter(prefix="/api/farmer-contracts", tags=["contracts"])

SORTABLE = {"createdAt", "updatedAt", "duration_days", "status"}


class ContractRequestBody(BaseModel):
    hhm_id: str
    contract_details: ContractDetails
    duration_days: int = Field(..., ge=1, le=365)
    grace_period_days: int = Field(2, ge=1, le=30)


class ContractResponseBody(BaseModel):
    decision: str
    responseMessage: Optional[str] = Field(None, max_length=300)


def grace_deadline(contract: dict):
    created = as_utc(contract.get("createdAt"))
    if not created:
        return None
    return created + timedelta(days=contract.get("grace_period_days") or 2)


def expire_stale_contracts(query: Optional[dict] = None) -> int:
    """Cancel pending contracts whose grace period ran out. Returns how many changed."""
    now = utcnow()
    stale = [
        c for c in list_many("farmercontract", {**(query or {}), "status": PENDING})
        if grace_deadline(c) and grace_deadline(c) <= now
    ]
    cancelled = 0
    for contract in stale:
        res = db["farmercontract"].update_one(
            {"id": contract["id"], "status": PENDING},
            {"$set": {"status": AUTO_CANCELLED, "updatedAt": now, "cancelReason": "grace_period_expired"}},
        )
        if res.modified_count:
            cancelled += 1
            notify(contract["farmer_id"], "contract_auto_cancelled", "Contract request expired",
                   "Your contract request was cancelled because the HHM did not respond in time.",
                   link=f"/contracts/{contract['id']}")
    if cancelled:
        logger.info("Auto-cancelled %d contract(s) past their grace period", cancelled)
    return cancelled


def party_summary(user_id: str) -> dict:
    user = get_by_id("user", user_id) or {}
    return {
        "id": user_id,
        "name": user.get("name"),
        "username": user.get("username"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "location": user.get("location"),
    }


def contract_view(contract: dict, with_parties: bool = True) -> dict:
    d = serialize(contract)
    deadline = grace_deadline(contract)
    d["responseDeadline"] = deadline if d["status"] == PENDING else None
    if with_parties:
        d["farmer"] = party_summary(contract["farmer_id"])
        d["hhm"] = party_summary(contract["hhm_id"])
    return d


@router.post("/request", status_code=201)
def create_contract_request(body: ContractRequestBody, user=Depends(require_roles("Farmer"))):
    hhm = get_by_id("user", body.hhm_id)
    if not hhm:
        raise HTTPException(status_code=404, detail="HHM not found")
    if hhm.get("role") != "HHM":
        raise HTTPException(status_code=400, detail="User must have HHM role")
    if hhm.get("isActive") is False:
        raise HTTPException(status_code=400, detail="HHM account is not active")
    hhm_id = hhm.get("id") or str(hhm.get("_id"))
    if hhm_id == user["id"]:
        raise HTTPException(status_code=400, detail="Cannot create contract with yourself")

    expire_stale_contracts({"farmer_id": user["id"], "hhm_id": hhm_id})
    doc = {
        "farmer_id": user["id"],
        "hhm_id": hhm_id,
        "contract_details": body.contract_details.model_dump(),
        "duration_days": body.duration_days,
        "grace_period_days": body.grace_period_days,
    }
    contract = contracts.create(
        doc,
        conflict={"farmer_id": user["id"], "hhm_id": hhm_id},
        detail="An active contract already exists between you and this HHM",
    )
    notify(hhm_id, "contract_request", "New contract request",
           f"{user.get('name')} sent you a contract request.", link=f"/contracts/{contract['id']}")
    return {"success": True, "message": "Contract request sent successfully", "data": {"contract": contract_view(contract)}}


@router.get("/my-contracts")
def get_my_contracts(status: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                     sort: str = "-createdAt", user=Depends(get_current_user)):
    mine = {"$or": [{"farmer_id": user["id"]}, {"hhm_id": user["id"]}]}
    expire_stale_contracts(mine)
    query = dict(mine)
    if status:
        if status not in CONTRACT_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status. Valid options: " + ", ".join(CONTRACT_STATUSES))
        query["status"] = status
    field = sort.lstrip("-")
    if field not in SORTABLE:
        field = "createdAt"
    items, pagination = paginate("farmercontract", query, [(field, -1 if sort.startswith("-") else 1)], page, limit)
    views = [contract_view(c) for c in items]
    as_farmer = [c for c in views if c["farmer_id"] == user["id"]]
    as_hhm = [c for c in views if c["hhm_id"] == user["id"]]
    return {
        "success": True,
        "message": "Contracts retrieved successfully",
        "data": {
            "contracts": views,
            "contractsAsFarmer": as_farmer,
            "contractsAsHHM": as_hhm,
            "pagination": pagination,
            "filters": {"status": status or "all", "sort": sort},
            "summary": {
                "total": len(views),
                "asFarmer": len(as_farmer),
                "asHHM": len(as_hhm),
                "byStatus": {s: len([c for c in views if c["status"] == s]) for s in CONTRACT_STATUSES},
            },
        },
    }


@router.get("/{contract_id}")
def get_contract(contract_id: str, user=Depends(get_current_user)):
    contract = contracts.get(contract_id)
    if user["id"] not in (contract["farmer_id"], contract["hhm_id"]):
        raise HTTPException(status_code=403, detail="You are not a party to this contract")
    if expire_stale_contracts({"id": contract["id"]}):
        contract = contracts.get(contract_id)
    return {"success": True, "data": {"contract": contract_view(contract)}}


@router.put("/respond/{contract_id}")
def respond_to_contract(contract_id: str, body: ContractResponseBody, user=Depends(require_roles("HHM"))):
    decision = normalize_decision(body.decision)
    contract = contracts.get(contract_id)
    if contract["hhm_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="You are not authorized to respond to this contract")
    if expire_stale_contracts({"id": contract["id"]}):
        contract = contracts.get(contract_id)

    updated = contracts.respond(contract, decision, body.responseMessage)
    result = {"action": "accepted" if decision == ACCEPT else "rejected", "contract": contract_view(updated)}

    if decision == ACCEPT:
        others = list_many("farmercontract", {
            "farmer_id": updated["farmer_id"],
            "status": PENDING,
            "id": {"$ne": updated["id"]},
        })
        now = utcnow()
        cancelled = 0
        for other in others:
            res = db["farmercontract"].update_one(
                {"id": other["id"], "status": PENDING},
                {"$set": {"status": AUTO_CANCELLED, "updatedAt": now, "cancelReason": "farmer_exclusivity"}},
            )
            if res.modified_count:
                cancelled += 1
                notify(other["hhm_id"], "contract_auto_cancelled", "Contract request withdrawn",
                       "A contract request sent to you was cancelled because the farmer engaged another HHM.",
                       link=f"/contracts/{other['id']}")
        if cancelled:
            logger.info("Farmer exclusivity: cancelled %d other request(s) of farmer %s", cancelled, updated["farmer_id"])
        result["farmerExclusivity"] = {
            "autoCancelledContracts": cancelled,
            "message": (
                f"{cancelled} other pending contracts from this farmer were automatically cancelled"
                if cancelled else "No other pending contracts from this farmer to cancel"
            ),
        }

    notify(updated["farmer_id"], f"contract_{result['action']}", f"Contract {result['action']}",
           f"{user.get('name')} {result['action']} your contract request.", link=f"/contracts/{updated['id']}")
    return {"success": True, "message": f"Contract {result['action']} successfully", "data": result}
