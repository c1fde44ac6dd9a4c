"""
Profiles and the role directories.

Directory listings are plain searches over the `user` collection; each
role sees the directories relevant to it under its own prefix, and the
factory directory is also public.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from auth import PHONE_RE, filter_profile, get_current_user, public_user, require_roles
from database import contains, db, get_by_id, paginate, require_db, serialize, utcnow
from schemas import ROLES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

SORTABLE = {"createdAt", "name", "username"}


def directory_entry(user: dict) -> dict:
    d = serialize(user)
    for key in ("associatedFactories", "associatedHHMs"):
        if key in d:
            d[key + "Count"] = len(d.pop(key) or [])
    d["location"] = user.get("location") or user.get("factoryLocation")
    d["displayName"] = user.get("factoryName") or user.get("name")
    return d


def build_directory_query(role: Optional[str], name: Optional[str], location: Optional[str],
                          extra: Optional[dict] = None) -> dict:
    clauses = [{"isActive": True}]
    if extra:
        clauses.append(extra)
    if role:
        if role not in ROLES:
            raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(ROLES)}")
        clauses.append({"role": role})
    if name and name.strip():
        clauses.append({"$or": [{"name": contains(name)}, {"username": contains(name)}, {"factoryName": contains(name)}]})
    if location and location.strip():
        clauses.append({"$or": [{"location": contains(location)}, {"factoryLocation": contains(location)}]})
    return {"$and": clauses}


def search_directory(role, name=None, location=None, page=1, limit=10, sort="createdAt", order="desc", extra=None):
    query = build_directory_query(role, name, location, extra)
    sort_field = sort if sort in SORTABLE else "createdAt"
    users, pagination = paginate("user", query, [(sort_field, -1 if order == "desc" else 1)], page, limit)
    return {
        "success": True,
        "message": "Users retrieved successfully",
        "data": [directory_entry(u) for u in users],
        "pagination": pagination,
        "filters": {"role": role, "name": name, "location": location},
    }


def get_directory_user(user_id: str, role: str) -> dict:
    user = get_by_id("user", user_id)
    if not user or user.get("role") != role or user.get("isActive") is False:
        raise HTTPException(status_code=404, detail=f"{role} not found")
    return {"success": True, "data": directory_entry(user)}


# ------------------------- Own profile -------------------------

@router.get("/api/profile")
def get_profile(user=Depends(get_current_user)):
    return {"success": True, "data": public_user(user)}


@router.put("/api/profile")
def update_profile(payload: dict = Body(...), user=Depends(get_current_user)):
    require_db()
    updates = filter_profile(user["role"], payload)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields provided for update")
    if "name" in updates:
        updates["name"] = str(updates["name"]).strip()
        if not updates["name"] or len(updates["name"]) > 50:
            raise HTTPException(status_code=400, detail="Name cannot be empty or more than 50 characters")
    if "phone" in updates:
        phone = str(updates["phone"]).strip()
        if not PHONE_RE.match(phone):
            raise HTTPException(status_code=400, detail="Please provide a valid phone number")
        if db["user"].find_one({"phone": phone, "id": {"$ne": user["id"]}}):
            raise HTTPException(status_code=409, detail="User with this phone already exists")
        updates["phone"] = phone
    if "availability" in updates and updates["availability"] not in ("Available", "Unavailable"):
        raise HTTPException(status_code=400, detail="Availability must be Available or Unavailable")
    updates["updatedAt"] = utcnow()
    db["user"].update_one({"id": user["id"]}, {"$set": updates})
    logger.info("Profile updated for %s: %s", user["id"], sorted(updates))
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": public_user({**user, **updates}),
    }


@router.get("/api/users/profile/{user_id}")
def public_profile(user_id: str, user=Depends(get_current_user)):
    target = get_by_id("user", user_id)
    if not target or target.get("isActive") is False:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "data": directory_entry(target)}


# ------------------------- Directories -------------------------

@router.get("/api/users/search")
def search_users(role: Optional[str] = None, name: Optional[str] = None, location: Optional[str] = None,
                 page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                 sort: str = "createdAt", order: str = "desc"):
    return search_directory(role, name, location, page, limit, sort, order)


@router.get("/api/public/factories")
def public_factories(name: Optional[str] = None, location: Optional[str] = None,
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    return search_directory("Factory", name, location, page, limit)


@router.get("/api/public/factories/{factory_id}")
def public_factory(factory_id: str):
    return get_directory_user(factory_id, "Factory")


@router.get("/api/farmer/hhms")
def farmer_hhms(name: Optional[str] = None, location: Optional[str] = None,
                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                user=Depends(require_roles("Farmer"))):
    return search_directory("HHM", name, location, page, limit)


@router.get("/api/farmer/factories")
def farmer_factories(name: Optional[str] = None, location: Optional[str] = None,
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     user=Depends(require_roles("Farmer"))):
    return search_directory("Factory", name, location, page, limit)


@router.get("/api/factory/hhms")
def factory_hhms(name: Optional[str] = None, location: Optional[str] = None,
                 page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                 user=Depends(require_roles("Factory"))):
    result = search_directory("HHM", name, location, page, limit)
    associated = set(user.get("associatedHHMs") or [])
    for entry in result["data"]:
        entry["isAssociated"] = entry["id"] in associated
    return result


@router.get("/api/factory/hhms/{hhm_id}")
def factory_hhm_detail(hhm_id: str, user=Depends(require_roles("Factory"))):
    result = get_directory_user(hhm_id, "HHM")
    result["data"]["isAssociated"] = result["data"]["id"] in (user.get("associatedHHMs") or [])
    return result


@router.get("/api/hhm/farmers")
def hhm_farmers(name: Optional[str] = None, location: Optional[str] = None,
                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                user=Depends(require_roles("HHM"))):
    return search_directory("Farmer", name, location, page, limit)


@router.get("/api/hhm/workers")
def hhm_workers(name: Optional[str] = None, location: Optional[str] = None,
                available_only: bool = False,
                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                user=Depends(require_roles("HHM"))):
    extra = {"availability": "Available"} if available_only else None
    return search_directory("Worker", name, location, page, limit, extra=extra)
