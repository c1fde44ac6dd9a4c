import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import require_roles
from database import contains, count_by_status, db, get_by_id, insert_with_id, list_many, paginate, serialize, utcnow
from schemas import LISTING_STATUSES, Listing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/listings", tags=["listings"])

SORT_ORDERS = {
    "price_low": [("expected_price_per_ton", 1)],
    "price_high": [("expected_price_per_ton", -1)],
    "quantity_low": [("quantity_in_tons", 1)],
    "quantity_high": [("quantity_in_tons", -1)],
    "newest": [("createdAt", -1)],
    "oldest": [("createdAt", 1)],
}


class ListingIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    crop_variety: str = Field(..., min_length=1)
    quantity_in_tons: float
    expected_price_per_ton: float
    harvest_availability_date: date
    location: str = Field(..., min_length=1)
    description: Optional[str] = None


class ListingUpdate(BaseModel):
    title: Optional[str] = None
    crop_variety: Optional[str] = None
    quantity_in_tons: Optional[float] = None
    expected_price_per_ton: Optional[float] = None
    harvest_availability_date: Optional[date] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None


class StatusIn(BaseModel):
    status: str


def total_value(listing: dict) -> float:
    return float(listing.get("quantity_in_tons") or 0) * float(listing.get("expected_price_per_ton") or 0)


def listing_view(listing: dict, with_farmer: bool = False) -> dict:
    d = serialize(listing)
    d["total_value"] = total_value(listing)
    if with_farmer:
        farmer = get_by_id("user", listing.get("farmer_id")) or {}
        d["farmer"] = {
            "id": listing.get("farmer_id"),
            "name": farmer.get("name"),
            "username": farmer.get("username"),
            "phone": farmer.get("phone"),
            "email": farmer.get("email"),
            "location": farmer.get("location"),
        }
    return d


def harvest_datetime(value: date) -> datetime:
    # BSON has no plain date type
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def check_harvest_date(value: date):
    if value < utcnow().date():
        raise HTTPException(status_code=400, detail="Harvest availability date cannot be in the past")


def check_positive(value: float, field: str):
    if value is None or value <= 0:
        raise HTTPException(status_code=400, detail=f"{field} must be a positive number")


def check_status(status: str):
    if status not in LISTING_STATUSES:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(LISTING_STATUSES)}")


def get_owned_listing(listing_id: str, user: dict) -> dict:
    listing = get_by_id("listing", listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    if listing.get("farmer_id") != user["id"]:
        logger.warning("Farmer %s tried to modify listing %s owned by %s", user["id"], listing_id, listing.get("farmer_id"))
        raise HTTPException(status_code=403, detail="You can only modify your own listings")
    listing["id"] = listing.get("id") or str(listing.get("_id"))
    return listing


# Public marketplace
@router.get("/marketplace")
def marketplace(crop_variety: Optional[str] = None, location: Optional[str] = None,
                min_price: Optional[float] = None, max_price: Optional[float] = None,
                min_quantity: Optional[float] = None, max_quantity: Optional[float] = None,
                farmer_id: Optional[str] = None, sort: str = "newest",
                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    query = {"status": "active"}
    if crop_variety:
        query["crop_variety"] = contains(crop_variety)
    if location:
        query["location"] = contains(location)
    if farmer_id:
        query["farmer_id"] = farmer_id
    if min_price is not None or max_price is not None:
        query["expected_price_per_ton"] = {}
        if min_price is not None:
            query["expected_price_per_ton"]["$gte"] = min_price
        if max_price is not None:
            query["expected_price_per_ton"]["$lte"] = max_price
    if min_quantity is not None or max_quantity is not None:
        query["quantity_in_tons"] = {}
        if min_quantity is not None:
            query["quantity_in_tons"]["$gte"] = min_quantity
        if max_quantity is not None:
            query["quantity_in_tons"]["$lte"] = max_quantity

    listings, pagination = paginate("listing", query, SORT_ORDERS.get(sort, SORT_ORDERS["newest"]), page, limit)
    return {
        "success": True,
        "data": [listing_view(l, with_farmer=True) for l in listings],
        "pagination": pagination,
        "filters": {
            "crop_variety": crop_variety,
            "location": location,
            "min_price": min_price,
            "max_price": max_price,
            "min_quantity": min_quantity,
            "max_quantity": max_quantity,
            "farmer_id": farmer_id,
            "sort": sort,
        },
    }


@router.post("/create", status_code=201)
def create_listing(body: ListingIn, user=Depends(require_roles("Farmer"))):
    check_positive(body.quantity_in_tons, "Quantity in tons")
    check_positive(body.expected_price_per_ton, "Expected price per ton")
    check_harvest_date(body.harvest_availability_date)
    now = utcnow()
    doc = Listing(
        farmer_id=user["id"],
        title=body.title.strip(),
        crop_variety=body.crop_variety.strip(),
        quantity_in_tons=body.quantity_in_tons,
        expected_price_per_ton=body.expected_price_per_ton,
        harvest_availability_date=harvest_datetime(body.harvest_availability_date),
        location=body.location.strip(),
        description=body.description.strip() if body.description else None,
        createdAt=now,
        updatedAt=now,
    ).model_dump()
    insert_with_id("listing", doc)
    logger.info("Listing %s created by farmer %s", doc["id"], user["id"])
    return {"success": True, "message": "Crop listing created successfully", "data": listing_view(doc)}


@router.get("/my-listings")
def my_listings(status: Optional[str] = None, user=Depends(require_roles("Farmer"))):
    query = {"farmer_id": user["id"]}
    if status:
        check_status(status)
        query["status"] = status
    listings = [listing_view(l) for l in list_many("listing", query, sort=[("createdAt", -1)])]
    active = list_many("listing", {"farmer_id": user["id"], "status": "active"})
    return {
        "success": True,
        "data": listings,
        "summary": {
            "total": len(listings),
            "byStatus": count_by_status("listing", {"farmer_id": user["id"]}, LISTING_STATUSES),
            "totalActiveValue": sum(total_value(l) for l in active),
        },
    }


@router.get("/{listing_id}")
def get_listing(listing_id: str):
    listing = get_by_id("listing", listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return {"success": True, "data": listing_view(listing, with_farmer=True)}


@router.put("/{listing_id}")
def update_listing(listing_id: str, body: ListingUpdate, user=Depends(require_roles("Farmer"))):
    listing = get_owned_listing(listing_id, user)
    fields = body.model_dump(exclude_unset=True)
    updates = {}
    for key in ("title", "crop_variety", "location", "description"):
        if fields.get(key) is not None:
            updates[key] = fields[key].strip()
    for key, label in (("quantity_in_tons", "Quantity in tons"), ("expected_price_per_ton", "Expected price per ton")):
        if key in fields:
            check_positive(fields[key], label)
            updates[key] = float(fields[key])
    if fields.get("harvest_availability_date") is not None:
        check_harvest_date(fields["harvest_availability_date"])
        updates["harvest_availability_date"] = harvest_datetime(fields["harvest_availability_date"])
    if fields.get("status") is not None:
        check_status(fields["status"])
        updates["status"] = fields["status"]
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields provided for update")
    updates["updatedAt"] = utcnow()
    db["listing"].update_one({"id": listing["id"]}, {"$set": updates})
    logger.info("Listing %s updated: %s", listing["id"], sorted(updates))
    return {
        "success": True,
        "message": "Listing updated successfully",
        "data": listing_view({**listing, **updates}),
        "updatedFields": sorted(k for k in updates if k != "updatedAt"),
    }


@router.delete("/{listing_id}")
def delete_listing(listing_id: str, user=Depends(require_roles("Farmer"))):
    listing = get_owned_listing(listing_id, user)
    db["listing"].delete_one({"id": listing["id"]})
    logger.info("Listing %s deleted by farmer %s", listing["id"], user["id"])
    return {
        "success": True,
        "message": "Listing deleted successfully",
        "deletedListing": {
            "id": listing["id"],
            "title": listing.get("title"),
            "crop_variety": listing.get("crop_variety"),
            "quantity_in_tons": listing.get("quantity_in_tons"),
            "status": listing.get("status"),
        },
    }


@router.put("/{listing_id}/status")
def change_listing_status(listing_id: str, body: StatusIn, user=Depends(require_roles("Farmer"))):
    check_status(body.status)
    listing = get_owned_listing(listing_id, user)
    db["listing"].update_one({"id": listing["id"]}, {"$set": {"status": body.status, "updatedAt": utcnow()}})
    return {
        "success": True,
        "message": f"Listing status changed to {body.status}",
        "data": listing_view({**listing, "status": body.status}),
        "previousStatus": listing.get("status"),
        "newStatus": body.status,
    }
