"""
Buy orders placed against marketplace listings.

A buyer (Farmer or Factory) orders from an active listing; the listing's
farmer accepts or rejects. Accepting takes the ordered quantity out of the
listing's stock, partially fulfilling the order when stock is short.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError

from auth import require_roles
from database import db, get_by_id, paginate, serialize, utcnow
from notifications import notify
from schemas import ORDER_STATUSES, BuyerDetails, OrderDetails, Urgency
from workflow import ACCEPT, StatusFlow, normalize_decision

logger = logging.getLogger(__name__)

orders = StatusFlow("order", "pending", "accepted", "rejected", active=["pending"], label="Order")

router = APIRouter(prefix="/api/orders", tags=["orders"])

URGENCIES = ["normal", "medium", "high", "urgent"]


class OrderIn(BaseModel):
    listingId: str
    quantityWanted: float = Field(..., gt=0)
    proposedPrice: float = Field(..., gt=0)
    deliveryLocation: str = Field(..., min_length=1)
    message: Optional[str] = Field("", max_length=500)
    urgency: Urgency = "normal"
    totalAmount: Optional[float] = Field(None, ge=0)
    buyerName: Optional[str] = None
    buyerEmail: Optional[str] = None
    buyerPhone: Optional[str] = None


class OrderStatusIn(BaseModel):
    status: str
    responseMessage: Optional[str] = Field(None, max_length=300)


def order_view(order: dict, with_listing: bool = False) -> dict:
    d = serialize(order)
    if with_listing:
        listing = get_by_id("listing", order.get("listingId")) or {}
        d["listing"] = {
            "id": order.get("listingId"),
            "title": listing.get("title"),
            "crop_variety": listing.get("crop_variety"),
            "quantity_in_tons": listing.get("quantity_in_tons"),
            "expected_price_per_ton": listing.get("expected_price_per_ton"),
            "location": listing.get("location"),
            "status": listing.get("status"),
        }
    return d


def order_query(base: dict, status: Optional[str], urgency: Optional[str]) -> dict:
    query = dict(base)
    if status:
        if status not in ORDER_STATUSES:
            raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(ORDER_STATUSES)}")
        query["status"] = status
    if urgency:
        if urgency not in URGENCIES:
            raise HTTPException(status_code=400, detail=f"Urgency must be one of: {', '.join(URGENCIES)}")
        query["orderDetails.urgency"] = urgency
    return query


@router.post("/create", status_code=201)
def create_order(body: OrderIn, user=Depends(require_roles("Farmer", "Factory"))):
    listing = get_by_id("listing", body.listingId)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    if listing.get("status") != "active":
        raise HTTPException(status_code=400, detail="This listing is no longer available")
    listing_id = listing.get("id") or str(listing.get("_id"))
    seller_id = listing["farmer_id"]
    if seller_id == user["id"]:
        raise HTTPException(status_code=400, detail="You cannot place an order on your own listing")

    try:
        buyer = BuyerDetails(
            name=body.buyerName or user.get("name"),
            email=body.buyerEmail or user.get("email"),
            phone=body.buyerPhone or user.get("phone"),
        )
        details = OrderDetails(
            quantityWanted=body.quantityWanted,
            proposedPrice=body.proposedPrice,
            totalAmount=body.totalAmount if body.totalAmount is not None else body.quantityWanted * body.proposedPrice,
            deliveryLocation=body.deliveryLocation.strip(),
            message=(body.message or "").strip(),
            urgency=body.urgency,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors()[0]["msg"])

    doc = {
        "listingId": listing_id,
        "farmerId": seller_id,
        "buyerId": user["id"],
        "buyerRole": user["role"],
        "buyerDetails": buyer.model_dump(),
        "orderDetails": details.model_dump(),
        "isPartialFulfillment": False,
        "originalQuantityRequested": None,
    }
    order = orders.create(
        doc,
        conflict={"listingId": listing_id, "buyerId": user["id"]},
        detail="You already have a pending order for this listing",
    )
    db["order"].update_one({"id": order["id"]}, {"$set": {"orderId": order["id"]}})
    order["orderId"] = order["id"]

    notify(seller_id, "order_received", "New order received",
           f"{buyer.name} wants {details.quantityWanted} tons of {listing.get('crop_variety')}.",
           link=f"/orders/{order['id']}")
    return {"success": True, "message": "Order placed successfully", "data": order_view(order, with_listing=True)}


@router.get("/received")
def received_orders(status: Optional[str] = None, urgency: Optional[str] = None,
                    page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    user=Depends(require_roles("Farmer"))):
    query = order_query({"farmerId": user["id"]}, status, urgency)
    items, pagination = paginate("order", query, [("createdAt", -1)], page, limit)
    return {"success": True, "data": [order_view(o, with_listing=True) for o in items], "pagination": pagination}


@router.get("/sent")
def sent_orders(status: Optional[str] = None, urgency: Optional[str] = None,
                page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                user=Depends(require_roles("Farmer", "Factory"))):
    query = order_query({"buyerId": user["id"]}, status, urgency)
    items, pagination = paginate("order", query, [("createdAt", -1)], page, limit)
    return {"success": True, "data": [order_view(o, with_listing=True) for o in items], "pagination": pagination}


@router.get("/listing/{listing_id}")
def orders_for_listing(listing_id: str, status: Optional[str] = None,
                       page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                       user=Depends(require_roles("Farmer"))):
    listing = get_by_id("listing", listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    if listing.get("farmer_id") != user["id"]:
        raise HTTPException(status_code=403, detail="You can only view orders for your own listings")
    query = order_query({"listingId": listing.get("id") or str(listing["_id"])}, status, None)
    items, pagination = paginate("order", query, [("createdAt", -1)], page, limit)
    return {"success": True, "data": [order_view(o) for o in items], "pagination": pagination}


def reserve_stock(order: dict) -> tuple:
    """Take the order's quantity out of its listing stock."""
    listing = get_by_id("listing", order["listingId"])
    if not listing:
        raise HTTPException(status_code=404, detail="The listing for this order no longer exists")
    stock = float(listing.get("quantity_in_tons") or 0)
    if stock <= 0:
        raise HTTPException(status_code=400, detail="This listing has no remaining stock")

    details = order["orderDetails"]
    wanted = float(details["quantityWanted"])
    fulfilled = min(wanted, stock)
    extra = {}
    if fulfilled < wanted:
        extra = {
            "isPartialFulfillment": True,
            "originalQuantityRequested": wanted,
            "orderDetails.quantityWanted": fulfilled,
            "orderDetails.totalAmount": fulfilled * float(details["proposedPrice"]),
        }

    res = db["listing"].update_one(
        {"_id": listing["_id"], "quantity_in_tons": {"$gte": fulfilled}},
        {"$inc": {"quantity_in_tons": -fulfilled}, "$set": {"updatedAt": utcnow()}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=409, detail="Listing stock changed while responding. Please try again")
    return listing, fulfilled, stock - fulfilled, extra


@router.put("/{order_id}/status")
def respond_to_order(order_id: str, body: OrderStatusIn, user=Depends(require_roles("Farmer"))):
    decision = normalize_decision(body.status)
    order = orders.get(order_id)
    if order["farmerId"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only respond to orders on your own listings")
    if order.get("status") != orders.pending:
        raise HTTPException(status_code=400, detail=f"Order is already {order.get('status')}")

    remaining = None
    if decision == ACCEPT:
        listing, fulfilled, remaining, extra = reserve_stock(order)
        try:
            updated = orders.respond(order, decision, body.responseMessage, extra=extra)
        except HTTPException:
            db["listing"].update_one({"_id": listing["_id"]}, {"$inc": {"quantity_in_tons": fulfilled}})
            raise
        if remaining <= 0:
            db["listing"].update_one({"_id": listing["_id"]}, {"$set": {"status": "sold", "quantity_in_tons": 0}})
            logger.info("Listing %s sold out", order["listingId"])
        # dotted keys from the $set need folding back into the returned document
        if extra:
            updated["orderDetails"] = {
                **order["orderDetails"],
                "quantityWanted": extra["orderDetails.quantityWanted"],
                "totalAmount": extra["orderDetails.totalAmount"],
            }
            updated.pop("orderDetails.quantityWanted", None)
            updated.pop("orderDetails.totalAmount", None)
    else:
        updated = orders.respond(order, decision, body.responseMessage)

    action = updated["status"]
    message = f"Your order was {action}."
    if updated.get("isPartialFulfillment"):
        message = (f"Your order was partially accepted: {updated['orderDetails']['quantityWanted']} of "
                   f"{updated['originalQuantityRequested']} tons.")
    notify(updated["buyerId"], f"order_{action}", f"Order {action}", message, link=f"/orders/{updated['id']}")
    return {
        "success": True,
        "message": f"Order {action} successfully",
        "data": order_view(updated),
        "remainingQuantity": remaining,
    }
