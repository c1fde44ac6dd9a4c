"""
MongoDB access for the Sugarcane Platform API.

The connection is configured from the environment (a local `.env` file is
honoured). Collections are addressed by lowercase names, one per model in
`schemas.py`. Every stored document carries a string `id` next to Mongo's
`_id` so that the API can expose a stable string identifier.
"""

import logging
import math
import os
import re
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "sugarcane_platform")

try:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]
except PyMongoError as exc:
    logger.error("Could not configure MongoDB client: %s", exc)
    client = None
    db = None


# ------------------------- time helpers -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """Mongo hands datetimes back naive (in UTC); make them comparable."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ------------------------- id / document helpers -------------------------

def to_oid(val):
    try:
        return ObjectId(str(val))
    except (InvalidId, TypeError):
        return None


def require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def insert_with_id(collection: str, doc: dict) -> str:
    require_db()
    res = db[collection].insert_one(doc)
    oid = str(res.inserted_id)
    db[collection].update_one({"_id": res.inserted_id}, {"$set": {"id": oid}})
    doc["id"] = oid
    return oid


def get_by_id(collection: str, id_str: str):
    require_db()
    if not id_str:
        return None
    oid = to_oid(id_str)
    q = {"$or": ([{"_id": oid}] if oid else []) + [{"id": str(id_str)}]}
    return db[collection].find_one(q)


def list_many(collection: str, query: dict = None, sort: Optional[list] = None, limit: Optional[int] = None):
    require_db()
    cursor = db[collection].find(query or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    res = []
    for d in cursor:
        d["id"] = str(d.get("_id")) if not d.get("id") else d["id"]
        res.append(d)
    return res


def paginate(collection: str, query: dict, sort: list, page: int = 1, limit: int = 20):
    """Return one page of documents and the pagination block the client renders."""
    require_db()
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    total = db[collection].count_documents(query)
    cursor = db[collection].find(query).sort(sort).skip((page - 1) * limit).limit(limit)
    items = []
    for d in cursor:
        d["id"] = str(d.get("_id")) if not d.get("id") else d["id"]
        items.append(d)
    total_pages = math.ceil(total / limit) if total else 0
    return items, {
        "currentPage": page,
        "totalPages": total_pages,
        "total": total,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
        "limit": limit,
    }


def serialize(doc: Optional[dict], hidden=("passwordHash",)) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    oid = d.pop("_id", None)
    d["id"] = d.get("id") or (str(oid) if oid is not None else None)
    d["_id"] = d["id"]
    for key in hidden:
        d.pop(key, None)
    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, datetime):
            d[key] = as_utc(value)
    return d


def contains(text: str) -> dict:
    """Case-insensitive substring match; user input is never read as a pattern."""
    return {"$regex": re.escape(text.strip()), "$options": "i"}


def count_by_status(collection: str, query: dict, statuses) -> dict:
    require_db()
    return {s: db[collection].count_documents({**query, "status": s}) for s in statuses}


# ------------------------- indexes -------------------------

INDEXES = {
    "user": [
        ([("email", ASCENDING)], {"unique": True}),
        ([("username", ASCENDING)], {"unique": True}),
        ([("phone", ASCENDING)], {"unique": True}),
        ([("role", ASCENDING), ("isActive", ASCENDING)], {}),
    ],
    "invitation": [
        ([("factoryId", ASCENDING), ("hhmId", ASCENDING), ("status", ASCENDING)], {}),
        ([("hhmId", ASCENDING), ("status", ASCENDING)], {}),
        ([("status", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "farmercontract": [
        ([("farmer_id", ASCENDING), ("hhm_id", ASCENDING)], {}),
        ([("status", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "listing": [
        ([("status", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("farmer_id", ASCENDING)], {}),
    ],
    "order": [
        ([("farmerId", ASCENDING), ("status", ASCENDING)], {}),
        ([("buyerId", ASCENDING), ("status", ASCENDING)], {}),
        ([("listingId", ASCENDING)], {}),
    ],
    "schedule": [([("hhmId", ASCENDING), ("status", ASCENDING)], {})],
    "application": [
        ([("workerId", ASCENDING), ("scheduleId", ASCENDING)], {}),
        ([("hhmId", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "notification": [([("userId", ASCENDING), ("read", ASCENDING), ("createdAt", DESCENDING)], {})],
}


def ensure_indexes():
    if db is None:
        return
    try:
        for collection, specs in INDEXES.items():
            for keys, options in specs:
                db[collection].create_index(keys, **options)
        logger.info("MongoDB indexes ensured on %s", DATABASE_NAME)
    except PyMongoError as exc:
        logger.warning("Index creation skipped: %s", exc)
