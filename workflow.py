"""
Status-gated request/response records.

Invitations, farmer contracts, buy orders and job applications all follow
the same life cycle: a record is created in a pending status by one party
and answered exactly once by the other, moving it to an accepted or a
rejected status. `StatusFlow` holds that life cycle for one collection.
"""

import logging
from typing import Iterable, Optional

from fastapi import HTTPException

from database import db, get_by_id, insert_with_id, require_db, utcnow

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"

DECISIONS = {
    "accept": ACCEPT,
    "accepted": ACCEPT,
    "approve": ACCEPT,
    "approved": ACCEPT,
    "reject": REJECT,
    "rejected": REJECT,
    "decline": REJECT,
    "declined": REJECT,
}


def normalize_decision(value: Optional[str]) -> str:
    decision = DECISIONS.get((value or "").strip().lower())
    if decision is None:
        raise HTTPException(status_code=400, detail='Decision must be either "accept" or "reject"')
    return decision


class StatusFlow:
    def __init__(self, collection: str, pending: str, accepted: str, rejected: str,
                 active: Optional[Iterable[str]] = None, label: str = "Record"):
        self.collection = collection
        self.pending = pending
        self.accepted = accepted
        self.rejected = rejected
        self.active = list(active) if active is not None else [pending, accepted]
        self.label = label

    def find_active(self, query: dict):
        require_db()
        return db[self.collection].find_one({**query, "status": {"$in": self.active}})

    def ensure_no_active(self, query: dict, detail: Optional[str] = None):
        existing = self.find_active(query)
        if existing:
            logger.warning("Refused duplicate %s for %s", self.collection, query)
            raise HTTPException(
                status_code=409,
                detail=detail or f"An active {self.label.lower()} already exists",
            )

    def create(self, doc: dict, conflict: Optional[dict] = None, detail: Optional[str] = None) -> dict:
        if conflict is not None:
            self.ensure_no_active(conflict, detail)
        now = utcnow()
        doc.update({"status": self.pending, "createdAt": now, "updatedAt": now})
        insert_with_id(self.collection, doc)
        logger.info("Created %s %s", self.collection, doc["id"])
        return doc

    def get(self, record_id: str) -> dict:
        record = get_by_id(self.collection, record_id)
        if not record:
            raise HTTPException(status_code=404, detail=f"{self.label} not found")
        record["id"] = record.get("id") or str(record.get("_id"))
        return record

    def respond(self, record: dict, decision: str, message: Optional[str] = None,
                extra: Optional[dict] = None) -> dict:
        decision = normalize_decision(decision)
        if record.get("status") != self.pending:
            raise HTTPException(
                status_code=400,
                detail=f"{self.label} is already {record.get('status')}. Only pending records can be responded to.",
            )
        now = utcnow()
        update = {
            **(extra or {}),
            "status": self.accepted if decision == ACCEPT else self.rejected,
            "respondedAt": now,
            "updatedAt": now,
        }
        if message:
            update["responseMessage"] = message.strip()
        # Only the first response wins; the status filter makes this a compare-and-swap.
        res = db[self.collection].update_one({"id": record["id"], "status": self.pending}, {"$set": update})
        if res.modified_count == 0:
            raise HTTPException(status_code=400, detail=f"{self.label} has already been responded to")
        logger.info("%s %s -> %s", self.collection, record["id"], update["status"])
        return {**record, **update}
