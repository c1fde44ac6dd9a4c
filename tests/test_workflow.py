import pytest
from fastapi import HTTPException

from workflow import ACCEPT, REJECT, StatusFlow, normalize_decision


@pytest.fixture
def flow(mock_db):
    return StatusFlow("thing", "pending", "accepted", "rejected", label="Thing")


@pytest.mark.parametrize("value,expected", [
    ("accept", ACCEPT), ("Accepted", ACCEPT), ("approve", ACCEPT),
    ("reject", REJECT), (" declined ", REJECT), ("decline", REJECT),
])
def test_normalize_decision(value, expected):
    assert normalize_decision(value) == expected


@pytest.mark.parametrize("value", ["maybe", "", None])
def test_normalize_decision_rejects_unknown(value):
    with pytest.raises(HTTPException) as exc:
        normalize_decision(value)
    assert exc.value.status_code == 400


def test_create_sets_pending_and_timestamps(flow, mock_db):
    record = flow.create({"owner": "a"})
    stored = mock_db["thing"].find_one({"id": record["id"]})
    assert stored["status"] == "pending"
    assert stored["createdAt"] is not None


def test_create_refuses_active_duplicate(flow):
    flow.create({"owner": "a"}, conflict={"owner": "a"})
    with pytest.raises(HTTPException) as exc:
        flow.create({"owner": "a"}, conflict={"owner": "a"}, detail="Already there")
    assert exc.value.status_code == 409
    assert exc.value.detail == "Already there"


def test_rejected_record_does_not_block_new_one(flow):
    first = flow.create({"owner": "a"}, conflict={"owner": "a"})
    flow.respond(first, "reject")
    second = flow.create({"owner": "a"}, conflict={"owner": "a"})
    assert second["id"] != first["id"]


def test_respond_moves_to_terminal_status(flow):
    record = flow.create({"owner": "a"})
    updated = flow.respond(record, "accept", "  sounds good ")
    assert updated["status"] == "accepted"
    assert updated["respondedAt"] is not None
    assert updated["responseMessage"] == "sounds good"


def test_second_response_is_refused(flow):
    record = flow.create({"owner": "a"})
    updated = flow.respond(dict(record), "accept")
    with pytest.raises(HTTPException) as exc:
        flow.respond(updated, "reject")
    assert exc.value.status_code == 400


def test_stale_copy_loses_the_race(flow, mock_db):
    record = flow.create({"owner": "a"})
    stale = flow.get(record["id"])
    flow.respond(flow.get(record["id"]), "accept")
    with pytest.raises(HTTPException) as exc:
        flow.respond(stale, "reject")
    assert exc.value.status_code == 400
    assert mock_db["thing"].find_one({"id": record["id"]})["status"] == "accepted"


def test_get_missing_record(flow):
    with pytest.raises(HTTPException) as exc:
        flow.get("64b000000000000000000000")
    assert exc.value.status_code == 404
    assert exc.value.detail == "Thing not found"
