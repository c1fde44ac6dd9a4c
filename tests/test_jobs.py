from datetime import datetime, timedelta, timezone

import pytest


def future(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def schedule_body(**overrides):
    return {
        "title": "Harvest block 7",
        "location": "Baramati",
        "requiredSkills": ["cutting", "loading"],
        "workerCount": 2,
        "wageOffered": 650,
        "startDate": future(3),
        "endDate": future(10),
        **overrides,
    }


@pytest.fixture
def hhm(make_user):
    return make_user("HHM")


@pytest.fixture
def schedule(client, hhm):
    _, headers = hhm
    return client.post("/api/hhm/schedules", headers=headers, json=schedule_body()).json()["data"]


def apply(client, headers, schedule, **overrides):
    return client.post("/api/worker/applications", headers=headers, json={
        "scheduleId": schedule["id"],
        "workerSkills": ["cutting"],
        "applicationMessage": "Available all week",
        **overrides,
    })


def test_create_schedule(client, hhm):
    user, headers = hhm
    res = client.post("/api/hhm/schedules", headers=headers, json=schedule_body())
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["status"] == "open"
    assert data["hhmId"] == user["id"]
    assert data["openPositions"] == 2
    assert data["applicationsCount"] == 0


@pytest.mark.parametrize("overrides", [
    {"startDate": future(-1)},
    {"endDate": future(1)},
    {"requiredSkills": []},
    {"requiredSkills": ["  "]},
    {"workerCount": 0},
    {"jobType": "planting"},
])
def test_schedule_validation(client, hhm, overrides):
    _, headers = hhm
    res = client.post("/api/hhm/schedules", headers=headers, json=schedule_body(**overrides))
    assert res.status_code == 400


def test_worker_browses_open_jobs(client, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker")
    res = client.get("/api/worker/jobs", params={"location": "barAMATI"}, headers=worker_headers)
    assert [j["id"] for j in res.json()["data"]] == [schedule["id"]]
    assert res.json()["data"][0]["applicationStatus"] is None

    client.put(f"/api/hhm/schedules/{schedule['id']}/status", headers=hhm_headers, json={"status": "closed"})
    assert client.get("/api/worker/jobs", headers=worker_headers).json()["data"] == []


def test_apply_once_per_schedule(client, mock_db, make_user, schedule):
    _, worker_headers = make_user("Worker")
    res = apply(client, worker_headers, schedule)
    assert res.status_code == 201
    assert res.json()["data"]["status"] == "pending"
    assert apply(client, worker_headers, schedule).status_code == 409
    assert mock_db["schedule"].find_one({"id": schedule["id"]})["applicationsCount"] == 1


def test_unavailable_worker_cannot_apply(client, make_user, schedule):
    _, worker_headers = make_user("Worker")
    client.put("/api/profile", headers=worker_headers, json={"availability": "Unavailable"})
    assert apply(client, worker_headers, schedule).status_code == 400


def test_apply_needs_skills(client, make_user, schedule):
    _, worker_headers = make_user("Worker")
    assert apply(client, worker_headers, schedule, workerSkills=[]).status_code == 400


def test_approval_fills_and_closes_schedule(client, mock_db, make_user, hhm, schedule):
    _, hhm_headers = hhm
    apps = []
    for _ in range(3):
        _, headers = make_user("Worker")
        apps.append((apply(client, headers, schedule).json()["data"], headers))

    for app, _ in apps[:2]:
        res = client.put(f"/api/hhm/applications/{app['id']}", headers=hhm_headers,
                         json={"status": "approved", "reviewNotes": "See you Monday"})
        assert res.status_code == 200
        assert res.json()["data"]["reviewNotes"] == "See you Monday"

    stored = mock_db["schedule"].find_one({"id": schedule["id"]})
    assert stored["acceptedWorkersCount"] == 2
    assert stored["status"] == "closed"

    last, _ = apps[2]
    res = client.put(f"/api/hhm/applications/{last['id']}", headers=hhm_headers, json={"status": "approved"})
    assert res.status_code == 400

    _, late_headers = make_user("Worker")
    assert apply(client, late_headers, schedule).status_code == 400


def test_rejection_allows_reapplying(client, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker")
    app = apply(client, worker_headers, schedule).json()["data"]
    client.put(f"/api/hhm/applications/{app['id']}", headers=hhm_headers, json={"status": "rejected"})
    mine = client.get("/api/worker/applications", headers=worker_headers).json()["data"]
    assert mine[0]["status"] == "rejected"
    assert mine[0]["schedule"]["id"] == schedule["id"]
    assert apply(client, worker_headers, schedule).status_code == 201


def test_withdraw_own_pending_application(client, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker")
    _, other_headers = make_user("Worker")
    app = apply(client, worker_headers, schedule).json()["data"]
    assert client.delete(f"/api/worker/applications/{app['id']}", headers=other_headers).status_code == 403
    assert client.delete(f"/api/worker/applications/{app['id']}", headers=worker_headers).status_code == 200

    app = apply(client, worker_headers, schedule).json()["data"]
    client.put(f"/api/hhm/applications/{app['id']}", headers=hhm_headers, json={"status": "approved"})
    assert client.delete(f"/api/worker/applications/{app['id']}", headers=worker_headers).status_code == 400


def test_hhm_lists_applications(client, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker", name="Ganesh")
    apply(client, worker_headers, schedule)
    res = client.get("/api/hhm/applications", params={"scheduleId": schedule["id"], "status": "pending"},
                     headers=hhm_headers)
    data = res.json()["data"]
    assert len(data) == 1 and data[0]["worker"]["name"] == "Ganesh"

    detail = client.get(f"/api/hhm/schedules/{schedule['id']}", headers=hhm_headers).json()["data"]
    assert len(detail["applications"]) == 1


def test_other_hhm_cannot_review(client, make_user, schedule):
    _, worker_headers = make_user("Worker")
    _, stranger_headers = make_user("HHM")
    app = apply(client, worker_headers, schedule).json()["data"]
    res = client.put(f"/api/hhm/applications/{app['id']}", headers=stranger_headers, json={"status": "approved"})
    assert res.status_code == 403
    assert client.get(f"/api/hhm/schedules/{schedule['id']}", headers=stranger_headers).status_code == 404


def test_closed_schedule_refuses_approval(client, mock_db, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker")
    app = apply(client, worker_headers, schedule).json()["data"]
    client.put(f"/api/hhm/schedules/{schedule['id']}/status", headers=hhm_headers, json={"status": "closed"})

    res = client.put(f"/api/hhm/applications/{app['id']}", headers=hhm_headers, json={"status": "approved"})
    assert res.status_code == 400
    assert mock_db["schedule"].find_one({"id": schedule["id"]})["acceptedWorkersCount"] == 0
    assert mock_db["application"].find_one({"id": app["id"]})["status"] == "pending"

    res = client.put(f"/api/hhm/applications/{app['id']}", headers=hhm_headers, json={"status": "rejected"})
    assert res.status_code == 200


def test_full_schedule_is_never_overfilled(client, mock_db, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker")
    app = apply(client, worker_headers, schedule).json()["data"]
    # another approval already took the last seat while the schedule still reads open
    mock_db["schedule"].update_one({"id": schedule["id"]}, {"$set": {"acceptedWorkersCount": 2}})

    res = client.put(f"/api/hhm/applications/{app['id']}", headers=hhm_headers, json={"status": "approved"})
    assert res.status_code == 400
    assert mock_db["schedule"].find_one({"id": schedule["id"]})["acceptedWorkersCount"] == 2
    assert mock_db["application"].find_one({"id": app["id"]})["status"] == "pending"


def test_reviewing_twice_does_not_take_a_second_seat(client, mock_db, make_user, hhm, schedule):
    _, hhm_headers = hhm
    _, worker_headers = make_user("Worker")
    app = apply(client, worker_headers, schedule).json()["data"]
    url = f"/api/hhm/applications/{app['id']}"
    assert client.put(url, headers=hhm_headers, json={"status": "approved"}).status_code == 200
    assert client.put(url, headers=hhm_headers, json={"status": "approved"}).status_code == 400
    assert mock_db["schedule"].find_one({"id": schedule["id"]})["acceptedWorkersCount"] == 1


@pytest.mark.parametrize("url, params", [
    ("/api/hhm/schedules", {"status": "bogus"}),
    ("/api/hhm/applications", {"status": "bogus"}),
])
def test_hhm_filter_validation(client, hhm, url, params):
    _, headers = hhm
    res = client.get(url, params=params, headers=headers)
    assert res.status_code == 400


@pytest.mark.parametrize("url, params", [
    ("/api/worker/jobs", {"jobType": "planting"}),
    ("/api/worker/applications", {"status": "bogus"}),
])
def test_worker_filter_validation(client, make_user, url, params):
    _, headers = make_user("Worker")
    res = client.get(url, params=params, headers=headers)
    assert res.status_code == 400
