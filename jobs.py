"""
Work schedules posted by HHMs and the applications workers send to them.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import require_roles
from database import as_utc, contains, db, get_by_id, insert_with_id, list_many, paginate, serialize, utcnow
from notifications import notify
from schemas import APPLICATION_STATUSES, JOB_TYPES, SCHEDULE_STATUSES, Application, Availability, JobType, Schedule
from workflow import ACCEPT, StatusFlow, normalize_decision

logger = logging.getLogger(__name__)

applications = StatusFlow("application", "pending", "approved", "rejected", label="Application")

router = APIRouter(tags=["jobs"])


class ScheduleIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    requiredSkills: List[str]
    workerCount: int = Field(..., ge=1, le=1000)
    wageOffered: float = Field(..., ge=0)
    startDate: datetime
    endDate: Optional[datetime] = None
    jobType: JobType = "harvesting"


class ScheduleStatusIn(BaseModel):
    status: str


class ApplicationIn(BaseModel):
    scheduleId: str
    applicationMessage: Optional[str] = Field("", max_length=1000)
    workerSkills: List[str]
    expectedWage: Optional[float] = Field(None, ge=0)
    availability: Availability = "flexible"


class ReviewIn(BaseModel):
    status: str
    reviewNotes: Optional[str] = Field(None, max_length=500)


def clean_skills(skills: List[str], field: str) -> List[str]:
    cleaned = [s.strip() for s in skills if s and s.strip()]
    if not cleaned:
        raise HTTPException(status_code=400, detail=f"{field} must contain at least one skill")
    return cleaned


def check_choice(value: str, allowed, field: str):
    if value not in allowed:
        raise HTTPException(status_code=400, detail=f"{field} must be one of: {', '.join(allowed)}")


def schedule_view(schedule: dict) -> dict:
    d = serialize(schedule)
    d["openPositions"] = max(0, schedule.get("workerCount", 0) - schedule.get("acceptedWorkersCount", 0))
    return d


def get_own_schedule(schedule_id: str, user: dict) -> dict:
    schedule = get_by_id("schedule", schedule_id)
    if not schedule or schedule.get("hhmId") != user["id"]:
        raise HTTPException(status_code=404, detail="Schedule not found")
    schedule["id"] = schedule.get("id") or str(schedule["_id"])
    return schedule


# ------------------------- HHM: schedules -------------------------

@router.post("/api/hhm/schedules", status_code=201)
def create_schedule(body: ScheduleIn, user=Depends(require_roles("HHM"))):
    start = as_utc(body.startDate)
    end = as_utc(body.endDate)
    if start <= utcnow():
        raise HTTPException(status_code=400, detail="Start date must be in the future")
    if end is not None and end <= start:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    now = utcnow()
    doc = Schedule(
        hhmId=user["id"],
        title=body.title.strip(),
        description=body.description,
        location=body.location,
        requiredSkills=clean_skills(body.requiredSkills, "requiredSkills"),
        workerCount=body.workerCount,
        wageOffered=body.wageOffered,
        startDate=start,
        endDate=end,
        jobType=body.jobType,
    ).model_dump()
    doc.update({"createdAt": now, "updatedAt": now})
    insert_with_id("schedule", doc)
    logger.info("Schedule %s posted by HHM %s", doc["id"], user["id"])
    return {"success": True, "message": "Schedule created successfully", "data": schedule_view(doc)}


@router.get("/api/hhm/schedules")
def my_schedules(status: Optional[str] = None, user=Depends(require_roles("HHM"))):
    query = {"hhmId": user["id"]}
    if status:
        check_choice(status, SCHEDULE_STATUSES, "Status")
        query["status"] = status
    return {"success": True, "data": [schedule_view(s) for s in list_many("schedule", query, sort=[("createdAt", -1)])]}


@router.get("/api/hhm/schedules/{schedule_id}")
def schedule_detail(schedule_id: str, user=Depends(require_roles("HHM"))):
    schedule = get_own_schedule(schedule_id, user)
    apps = list_many("application", {"scheduleId": schedule["id"]}, sort=[("createdAt", -1)])
    return {"success": True, "data": {**schedule_view(schedule), "applications": [serialize(a) for a in apps]}}


@router.put("/api/hhm/schedules/{schedule_id}/status")
def set_schedule_status(schedule_id: str, body: ScheduleStatusIn, user=Depends(require_roles("HHM"))):
    check_choice(body.status, SCHEDULE_STATUSES, "Status")
    schedule = get_own_schedule(schedule_id, user)
    if body.status == "open" and schedule.get("acceptedWorkersCount", 0) >= schedule.get("workerCount", 0):
        raise HTTPException(status_code=400, detail="Schedule is already fully staffed")
    db["schedule"].update_one({"id": schedule["id"]}, {"$set": {"status": body.status, "updatedAt": utcnow()}})
    return {"success": True, "message": f"Schedule {body.status}", "data": schedule_view({**schedule, "status": body.status})}


# ------------------------- Worker: jobs and applications -------------------------

@router.get("/api/worker/jobs")
def browse_jobs(skill: Optional[str] = None, location: Optional[str] = None, jobType: Optional[str] = None,
                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                user=Depends(require_roles("Worker"))):
    query = {"status": "open"}
    if skill:
        query["requiredSkills"] = contains(skill)
    if location:
        query["location"] = contains(location)
    if jobType:
        check_choice(jobType, JOB_TYPES, "jobType")
        query["jobType"] = jobType
    items, pagination = paginate("schedule", query, [("startDate", 1)], page, limit)
    applied = {a["scheduleId"]: a["status"] for a in list_many("application", {"workerId": user["id"]})}
    data = []
    for s in items:
        view = schedule_view(s)
        view["applicationStatus"] = applied.get(view["id"])
        data.append(view)
    return {"success": True, "data": data, "pagination": pagination}


@router.post("/api/worker/applications", status_code=201)
def apply_to_job(body: ApplicationIn, user=Depends(require_roles("Worker"))):
    schedule = get_by_id("schedule", body.scheduleId)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    schedule_id = schedule.get("id") or str(schedule["_id"])
    if schedule.get("status") != "open":
        raise HTTPException(status_code=400, detail="This schedule is not accepting applications")
    if schedule.get("acceptedWorkersCount", 0) >= schedule.get("workerCount", 0):
        raise HTTPException(status_code=400, detail="This schedule is already full")
    if user.get("availability") != "Available":
        raise HTTPException(status_code=400, detail="Set your availability to Available before applying")

    doc = Application(
        workerId=user["id"],
        scheduleId=schedule_id,
        hhmId=schedule["hhmId"],
        applicationMessage=(body.applicationMessage or "").strip(),
        workerSkills=clean_skills(body.workerSkills, "workerSkills"),
        expectedWage=body.expectedWage,
        availability=body.availability,
    ).model_dump()
    app = applications.create(
        doc,
        conflict={"workerId": user["id"], "scheduleId": schedule_id},
        detail="You have already applied to this schedule",
    )
    db["schedule"].update_one({"id": schedule_id}, {"$inc": {"applicationsCount": 1}})
    notify(schedule["hhmId"], "application_received", "New job application",
           f"{user.get('name')} applied to {schedule.get('title')}.", link=f"/schedules/{schedule_id}")
    return {"success": True, "message": "Application submitted successfully", "data": serialize(app)}


@router.get("/api/worker/applications")
def my_applications(status: Optional[str] = None, user=Depends(require_roles("Worker"))):
    query = {"workerId": user["id"]}
    if status:
        check_choice(status, APPLICATION_STATUSES, "Status")
        query["status"] = status
    data = []
    for a in list_many("application", query, sort=[("createdAt", -1)]):
        view = serialize(a)
        schedule = get_by_id("schedule", a["scheduleId"])
        view["schedule"] = schedule_view(schedule) if schedule else None
        data.append(view)
    return {"success": True, "data": data}


@router.delete("/api/worker/applications/{application_id}")
def withdraw_application(application_id: str, user=Depends(require_roles("Worker"))):
    app = applications.get(application_id)
    if app["workerId"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only withdraw your own applications")
    if app["status"] != "pending":
        raise HTTPException(status_code=400, detail="Only pending applications can be withdrawn")
    res = db["application"].delete_one({"id": app["id"], "status": "pending"})
    if res.deleted_count == 0:
        raise HTTPException(status_code=400, detail="Application has already been reviewed")
    db["schedule"].update_one({"id": app["scheduleId"]}, {"$inc": {"applicationsCount": -1}})
    return {"success": True, "message": "Application withdrawn"}


# ------------------------- HHM: reviewing applications -------------------------

@router.get("/api/hhm/applications")
def received_applications(status: Optional[str] = None, scheduleId: Optional[str] = None,
                          user=Depends(require_roles("HHM"))):
    query = {"hhmId": user["id"]}
    if status:
        check_choice(status, APPLICATION_STATUSES, "Status")
        query["status"] = status
    if scheduleId:
        query["scheduleId"] = scheduleId
    data = []
    for a in list_many("application", query, sort=[("createdAt", -1)]):
        view = serialize(a)
        worker = get_by_id("user", a["workerId"]) or {}
        view["worker"] = {
            "id": a["workerId"],
            "name": worker.get("name"),
            "phone": worker.get("phone"),
            "skills": worker.get("skills"),
            "location": worker.get("location"),
        }
        data.append(view)
    return {"success": True, "data": data}


def reserve_seat(schedule_id: str) -> dict:
    """Take one open position on the schedule. Returns the schedule as it was before."""
    schedule = get_by_id("schedule", schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    # a schedule closed by its HHM takes no further approvals
    if schedule.get("status") != "open":
        raise HTTPException(status_code=400, detail="This schedule is closed")
    # workerCount never changes after creation, so the filter below is the capacity guard
    res = db["schedule"].find_one_and_update(
        {"_id": schedule["_id"], "status": "open", "acceptedWorkersCount": {"$lt": schedule["workerCount"]}},
        {"$inc": {"acceptedWorkersCount": 1}, "$set": {"updatedAt": utcnow()}},
    )
    if res is None:
        raise HTTPException(status_code=400, detail="This schedule is already fully staffed")
    return res


@router.put("/api/hhm/applications/{application_id}")
def review_application(application_id: str, body: ReviewIn, user=Depends(require_roles("HHM"))):
    decision = normalize_decision(body.status)
    app = applications.get(application_id)
    if app["hhmId"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only review applications to your own schedules")

    extra = {"reviewNotes": body.reviewNotes.strip()} if body.reviewNotes else None
    if decision == ACCEPT:
        if app.get("status") != applications.pending:
            raise HTTPException(status_code=400, detail=f"Application is already {app.get('status')}")
        schedule = reserve_seat(app["scheduleId"])
        try:
            updated = applications.respond(app, decision, extra=extra)
        except HTTPException:
            db["schedule"].update_one({"_id": schedule["_id"]}, {"$inc": {"acceptedWorkersCount": -1}})
            raise
        if schedule["acceptedWorkersCount"] + 1 >= schedule["workerCount"]:
            db["schedule"].update_one({"_id": schedule["_id"]}, {"$set": {"status": "closed", "updatedAt": utcnow()}})
            logger.info("Schedule %s fully staffed, closed", app["scheduleId"])
    else:
        # rejecting stays possible on a closed schedule so pending applications can be cleared
        updated = applications.respond(app, decision, extra=extra)

    notify(updated["workerId"], f"application_{updated['status']}", f"Application {updated['status']}",
           f"Your application was {updated['status']}.", link=f"/applications/{updated['id']}")
    return {"success": True, "message": f"Application {updated['status']}", "data": serialize(updated)}
