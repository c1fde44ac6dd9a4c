import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import contracts
import dashboards
import database
import invitations
import jobs
import listings
import notifications
import orders
import users
from database import utcnow

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
API_VERSION = "1.0.0"

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.ensure_indexes()
    logger.info("Sugarcane Platform API %s started", API_VERSION)
    yield


app = FastAPI(title="Sugarcane Platform API", version=API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, users, invitations, contracts, listings, orders, jobs, notifications, dashboards):
    app.include_router(module.router)

# ------------------------- Error envelope -------------------------


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ------------------------- Root and health -------------------------

@app.get("/")
def read_root():
    return {
        "success": True,
        "message": "Sugarcane Platform API running",
        "version": API_VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "profile": "/api/profile",
            "users": "/api/users",
            "factories": "/api/public/factories",
            "invitations": ["/api/factory/invitations", "/api/hhm/factory-invitations"],
            "contracts": "/api/farmer-contracts",
            "listings": "/api/listings",
            "orders": "/api/orders",
            "schedules": "/api/hhm/schedules",
            "jobs": "/api/worker/jobs",
            "notifications": "/api/notifications",
            "health": "/api/health",
        },
    }


def database_status() -> str:
    if database.db is None:
        return "not configured"
    try:
        database.db.list_collection_names()
        return "connected"
    except PyMongoError as e:
        return f"unavailable: {str(e)[:80]}"


@app.get("/api/health")
def health():
    return {"status": "OK", "timestamp": utcnow(), "database": database_status()}


@app.get("/test")
def test_database():
    response = {"backend": "✅ Running", "database": "❌ Not Available", "collections": []}
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()
            response["database"] = "✅ Connected"
    except PyMongoError as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
