import logging
import os
import re
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from database import db, get_by_id, insert_with_id, require_db, serialize, utcnow
from schemas import COMMON_PROFILE_FIELDS, PROFILE_FIELDS, ROLES

logger = logging.getLogger(__name__)

# JWT / Auth setup
SECRET_KEY = os.getenv("SECRET_KEY", "devsecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=int(os.getenv("BCRYPT_ROUNDS", 12)),
)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

router = APIRouter(prefix="/api/auth", tags=["auth"])

EMAIL_RE = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)*\.\w{2,}$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,20}$")

# ------------------------- Auth utils -------------------------

def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def public_user(user: dict) -> dict:
    return serialize(user)


# Dependency: get current user from token

def get_current_user(token: str = Depends(oauth2_scheme)):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired. Please login again.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token. Please login again.")
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    user = get_by_id("user", user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Token is valid but user no longer exists.")
    if user.get("isActive") is False:
        raise HTTPException(status_code=401, detail="User account has been deactivated.")
    user["id"] = user.get("id") or str(user.get("_id"))
    return user


def require_roles(*roles):
    def wrapper(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Required role: {' or '.join(roles)}. Your role: {user.get('role')}",
            )
        return user
    return wrapper


def filter_profile(role: str, data: Optional[dict]) -> dict:
    """Keep only the profile fields the role is allowed to set."""
    allowed = set(COMMON_PROFILE_FIELDS) | set(PROFILE_FIELDS.get(role, []))
    return {k: v for k, v in (data or {}).items() if k in allowed and v is not None}

# ------------------------- Auth endpoints -------------------------

class RegisterBody(BaseModel):
    name: str
    username: str
    email: str
    phone: str
    password: str
    role: str
    location: Optional[str] = None
    profile: Optional[dict] = None


@router.post("/register", status_code=201)
def register(body: RegisterBody):
    require_db()
    name = body.name.strip()
    username = body.username.strip().lower()
    email = body.email.strip().lower()
    phone = body.phone.strip()
    if not name or len(name) > 50:
        raise HTTPException(status_code=400, detail="Name is required and cannot be more than 50 characters")
    if not USERNAME_RE.match(username):
        raise HTTPException(status_code=400, detail="Username must be 3-20 letters, numbers or underscores")
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Please provide a valid email address")
    if not PHONE_RE.match(phone):
        raise HTTPException(status_code=400, detail="Please provide a valid phone number")
    if body.role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(ROLES)}")
    if len(body.password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters long")

    existing = db["user"].find_one({"$or": [{"email": email}, {"username": username}, {"phone": phone}]})
    if existing:
        if existing.get("email") == email:
            field = "email"
        elif existing.get("username") == username:
            field = "username"
        else:
            field = "phone"
        raise HTTPException(status_code=409, detail=f"User with this {field} already exists")

    now = utcnow()
    user_doc = {
        **filter_profile(body.role, body.profile),
        "name": name,
        "username": username,
        "email": email,
        "phone": phone,
        "passwordHash": get_password_hash(body.password),
        "role": body.role,
        "isActive": True,
        "createdAt": now,
        "updatedAt": now,
    }
    if body.location:
        user_doc["location"] = body.location.strip()
    if body.role == "HHM":
        user_doc["associatedFactories"] = []
    elif body.role == "Factory":
        user_doc["associatedHHMs"] = []
    elif body.role == "Worker":
        user_doc.setdefault("availability", "Available")
    user_id = insert_with_id("user", user_doc)
    logger.info("Registered %s user %s (%s)", body.role, username, user_id)

    token = create_access_token({"sub": user_id, "role": body.role})
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"user": public_user(user_doc), "token": token},
    }


@router.post("/login")
def login(payload: dict = Body(...)):
    require_db()
    identifier = payload.get("identifier") or payload.get("username") or payload.get("email") or payload.get("phone")
    password = payload.get("password")
    if not identifier or not password:
        raise HTTPException(status_code=400, detail="Please provide username/email/phone and password")
    identifier = str(identifier).strip()
    user = db["user"].find_one({
        "$or": [{"username": identifier.lower()}, {"email": identifier.lower()}, {"phone": identifier}],
        "isActive": True,
    })
    if not user or not verify_password(password, user.get("passwordHash", "")):
        logger.warning("Failed login for %s", identifier)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user_id = user.get("id") or str(user.get("_id"))
    token = create_access_token({"sub": user_id, "role": user.get("role")})
    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": public_user(user), "token": token, "token_type": "bearer"},
    }


@router.get("/verify")
def verify(user=Depends(get_current_user)):
    return {"success": True, "message": "Token is valid", "data": {"user": public_user(user)}}
