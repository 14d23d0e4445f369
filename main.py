import logging
import math
import os
from contextlib import asynccontextmanager
from datetime import datetime, date, timezone
from typing import List, Optional, Any, Dict

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    AuthNotConfigured,
    CurrentUser,
    admin_usernames,
    create_access_token,
    get_current_user,
    hash_password,
    jwt_secret,
    require_admin,
    verify_password,
)
from database import (
    DatabaseUnavailable,
    count_documents,
    create_document,
    ensure_indexes,
    get_collection,
    get_document,
    get_documents,
    to_object_id,
)
from footprint import compute_footprint
from lifetime import UserNotFound, apply_submission, lifetime_of
from recommendations import recommend
from schemas import CamelModel, Carbonfootprint, Content, User

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("carbon_tracker")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
    try:
        jwt_secret()
    except AuthNotConfigured as e:
        logger.error("%s Login and protected endpoints will answer 503.", e)
    yield


app = FastAPI(title="Carbon Footprint Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --------- Errors ---------
@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc: StarletteHTTPException):
    return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request, exc: RequestValidationError):
    # no raw inputs: passwords, and NaN is not valid JSON
    errors = [{k: v for k, v in error.items() if k != "input"} for error in exc.errors()]
    return JSONResponse(
        {"message": "Validation failed", "errors": jsonable_encoder(errors)},
        status_code=422,
    )


@app.exception_handler(DatabaseUnavailable)
async def database_unavailable(request, exc: DatabaseUnavailable):
    return JSONResponse({"message": str(exc)}, status_code=503)


@app.exception_handler(AuthNotConfigured)
async def auth_not_configured(request, exc: AuthNotConfigured):
    return JSONResponse({"message": str(exc)}, status_code=503)


@app.exception_handler(PyMongoError)
async def database_error(request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"message": "Internal server error"}, status_code=500)


# --------- Models ---------
class CredentialsIn(CamelModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=72)


class ProfileUpdateIn(CamelModel):
    username: Optional[str] = Field(None, min_length=1, max_length=64)
    password: Optional[str] = Field(None, min_length=1, max_length=72)


class CalculateIn(CamelModel):
    transport_distance: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    transport_mode: Optional[str] = None
    electricity_usage: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    diet: Optional[str] = None


class HistoryIn(CamelModel):
    transport_distance: float = Field(..., ge=0, allow_inf_nan=False)
    transport_mode: str
    electricity_usage: float = Field(..., ge=0, allow_inf_nan=False)
    diet: str
    carbon_footprint: Optional[float] = None
    date: Optional[datetime] = None


class FriendIn(CamelModel):
    friend_id: str


class ContentIn(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1)


# --------- Utils ---------

def _serialize(value: Any) -> Any:
    if isinstance(value, dict):
        d = dict(value)
        if "_id" in d:
            d["id"] = str(d.pop("_id"))
        d.pop("password", None)
        return {k: _serialize(v) for k, v in d.items()}
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    # Convert datetime/date to isoformat
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _user_oid(user: CurrentUser) -> ObjectId:
    oid = to_object_id(user.id)
    if oid is None:
        raise HTTPException(status_code=403, detail="Invalid or expired token")
    return oid


def _load_user(user: CurrentUser) -> Dict[str, Any]:
    doc = get_document("user", {"_id": _user_oid(user)})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return doc


# --------- Basic ---------
@app.get("/")
def read_root():
    return {"message": "Carbon Footprint Tracker API running"}


# --------- Accounts ---------
@app.post("/signup", status_code=201)
def signup(credentials: CredentialsIn):
    if get_document("user", {"username": credentials.username}):
        raise HTTPException(status_code=409, detail="Username already exists")
    role = "admin" if credentials.username in admin_usernames() else "user"
    user = User(
        username=credentials.username,
        password=hash_password(credentials.password),
        role=role,
    )
    try:
        uid = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Username already exists")
    logger.info("Registered %s user %s", role, credentials.username)
    return {"message": "User registered successfully", "id": uid}


@app.post("/login")
def login(credentials: CredentialsIn):
    doc = get_document("user", {"username": credentials.username})
    if not doc or not verify_password(credentials.password, doc["password"]):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"token": create_access_token(doc)}


@app.get("/profile")
def get_profile(user: CurrentUser = Depends(get_current_user)):
    doc = _load_user(user)
    activities = get_documents(
        "carbonfootprint", {"userId": doc["_id"]}, limit=5, sort=[("date", -1)]
    )
    return {
        "username": doc["username"],
        "role": doc.get("role", "user"),
        "activities": _serialize(activities),
    }


@app.put("/profile")
def update_profile(update: ProfileUpdateIn, user: CurrentUser = Depends(get_current_user)):
    doc = _load_user(user)
    changes: Dict[str, Any] = {}
    if update.username and update.username != doc["username"]:
        if get_document("user", {"username": update.username}):
            raise HTTPException(status_code=409, detail="Username already exists")
        changes["username"] = update.username
    if update.password:
        changes["password"] = hash_password(update.password)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    changes["updated_at"] = datetime.now(timezone.utc)
    try:
        get_collection("user").update_one({"_id": doc["_id"]}, {"$set": changes})
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Username already exists")
    return {"message": "Profile updated"}


# --------- Carbon ---------
@app.post("/calculate-carbon")
def calculate_carbon(activity: CalculateIn, user: CurrentUser = Depends(get_current_user)):
    footprint = compute_footprint(
        activity.transport_distance,
        activity.transport_mode,
        activity.electricity_usage,
        activity.diet,
    )
    return {"carbonFootprint": footprint}


@app.post("/save-carbon-history", status_code=201)
def save_carbon_history(activity: HistoryIn, user: CurrentUser = Depends(get_current_user)):
    uid = _user_oid(user)
    footprint = compute_footprint(
        activity.transport_distance,
        activity.transport_mode,
        activity.electricity_usage,
        activity.diet,
    )
    if activity.carbon_footprint is not None and not math.isclose(activity.carbon_footprint, footprint):
        logger.info(
            "Client footprint %s for %s differs from computed %s; storing the computed value",
            activity.carbon_footprint, user.username, footprint,
        )

    record = Carbonfootprint(
        user_id=uid,
        transport_distance=activity.transport_distance,
        transport_mode=activity.transport_mode,
        electricity_usage=activity.electricity_usage,
        diet=activity.diet,
        carbon_footprint=footprint,
        date=activity.date or datetime.now(timezone.utc),
    )
    record_id = create_document("carbonfootprint", record)

    # The history record stays saved even if the aggregate update fails.
    try:
        apply_submission(
            uid,
            activity.transport_distance,
            activity.transport_mode,
            activity.electricity_usage,
            activity.diet,
            footprint,
        )
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except PyMongoError:
        logger.exception("Lifetime update failed for %s after saving record %s", user.username, record_id)
        raise HTTPException(
            status_code=500,
            detail="Carbon history saved but lifetime footprint update failed",
        )

    logger.info("Saved %.3f kg CO2 for %s", footprint, user.username)
    return {"message": "Carbon footprint history saved", "id": record_id, "carbonFootprint": footprint}


@app.get("/history")
def history(user: CurrentUser = Depends(get_current_user)):
    docs = get_documents("carbonfootprint", {"userId": _user_oid(user)}, sort=[("date", -1)])
    return _serialize(docs)


@app.get("/lifetime-carbon")
def lifetime_carbon(user: CurrentUser = Depends(get_current_user)):
    lifetime = lifetime_of(_load_user(user))
    return {"totalCarbonFootprint": lifetime["total"], "breakdown": lifetime["breakdown"]}


@app.get("/recommendations")
def recommendations(user: CurrentUser = Depends(get_current_user)):
    lifetime = lifetime_of(_load_user(user))
    return {"recommendations": recommend(lifetime["breakdown"])}


# --------- Friends ---------
@app.post("/addfriend")
def add_friend(payload: FriendIn, user: CurrentUser = Depends(get_current_user)):
    uid = _user_oid(user)
    friend_oid = to_object_id(payload.friend_id)
    friend = get_document("user", {"_id": friend_oid}) if friend_oid else None
    if not friend:
        raise HTTPException(status_code=404, detail="User not found")
    if friend_oid == uid:
        raise HTTPException(status_code=400, detail="You cannot add yourself as a friend")

    result = get_collection("user").update_one(
        {"_id": uid, "friends": {"$ne": friend_oid}},
        {"$push": {"friends": friend_oid}},
    )
    if result.matched_count == 0:
        if not get_document("user", {"_id": uid}):
            raise HTTPException(status_code=404, detail="User not found")
        raise HTTPException(status_code=409, detail="Already friends")
    logger.info("%s added %s as a friend", user.username, friend["username"])
    return {"message": f"{friend['username']} added as a friend"}


@app.get("/friends")
def list_friends(user: CurrentUser = Depends(get_current_user)):
    doc = _load_user(user)
    friend_ids: List[ObjectId] = doc.get("friends") or []
    if not friend_ids:
        return []
    friends = get_documents("user", {"_id": {"$in": friend_ids}}, sort=[("username", 1)])
    return [{"username": f["username"]} for f in friends]


# --------- Content ---------
@app.get("/content")
def list_content(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
):
    total = count_documents("content")
    docs = get_documents(
        "content", limit=limit, skip=(page - 1) * limit, sort=[("created_at", -1), ("_id", -1)]
    )
    return {
        "items": _serialize(docs),
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


@app.post("/content", status_code=201)
def publish_content(payload: ContentIn, admin: CurrentUser = Depends(require_admin)):
    cid = create_document("content", Content(title=payload.title, body=payload.body, author=admin.username))
    logger.info("%s published content %s", admin.username, cid)
    return {"message": "Content published", "id": cid}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
