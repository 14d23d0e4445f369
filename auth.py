"""
Password hashing and bearer-token authentication.

Tokens are signed with JWT_SECRET, which has no default: without it no token
is issued or accepted. A valid token only identifies the user; username and
role are always read from the stored user document.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel

from database import get_document, to_object_id

load_dotenv()

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


class AuthNotConfigured(RuntimeError):
    """Raised when JWT_SECRET is not set."""


class CurrentUser(BaseModel):
    id: str
    username: str
    role: str = "user"


def jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise AuthNotConfigured("Authentication not configured. Set JWT_SECRET.")
    return secret


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def admin_usernames() -> set:
    raw = os.getenv("ADMIN_USERNAMES", "")
    return {name.strip() for name in raw.split(",") if name.strip()}


def create_access_token(user: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    minutes = JWT_EXPIRES_MINUTES if expires_minutes is None else expires_minutes
    payload = {
        "sub": str(user["_id"]),
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    """Verify signature and expiry and return the user id; raises jwt.PyJWTError on failure."""
    payload = jwt.decode(token, jwt_secret(), algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
    return payload["sub"]


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Token needed")
    try:
        user_id = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=403, detail="Invalid or expired token")

    oid = to_object_id(user_id)
    doc = get_document("user", {"_id": oid}, {"username": 1, "role": 1}) if oid else None
    if not doc:
        logger.info("Rejected bearer token for unknown user %s", user_id)
        raise HTTPException(status_code=403, detail="Invalid or expired token")
    return CurrentUser(id=str(doc["_id"]), username=doc["username"], role=doc.get("role", "user"))


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return user
