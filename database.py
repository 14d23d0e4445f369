"""
Database helpers

MongoDB connection bootstrap and small generic helpers shared by the API.
The client is created from DATABASE_URL / DATABASE_NAME; when either is
missing `db` stays None and every helper raises DatabaseUnavailable.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]


class DatabaseUnavailable(RuntimeError):
    """Raised when no database has been configured."""


def get_collection(collection_name: str):
    if db is None:
        raise DatabaseUnavailable("Database not available. Set DATABASE_URL and DATABASE_NAME.")
    return db[collection_name]


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a request; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = get_collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def get_document(collection_name: str, filter_dict: Dict[str, Any],
                 projection: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return get_collection(collection_name).find_one(filter_dict, projection)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    skip: int = 0,
) -> List[Dict[str, Any]]:
    cursor = get_collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    return get_collection(collection_name).count_documents(filter_dict or {})


def ensure_indexes() -> None:
    if db is None:
        logger.warning("No database configured; skipping index creation")
        return
    db["user"].create_index([("username", ASCENDING)], unique=True)
    db["carbonfootprint"].create_index([("userId", ASCENDING), ("date", ASCENDING)])
    logger.info("Indexes ensured on %s", db.name)
