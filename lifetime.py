"""
Lifetime footprint aggregation.

Every saved submission is folded into the owning user's
`lifetimeCarbonFootprint` with one atomic `$inc`. Updates for the same user
are also serialized inside the process so a user's increments are applied by
one writer at a time.
"""

import logging
import threading
import weakref
from copy import deepcopy
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ReturnDocument

from database import get_collection
from footprint import TRANSPORT_MODES, footprint_contributions
from schemas import LifetimeCarbonFootprint

logger = logging.getLogger(__name__)

LIFETIME_FIELD = "lifetimeCarbonFootprint"
BREAKDOWN_PATH = LIFETIME_FIELD + ".breakdown"


class UserNotFound(LookupError):
    pass


class _Lock:
    """Per-user lock stored in the weak registry below."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self):
        return self._lock.__enter__()

    def __exit__(self, *exc):
        return self._lock.__exit__(*exc)


class _KeyedLocks:
    """One lock per key, created on first use and dropped once nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, _Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, key: str) -> "_Lock":
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = _Lock()
            return lock


_user_locks = _KeyedLocks()


def lifetime_of(user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Aggregate stored on a user document, with absent buckets zero-filled."""
    stored = (user or {}).get(LIFETIME_FIELD) or {}
    return LifetimeCarbonFootprint.model_validate(deepcopy(stored)).model_dump(by_alias=True)


def lifetime_increments(
    distance: Optional[float],
    mode: Optional[str],
    electricity_usage: Optional[float],
    diet: Optional[str],
    total_footprint: float,
) -> Dict[str, float]:
    """Build the `$inc` document for one submission.

    A transport bucket is touched only for a known mode, electricity only
    when usage is nonzero, diet whenever a diet was given (unknown diets add
    0 but still count). The running total takes the full footprint.
    """
    parts = footprint_contributions(distance, mode, electricity_usage, diet)
    inc: Dict[str, float] = {LIFETIME_FIELD + ".total": total_footprint}

    if mode in TRANSPORT_MODES:
        inc[f"{BREAKDOWN_PATH}.transport.{mode}.value"] = parts["transport"]
        inc[f"{BREAKDOWN_PATH}.transport.{mode}.count"] = 1

    if electricity_usage:
        inc[f"{BREAKDOWN_PATH}.electricity.value"] = parts["electricity"]
        inc[f"{BREAKDOWN_PATH}.electricity.count"] = 1

    if diet:
        inc[f"{BREAKDOWN_PATH}.diet.value"] = parts["diet"]
        inc[f"{BREAKDOWN_PATH}.diet.count"] = 1

    return inc


def apply_submission(
    user_id: ObjectId,
    distance: Optional[float],
    mode: Optional[str],
    electricity_usage: Optional[float],
    diet: Optional[str],
    total_footprint: float,
) -> Dict[str, Any]:
    """Fold one submission into the user's lifetime aggregate.

    Returns the updated user document. Raises UserNotFound when no user has
    `user_id`; store errors propagate unchanged.
    """
    inc = lifetime_increments(distance, mode, electricity_usage, diet, total_footprint)
    with _user_locks.get(str(user_id)):
        updated = get_collection("user").find_one_and_update(
            {"_id": user_id},
            {"$inc": inc},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise UserNotFound(str(user_id))
    logger.debug("Lifetime total for %s is now %s", user_id, updated[LIFETIME_FIELD]["total"])
    return updated
