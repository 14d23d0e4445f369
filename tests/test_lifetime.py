"""Tests for lifetime footprint aggregation."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from bson import ObjectId

import lifetime
from footprint import compute_footprint
from lifetime import (
    LIFETIME_FIELD,
    UserNotFound,
    apply_submission,
    lifetime_increments,
    lifetime_of,
)


def _submit(user_id, distance, mode, electricity, diet):
    return apply_submission(
        user_id, distance, mode, electricity, diet,
        compute_footprint(distance, mode, electricity, diet),
    )


class TestLifetimeIncrements:
    """Tests for the $inc document built per submission."""

    def test_touches_each_bucket_once(self) -> None:
        inc = lifetime_increments(10, "car", 4, "vegan", 5.1)
        base = LIFETIME_FIELD + ".breakdown"
        assert inc[LIFETIME_FIELD + ".total"] == 5.1
        assert inc[base + ".transport.car.value"] == pytest.approx(1.5)
        assert inc[base + ".transport.car.count"] == 1
        assert inc[base + ".electricity.value"] == pytest.approx(2.6)
        assert inc[base + ".electricity.count"] == 1
        assert inc[base + ".diet.value"] == 1.0
        assert inc[base + ".diet.count"] == 1

    def test_unknown_mode_skips_transport(self) -> None:
        inc = lifetime_increments(10, "rocket", 0, None, 0)
        assert not any(".transport." in key for key in inc)

    def test_zero_electricity_is_not_counted(self) -> None:
        inc = lifetime_increments(0, "bus", 0, "vegan", 1.0)
        assert not any(".electricity." in key for key in inc)

    def test_unknown_diet_counts_with_zero_value(self) -> None:
        inc = lifetime_increments(0, None, 0, "carnivore", 0)
        assert inc[LIFETIME_FIELD + ".breakdown.diet.value"] == 0.0
        assert inc[LIFETIME_FIELD + ".breakdown.diet.count"] == 1


class TestApplySubmission:
    """Tests for apply_submission against the store."""

    def test_updates_total_and_breakdown(self, user_id) -> None:
        updated = _submit(user_id, 10, "car", 0, "vegan")
        lifetime = updated[LIFETIME_FIELD]

        assert lifetime["total"] == pytest.approx(2.5)
        assert lifetime["breakdown"]["transport"]["car"]["value"] == pytest.approx(1.5)
        assert lifetime["breakdown"]["transport"]["car"]["count"] == 1
        assert lifetime["breakdown"]["transport"]["bus"]["count"] == 0
        assert lifetime["breakdown"]["electricity"]["count"] == 0
        assert lifetime["breakdown"]["diet"] == {"value": 1.0, "count": 1}

    def test_unknown_values_do_not_create_buckets(self, user_id, mock_db) -> None:
        _submit(user_id, 10, "rocket", 0, "carnivore")
        stored = mock_db["user"].find_one({"_id": user_id})[LIFETIME_FIELD]

        assert set(stored["breakdown"]["transport"]) == {"car", "bus", "bike", "train"}
        assert set(stored["breakdown"]) == {"transport", "electricity", "diet"}
        assert stored["total"] == 0.0

    def test_order_does_not_matter(self, mock_db) -> None:
        first = mock_db["user"].insert_one({"username": "a", LIFETIME_FIELD: {"total": 0}}).inserted_id
        second = mock_db["user"].insert_one({"username": "b", LIFETIME_FIELD: {"total": 0}}).inserted_id
        s1 = (12, "bus", 30, "omnivore")
        s2 = (5, "train", 0, "vegetarian")

        _submit(first, *s1)
        a = lifetime_of(_submit(first, *s2))
        _submit(second, *s2)
        b = lifetime_of(_submit(second, *s1))

        assert a["total"] == pytest.approx(b["total"])
        assert a["breakdown"] == b["breakdown"]
        assert a["breakdown"]["diet"]["count"] == 2
        assert a["breakdown"]["electricity"]["count"] == 1
        assert a["breakdown"]["transport"]["bus"]["count"] == 1
        assert a["breakdown"]["transport"]["train"]["count"] == 1

    def test_missing_user_raises(self, mock_db) -> None:
        with pytest.raises(UserNotFound):
            _submit(ObjectId(), 1, "car", 0, "vegan")

    def test_concurrent_submissions_lose_no_updates(self, user_id, mock_db) -> None:
        """N parallel submissions of footprint v must add up to N * v."""
        submissions = 60

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(_submit, user_id, 10, "car", 0, "vegan") for _ in range(submissions)]
            for future in futures:
                future.result()

        lifetime = mock_db["user"].find_one({"_id": user_id})[LIFETIME_FIELD]
        assert lifetime["total"] == pytest.approx(submissions * 2.5)
        assert lifetime["breakdown"]["transport"]["car"]["count"] == submissions
        assert lifetime["breakdown"]["diet"]["count"] == submissions
        assert lifetime["breakdown"]["electricity"]["count"] == 0


class TestLifetimeOf:
    """Tests for reading an aggregate off a user document."""

    def test_fills_missing_buckets(self) -> None:
        lifetime = lifetime_of({"username": "legacy"})
        assert lifetime["total"] == 0
        assert lifetime["breakdown"]["transport"]["train"] == {"value": 0, "count": 0}
        assert lifetime["breakdown"]["electricity"] == {"value": 0, "count": 0}

    def test_keeps_stored_values(self) -> None:
        user = {LIFETIME_FIELD: {"total": 7.0, "breakdown": {"diet": {"value": 6.0, "count": 1}}}}
        lifetime = lifetime_of(user)
        assert lifetime["total"] == 7.0
        assert lifetime["breakdown"]["diet"] == {"value": 6.0, "count": 1}


class TestUserLocks:
    """Per-user locks are released from the registry once unused."""

    def test_registry_does_not_grow(self, mock_db) -> None:
        user_ids = [mock_db["user"].insert_one({"username": f"u{i}"}).inserted_id for i in range(20)]
        for user_id in user_ids:
            _submit(user_id, 1, "bus", 1, "vegan")
        assert len(lifetime._user_locks) == 0

    def test_same_key_shares_a_lock_while_held(self) -> None:
        held = lifetime._user_locks.get("abc")
        assert lifetime._user_locks.get("abc") is held
        assert len(lifetime._user_locks) == 1
