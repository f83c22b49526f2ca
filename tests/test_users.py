"""Unit tests for customer profiles and account deletion."""

from __future__ import annotations

from bson import ObjectId
import pytest

import users
from errors import NotFoundError, ValidationError
from security import hash_password


def _user(db, user_id: str):
    return db["user"].find_one({"_id": ObjectId(user_id)})


class TestUpdateProfile:
    """Tests for profile edits."""

    def test_updates_name_and_shipping(self, db, customer_user, shipping_info) -> None:
        """Test the display name is trimmed and the shipping address saved."""
        profile = users.update_profile(db, customer_user["id"], name="  Jane Q. Doe ", shipping_info=shipping_info)

        assert profile["name"] == "Jane Q. Doe"
        assert profile["shipping_info"]["zip"] == "20000"
        assert "password_hash" not in profile
        assert users.saved_shipping_info(db, customer_user["id"]) == shipping_info

    def test_blank_name_rejected(self, db, customer_user) -> None:
        """Test a whitespace-only name is refused and the old name kept."""
        with pytest.raises(ValidationError, match="Display name cannot be empty"):
            users.update_profile(db, customer_user["id"], name="   ")

        assert _user(db, customer_user["id"])["name"] == "Jane"

    def test_nothing_to_update(self, db, customer_user) -> None:
        """Test an empty update is refused."""
        with pytest.raises(ValidationError):
            users.update_profile(db, customer_user["id"])

    def test_unknown_user(self, db) -> None:
        """Test updating a missing user raises NotFoundError."""
        with pytest.raises(NotFoundError):
            users.update_profile(db, str(ObjectId()), name="Ghost")


class TestAccountDeletion:
    """Tests for account deletion requests."""

    def test_marks_and_disables_account(self, db, customer_user) -> None:
        """Test a deletion request records the time and disables the account."""
        db["user"].update_one(
            {"_id": ObjectId(customer_user["id"])}, {"$set": {"password_hash": hash_password("s3cret-pass")}}
        )

        users.request_account_deletion(db, customer_user["id"], "s3cret-pass")

        user = _user(db, customer_user["id"])
        assert user["deletion_requested_at"] is not None
        assert user["status"] == "inactive"

    def test_wrong_password(self, db, customer_user) -> None:
        """Test the password is checked before anything changes."""
        db["user"].update_one(
            {"_id": ObjectId(customer_user["id"])}, {"$set": {"password_hash": hash_password("s3cret-pass")}}
        )

        with pytest.raises(ValidationError, match="Incorrect password"):
            users.request_account_deletion(db, customer_user["id"], "nope-nope")

        assert _user(db, customer_user["id"]).get("deletion_requested_at") is None
        assert _user(db, customer_user["id"])["status"] == "active"
