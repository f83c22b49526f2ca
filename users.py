"""Customer profiles and the admin user list."""

from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo.database import Database

from database import get_documents, utcnow
from errors import NotFoundError, ValidationError
from schemas import Role
from security import public_user, verify_password

logger = structlog.get_logger(__name__)


def _load(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": ObjectId(user_id)}) if ObjectId.is_valid(user_id) else None
    if not user:
        raise NotFoundError("User not found")
    return user


def list_users(db: Database) -> List[Dict[str, Any]]:
    users = []
    for doc in get_documents(db, "user", sort=[("created_at", -1)]):
        user = public_user(doc)
        users.append({
            "id": user["id"],
            "full_name": user.get("name", ""),
            "email": user.get("email", ""),
            "role": user.get("role", "customer"),
            "status": "inactive" if user.get("status") == "inactive" else "active",
            "order_history": user.get("order_history", 0),
            "last_order_date": user.get("last_order_date"),
        })
    return users


def set_role(db: Database, user_id: str, role: Role, changed_by: str) -> Dict[str, Any]:
    user = _load(db, user_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role, "updated_at": utcnow()}})
    logger.info("user_role_changed", user_id=user_id, role=role, changed_by=changed_by)
    return public_user(db["user"].find_one({"_id": user["_id"]}))


def update_profile(
    db: Database,
    user_id: str,
    name: Optional[str] = None,
    shipping_info: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Update the display name and/or the saved shipping address.

    Fields left as ``None`` are not touched. A name made only of whitespace
    is refused.
    """
    user = _load(db, user_id)
    updates: Dict[str, Any] = {}
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Display name cannot be empty.")
        updates["name"] = name
    if shipping_info is not None:
        updates["shipping_info"] = shipping_info
    if not updates:
        raise ValidationError("No fields to update")

    updates["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    logger.info("profile_updated", user_id=user_id, fields=sorted(updates))
    return public_user(db["user"].find_one({"_id": user["_id"]}))


def saved_shipping_info(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    return _load(db, user_id).get("shipping_info")


def request_account_deletion(db: Database, user_id: str, password: str) -> None:
    """Mark the account for deletion and disable it. The password is re-checked first."""
    user = _load(db, user_id)
    if not verify_password(password, user.get("password_hash", "")):
        raise ValidationError("Incorrect password")
    now = utcnow()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"deletion_requested_at": now, "status": "inactive", "updated_at": now}},
    )
    logger.info("account_deletion_requested", user_id=user_id)
