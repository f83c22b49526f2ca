from datetime import date
from typing import Any, Dict, List

import structlog
from bson import ObjectId
from pymongo.database import Database

from database import create_document, serialize_doc, utcnow
from errors import NotFoundError, ValidationError
from schemas import Todo

logger = structlog.get_logger(__name__)


def to_date_key(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def add_todo(db: Database, text: str, date_key: str) -> Dict[str, Any]:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Todo text is required")
    todo = Todo(text=text, completed=False, date_key=date_key)
    todo_id = create_document(db, "todo", todo)
    logger.info("todo_added", todo_id=todo_id, date_key=date_key)
    return serialize_doc(db["todo"].find_one({"_id": ObjectId(todo_id)}))


def todos_for_date(db: Database, date_key: str) -> List[Dict[str, Any]]:
    cursor = db["todo"].find({"date_key": date_key}).sort([("created_at", 1)])
    return [serialize_doc(d) for d in cursor]


def all_todos(db: Database) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in db["todo"].find({}).sort([("created_at", -1)])]


def set_todo_completed(db: Database, todo_id: ObjectId, completed: bool) -> None:
    res = db["todo"].update_one({"_id": todo_id}, {"$set": {"completed": completed, "updated_at": utcnow()}})
    if res.matched_count == 0:
        raise NotFoundError("Todo not found")


def delete_todo(db: Database, todo_id: ObjectId) -> None:
    if db["todo"].delete_one({"_id": todo_id}).deleted_count == 0:
        raise NotFoundError("Todo not found")
    logger.info("todo_deleted", todo_id=str(todo_id))
