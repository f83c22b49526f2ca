from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from bson import ObjectId
from fastapi import HTTPException
from pymongo import MongoClient
from pymongo.database import Database

from settings import DATABASE_NAME, DATABASE_URL

logger = structlog.get_logger(__name__)

# MongoClient connects lazily, so importing this module never blocks on the server
client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Any) -> str:
    if hasattr(data, "model_dump"):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    logger.debug("document_created", collection=collection_name, id=str(result.inserted_id))
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if "_id" in doc:
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def parse_object_id(value: str, label: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except Exception:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
