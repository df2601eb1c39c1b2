"""
MongoDB access for the storefront.

``db`` is None when no DATABASE_URL/DATABASE_NAME is configured; every
service goes through ``get_db`` so tests can swap ``database.db`` for an
in-memory database.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import settings
from errors import InternalError, ValidationError

_client = None
db = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    _client = MongoClient(settings.DATABASE_URL)
    db = _client[settings.DATABASE_NAME]


def get_db():
    if db is None:
        raise InternalError("Database not available")
    return db


def ensure_indexes(database=None):
    database = database if database is not None else get_db()
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["product"].create_index([("category", ASCENDING)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    # one order per cart version; makes a replayed checkout detectable
    database["order"].create_index([("checkout_key", ASCENDING)], unique=True)


def create_document(collection_name: str, data) -> str:
    """Insert a pydantic model (or dict) stamped with created_at/updated_at."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}")
    return ObjectId(value)


def _public_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_public_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = _public_value(v)
    return out
