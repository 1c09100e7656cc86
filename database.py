"""
Database helpers for the storefront

The Mongo client is created once from DATABASE_URL / DATABASE_NAME. Route
handlers never touch the module global directly: they receive the handle
through the get_db dependency so tests can swap in an in-memory database.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import ServiceError, ValidationFailed

from dotenv import load_dotenv
load_dotenv()

_client = None
db: Optional[Database] = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db() -> Database:
    if db is None:
        raise ServiceError(500, "Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
    """Insert a document stamped with created_at/updated_at and return its id"""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return result.inserted_id


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    projection: Optional[dict] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    """Parse a path/body id, answering 400 instead of letting bson raise"""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValidationFailed(f"Invalid {field}")


def populate(
    database: Database,
    docs: List[dict],
    field: str,
    collection_name: str,
    projection: Optional[dict] = None,
) -> List[dict]:
    """
    Resolve the reference stored in `field` of every doc in place.

    The field may hold a single ObjectId or a list of them. All referenced
    documents are fetched with one $in query. A reference that no longer
    resolves (the target was deleted) becomes None.
    """
    ids = set()
    for doc in docs:
        ref = doc.get(field)
        if isinstance(ref, list):
            ids.update(r for r in ref if isinstance(r, ObjectId))
        elif isinstance(ref, ObjectId):
            ids.add(ref)
    if not ids:
        return docs

    found = {
        d["_id"]: d
        for d in database[collection_name].find({"_id": {"$in": list(ids)}}, projection)
    }
    for doc in docs:
        ref = doc.get(field)
        if isinstance(ref, list):
            doc[field] = [found.get(r) if isinstance(r, ObjectId) else r for r in ref]
        elif isinstance(ref, ObjectId):
            doc[field] = found.get(ref)
    return docs


def serialize(value: Any) -> Any:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str, datetime -> ISO string"""
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = str(v)
            else:
                out[k] = serialize(v)
        return out
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        # Photo bytes never belong in JSON payloads
        return None
    return value


def serialize_many(docs: Iterable[dict]) -> List[dict]:
    return [serialize(d) for d in docs]
