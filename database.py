"""
MongoDB access: the shared client, the request-scoped `get_db` dependency and
a small repository wrapper used by every route module.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, status
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

client: Optional[MongoClient] = MongoClient(DATABASE_URL) if DATABASE_URL else None
db: Optional[Database] = client[DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["vehicle"].create_index("registration_number", unique=True)
    database["vehicle"].create_index("owner_id")
    database["order"].create_index("customer_id")
    database["order"].create_index("seller_id")
    database["service_request"].create_index("owner_id")
    database["service_request"].create_index("repairer_id")
    database["review"].create_index(
        [("user_id", ASCENDING), ("target_type", ASCENDING), ("target_id", ASCENDING)],
        unique=True,
    )


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back by default."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    doc.pop("hashed_password", None)
    return doc


def drop_nulls(changes: Dict[str, Any], model: type) -> Dict[str, Any]:
    """Remove explicit nulls for fields that `model` stores as non-nullable."""
    nullable = {name for name, field in model.model_fields.items() if field.default is None}
    return {k: v for k, v in changes.items() if v is not None or k in nullable}


class Repository:
    """CRUD over one collection. Ids go in and come out as strings."""

    def __init__(self, database: Database, collection_name: str):
        self.collection = database[collection_name]

    def get(self, doc_id: Any) -> Optional[dict]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find_one(self, filter_dict: Dict[str, Any]) -> Optional[dict]:
        return self.collection.find_one(filter_dict)

    def find(
        self,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[List[tuple]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[dict]:
        cursor = self.collection.find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def count(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(filter_dict or {})

    def create(self, data: Union[BaseModel, dict]) -> str:
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        now = utcnow()
        doc["created_at"] = now
        doc["updated_at"] = now
        result = self.collection.insert_one(doc)
        return str(result.inserted_id)

    def update(
        self,
        doc_id: Any,
        changes: Dict[str, Any],
        extra_filter: Optional[Dict[str, Any]] = None,
        **operators: Dict[str, Any],
    ) -> Optional[dict]:
        """Apply `$set` (plus any extra update operators) and return the new document.

        Returns None when nothing matched `_id` and `extra_filter`.
        """
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if extra_filter:
            query.update(extra_filter)
        update = {"$set": {**changes, "updated_at": utcnow()}}
        for op, value in operators.items():
            update["$" + op] = value
        return self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)

    def delete(self, doc_id: Any) -> bool:
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        return bool(self.collection.delete_one({"_id": oid}).deleted_count)

    def restore(self, doc: dict) -> None:
        """Put back a document exactly as it was read."""
        self.collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)
