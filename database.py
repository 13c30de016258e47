"""
MongoDB access for the catalog API

One MongoClient per process, opened on startup and closed on shutdown.
Collections are named after the lowercase schema class (Product -> "product").
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import NotFound

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect() -> Database:
    """Open the process-wide client. A no-op when a database is already set."""
    global client, db
    if db is not None:
        return db
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]
    logger.info("Connected to MongoDB database %s", config.DATABASE_NAME)
    return db


def disconnect() -> None:
    global client, db
    if client is not None:
        client.close()
        logger.info("MongoDB connection closed")
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database not initialized. Call database.connect() first.")
    return db


def ensure_indexes(database: Database) -> None:
    database["product"].create_index("sku", unique=True, sparse=True)
    database["product"].create_index([("category", ASCENDING), ("price", ASCENDING)])
    database["product"].create_index([("rating", DESCENDING)])
    database["product"].create_index([("created_at", DESCENDING)])
    database["category"].create_index("slug", unique=True)
    database["category"].create_index("name", unique=True)
    database["category"].create_index("parent_category")
    database["review"].create_index([("product", ASCENDING), ("user", ASCENDING)], unique=True)
    database["user"].create_index("email", unique=True)
    database["session"].create_index("token", unique=True)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at/updated_at timestamps and return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(exclude_none=True)
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any, label: str = "Resource") -> ObjectId:
    """Turn a path/body id into an ObjectId; malformed ids are treated as missing."""
    if isinstance(value, ObjectId):
        return value
    if value is None or not ObjectId.is_valid(str(value)):
        raise NotFound(f"{label} not found")
    return ObjectId(str(value))


def serialize(value: Any) -> Any:
    """Make a stored document JSON friendly: _id -> id, ObjectId -> str."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = serialize(item)
        return out
    return value
