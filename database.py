"""
Database helpers

MongoDB connection shared by the API and the core services. Each collection is
named after the lowercased schema class (Product -> "product").
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import StoreUnavailable

logger = logging.getLogger(__name__)

DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

_client: Optional[MongoClient] = None
db: Optional[Database] = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    # Bounded timeouts so a dead store surfaces as an error instead of a hang
    _client = MongoClient(
        database_url,
        serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
        connectTimeoutMS=DATABASE_TIMEOUT_MS,
        socketTimeoutMS=DATABASE_TIMEOUT_MS,
    )
    db = _client[database_name]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set; database unavailable")


def now() -> datetime:
    return datetime.now(timezone.utc)


def parse_id(id_str: Optional[str]) -> Optional[ObjectId]:
    """ObjectId for a string id, or None when it is not a valid id."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def with_id(doc: Optional[dict]) -> Optional[dict]:
    """Copy of a raw document with its _id exposed as a string id."""
    if doc is None:
        return None
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


@contextmanager
def store_errors(operation: str):
    """Surface driver failures as StoreUnavailable."""
    try:
        yield
    except PyMongoError as e:
        logger.error("store failure during %s: %s", operation, e)
        raise StoreUnavailable(f"Document store unavailable during {operation}") from e


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict["created_at"] = now()
    data_dict["updated_at"] = now()
    result = target[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database: Optional[Database] = None,
) -> List[dict]:
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    cursor = target[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["tenant"].create_index([("slug", ASCENDING)], unique=True)
    database["employee"].create_index([("tenant_id", ASCENDING), ("email", ASCENDING)], unique=True)
    database["order"].create_index([("employee_id", ASCENDING), ("request_id", ASCENDING)], unique=True)
    database["order"].create_index([("tenant_id", ASCENDING), ("status", ASCENDING)])
    database["user"].create_index([("email", ASCENDING), ("role", ASCENDING), ("tenant_id", ASCENDING)], unique=True)
    database["address"].create_index([("employee_id", ASCENDING)], unique=True)
