"""
MongoDB access.

Collections are named after the lowercased schema class (User -> "user",
WeddingRing -> "weddingring").
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL
from errors import ExternalServiceError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise ExternalServiceError("Database not available", status_code=503)
    return db


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("passwordResetToken", sparse=True)
    database["order"].create_index("orderNumber", unique=True)
    database["order"].create_index([("createdAt", DESCENDING)])
    database["order"].create_index([("customerEmail", ASCENDING), ("createdAt", DESCENDING)])
    database["order"].create_index("paymentInfo.stripePaymentIntentId")
    logger.info("Indexes ensured on %s", database.name)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    database = database if database is not None else get_db()
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def to_object_id(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, dict):
            doc[k] = {ik: str(iv) if isinstance(iv, ObjectId) else iv for ik, iv in v.items()}
    return doc
