"""
MongoDB access helpers.

Collections are named after the lowercase schema name (user, product, cart,
order). Documents are stored with snake_case keys and rendered to clients
with camelCase keys by `serialize_doc`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import settings
from errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = MongoClient(settings.DATABASE_URL) if settings.DATABASE_URL else None
db: Optional[Database] = client[settings.DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    """FastAPI dependency yielding the configured database."""
    if db is None:
        raise UpstreamError("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["product"].create_index([("name", ASCENDING)])
    database["product"].create_index([("category", ASCENDING)])
    database["order"].create_index([("user_id", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now_utc()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None) -> List[dict]:
    return list(database[collection_name].find(filter_dict or {}).sort("created_at", -1))


def parse_object_id(value: Any, label: str = "") -> ObjectId:
    """Turn a path/body id into an ObjectId or raise a 400."""
    if isinstance(value, ObjectId):
        return value
    name = f"{label} ID" if label else "ID"
    if not value or not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {name}", field=f"{label}Id" if label else "id")
    return ObjectId(value)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]], exclude: tuple = ()) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out: Dict[str, Any] = {}
    for key, value in doc.items():
        if key in exclude:
            continue
        name = "id" if key == "_id" else to_camel(key)
        out[name] = _serialize_value(value)
    return out
