"""
MongoDB access helpers.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; every
helper then raises DatabaseUnavailable.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

import config

logger = logging.getLogger(__name__)


class DatabaseUnavailable(RuntimeError):
    pass


def _connect():
    if not config.DATABASE_URL or not config.DATABASE_NAME:
        logger.warning("DATABASE_URL or DATABASE_NAME not set; running without a database")
        return None, None
    mongo = MongoClient(config.DATABASE_URL, tz_aware=True)
    return mongo, mongo[config.DATABASE_NAME]


client, db = _connect()


def _now():
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValueError(f"Invalid id format: {id_str!r}")


def collection(name: str):
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db[name]


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="json")
    else:
        data_dict = data.copy()
    data_dict["created_at"] = _now()
    data_dict["updated_at"] = _now()
    result = collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None,
                  sort: Optional[List[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return collection(collection_name).find_one({"_id": to_object_id(doc_id)})


def find_one(collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return collection(collection_name).find_one(filter_dict)


def update_document(collection_name: str, doc_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply a $set and return the updated document, or None when missing."""
    coll = collection(collection_name)
    res = coll.update_one({"_id": to_object_id(doc_id)}, {"$set": {**updates, "updated_at": _now()}})
    if res.matched_count == 0:
        return None
    return coll.find_one({"_id": to_object_id(doc_id)})


def delete_document(collection_name: str, doc_id: str) -> bool:
    res = collection(collection_name).delete_one({"_id": to_object_id(doc_id)})
    return res.deleted_count > 0


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    return collection(collection_name).count_documents(filter_dict or {})


def run_atomic(callback: Callable[[Any], Any]) -> Any:
    """
    Run callback(session) as one grouped write.

    With MONGO_USE_TRANSACTIONS the callback runs inside a transaction;
    otherwise it runs directly with session=None.
    """
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    if not config.MONGO_USE_TRANSACTIONS:
        return callback(None)
    with client.start_session() as session:
        return session.with_transaction(callback)
