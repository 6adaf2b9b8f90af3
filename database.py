"""
MongoDB access for the Marketplace API.

The client is created from DATABASE_URL / DATABASE_NAME. When they are not
set ``db`` stays None and the API reports the database as unavailable.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

import config

client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form BSON dates come back in."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalises an incoming datetime to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def next_sequence(database: Database, name: str) -> int:
    """Returns the next sequential id for a collection."""
    counter = database["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def create_document(
    collection_name: str,
    data: Union[BaseModel, Dict[str, Any]],
    database: Optional[Database] = None,
    doc_id: Any = None,
) -> Any:
    """Insert a document with created/updated timestamps and return its id.

    Sequential ids are drawn from the counter collection unless ``doc_id``
    is given.
    """
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not initialized")

    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)

    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    doc["_id"] = doc_id if doc_id is not None else next_sequence(database, collection_name)

    database[collection_name].insert_one(doc)
    return doc["_id"]


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database: Optional[Database] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not initialized")

    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    """Create the indexes the lifecycle queries rely on."""
    database["auction"].create_index([("status", ASCENDING), ("end_time", ASCENDING)])
    database["auction"].create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
    database["bid"].create_index([("auction_id", ASCENDING), ("amount", DESCENDING)])
    database["bid"].create_index([("auction_id", ASCENDING), ("is_winning_bid", ASCENDING)])
    database["offer"].create_index([("auction_id", ASCENDING), ("buyer_id", ASCENDING), ("status", ASCENDING)])
    # at most one PENDING offer per buyer and auction
    database["offer"].create_index(
        [("auction_id", ASCENDING), ("buyer_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "pending"},
        name="one_pending_offer_per_buyer",
    )
    database["offer"].create_index([("status", ASCENDING), ("expires_at", ASCENDING)])
    database["notification"].create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
