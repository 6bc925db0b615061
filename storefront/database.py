"""
MongoDB access.

The client is created lazily from DATABASE_URL / DATABASE_NAME and handed to
request code through ``get_database``; nothing below keeps a module-level
``db`` that routes import directly.
"""
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from storefront import config


@lru_cache(maxsize=1)
def _client() -> Optional[MongoClient]:
    if not config.DATABASE_URL:
        return None
    return MongoClient(config.DATABASE_URL)


def get_database() -> Optional[Database]:
    client = _client()
    if client is None or not config.DATABASE_NAME:
        return None
    return client[config.DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]):
    """Insert a document stamped with created_at/updated_at and return its _id."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    stamp = now_utc()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    return db[collection_name].insert_one(doc).inserted_id
