"""
MongoDB access.

The client is created lazily on first use so importing the application never
opens a connection. Route handlers receive the database through the
``get_db`` dependency, which tests override with an in-memory store.
"""

import logging
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    global _client, db
    _client = MongoClient(url or config.DATABASE_URL, tz_aware=False)
    db = _client[name or config.DATABASE_NAME]
    return db


def close() -> None:
    global _client, db
    if _client is not None:
        _client.close()
        logger.info("DB connection closed")
    _client = None
    db = None


def get_db() -> Database:
    if db is None:
        connect()
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)

    tours = database["tour"]
    tours.create_index("name", unique=True)
    tours.create_index([("price", ASCENDING), ("ratings_average", DESCENDING)])
    tours.create_index("slug")
    tours.create_index([("start_location", "2dsphere")])

    database["review"].create_index([("tour_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    database["booking"].create_index("user_id")
