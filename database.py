"""
Database connection handle

One ``Database`` object is created by the application factory and shared by
every request handler. The first ``connect()`` opens the MongoDB client;
callers arriving while that attempt is in flight wait for its outcome
instead of opening a second client.
"""

import logging
import os
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database as MongoDatabase
from pymongo.errors import PyMongoError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

PRODUCTS = "products"
CARTS = "carts"
USERS = "users"


class Database:
    def __init__(
        self,
        url: Optional[str] = None,
        name: Optional[str] = None,
        client_factory: Callable[[str], Any] = MongoClient,
    ):
        self.url = url or DATABASE_URL
        self.name = name or DATABASE_NAME
        self._client_factory = client_factory
        self._client = None
        self._db: Optional[MongoDatabase] = None
        self._pending: Optional[Future] = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._db is not None

    def connect(self) -> MongoDatabase:
        if self._db is not None:
            return self._db

        with self._lock:
            if self._db is not None:
                return self._db
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()

        if not owner:
            logger.debug("Waiting on in-flight connection to %s", self.name)
            return pending.result()

        try:
            logger.info("Opening connection to database %s", self.name)
            client = self._client_factory(self.url)
            db = client[self.name]
        except Exception as exc:
            logger.error("Error while connecting to the database: %s", exc)
            with self._lock:
                self._pending = None
            pending.set_exception(exc)
            raise

        with self._lock:
            self._client = client
            self._db = db
            self._pending = None
        pending.set_result(db)
        return db

    def init(self) -> MongoDatabase:
        db = self.connect()
        ensure_indexes(db)
        return db

    def close(self) -> None:
        with self._lock:
            client, self._client, self._db = self._client, None, None
        if client is not None:
            client.close()
            logger.info("Closed connection to database %s", self.name)


def ensure_indexes(db: MongoDatabase) -> None:
    try:
        db[USERS].create_index([("uid", ASCENDING)], unique=True)
        db[USERS].create_index([("email", ASCENDING)], unique=True)
        db[CARTS].create_index([("userId", ASCENDING)], unique=True)
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
