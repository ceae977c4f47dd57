"""
MongoDB access for CivicAlert.

A Database wraps one MongoClient and is handed to the stores at
construction; main.py opens it in the app lifespan and closes it on shutdown.
"""
import logging
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId as BsonInvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection

from errors import InvalidId

logger = logging.getLogger(__name__)

ISSUES = "issues"
USERS = "users"
PAYMENTS = "payments"
IDENTITIES = "identities"


def parse_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (BsonInvalidId, TypeError):
        raise InvalidId(f"Invalid id: {value}")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Replace Mongo's _id with a string id so the document is JSON friendly."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


class Database:
    def __init__(self, url: str = "mongodb://localhost:27017", name: str = "civic-alert-db",
                 client: Optional[MongoClient] = None):
        self.url = url
        self.name = name
        self.client = client
        self._owns_client = client is None

    def connect(self) -> "Database":
        if self.client is None:
            self.client = MongoClient(self.url)
        self.ensure_indexes()
        logger.info(f"Connected to database '{self.name}'")
        return self

    def close(self):
        if self.client is not None and self._owns_client:
            self.client.close()
            self.client = None
            logger.info("Database connection closed")

    @property
    def db(self):
        if self.client is None:
            raise RuntimeError("Database is not connected")
        return self.client[self.name]

    def collection(self, name: str) -> Collection:
        return self.db[name]

    @property
    def issues(self) -> Collection:
        return self.collection(ISSUES)

    @property
    def users(self) -> Collection:
        return self.collection(USERS)

    @property
    def payments(self) -> Collection:
        return self.collection(PAYMENTS)

    @property
    def identities(self) -> Collection:
        return self.collection(IDENTITIES)

    def ensure_indexes(self):
        self.payments.create_index([("transactionId", ASCENDING)], unique=True)
        self.users.create_index([("email", ASCENDING)], unique=True)
        self.identities.create_index([("email", ASCENDING)], unique=True)

    def ping(self) -> bool:
        self.client.admin.command("ping")
        return True

