"""
User Store Accessor: citizens, staff and admins.
"""
import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import parse_object_id, serialize
from errors import Conflict, NotFound, UpstreamError
from policy import STAFF
from schemas import User

logger = logging.getLogger(__name__)


class UserStore:
    def __init__(self, database, identity=None):
        self.collection = database.users
        self.identity = identity

    def find_by_email(self, email: str) -> Optional[dict]:
        return self.collection.find_one({"email": email})

    def get_by_email(self, email: str) -> dict:
        doc = self.find_by_email(email)
        if doc is None:
            raise NotFound("User not found")
        return serialize(doc)

    def list(self, role: Optional[str] = None) -> list:
        query = {"role": role} if role else {}
        return [serialize(d) for d in self.collection.find(query).sort("createdAt", -1)]

    def list_staff(self) -> list:
        return self.list(role=STAFF)

    def register(self, name: str, email: str, photo: str = "") -> dict:
        """Create a citizen account; a repeat registration for the same email is a no-op."""
        user = User(name=name, email=email, photo=photo or "")
        fields = user.model_dump(mode="python")
        fields.pop("email")
        result = self.collection.update_one(
            {"email": email}, {"$setOnInsert": fields}, upsert=True,
        )
        if result.upserted_id is None:
            return {"message": "User already exists", "insertedId": None}
        logger.info(f"Citizen registered: {email}")
        return {"message": "User created", "insertedId": str(result.upserted_id)}

    def create_staff(self, name: str, email: str, password: str, phone: str = "", photo: str = "") -> dict:
        """
        Provision the identity account, then the local record.

        If the local insert fails the identity account is removed again, so a
        staff member exists in both stores or in neither.
        """
        if self.find_by_email(email) is not None:
            raise Conflict("A user with this email already exists")
        uid = self.identity.create_account(email, password, name)
        user = User(name=name, email=email, phone=phone or "", photo=photo or "", role=STAFF, uid=uid)
        doc = user.model_dump(mode="python")
        try:
            self.collection.insert_one(doc)
        except PyMongoError as e:
            logger.warning(f"Local staff insert failed for {email}, removing identity account {uid}")
            self.identity.delete_account(uid)
            if isinstance(e, DuplicateKeyError):
                raise Conflict("A user with this email already exists")
            raise UpstreamError("Could not create staff record")
        logger.info(f"Staff created: {email}")
        return serialize(doc)

    def update_staff(self, user_id: str, name: str, phone: Optional[str] = None,
                     photo: Optional[str] = None) -> dict:
        changes = {"name": name}
        if phone is not None:
            changes["phone"] = phone
        if photo is not None:
            changes["photo"] = photo
        doc = self.collection.find_one_and_update(
            {"_id": parse_object_id(user_id), "role": STAFF},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("Staff not found")
        return serialize(doc)

    def delete_staff(self, user_id: str) -> int:
        oid = parse_object_id(user_id)
        doc = self.collection.find_one({"_id": oid, "role": STAFF})
        if doc is None:
            raise NotFound("Staff not found")
        if doc.get("uid"):
            self.identity.delete_account(doc["uid"])
        result = self.collection.delete_one({"_id": oid})
        logger.info(f"Staff deleted: {doc['email']}")
        return result.deleted_count

    def set_blocked(self, user_id: str, blocked: bool) -> dict:
        doc = self.collection.find_one_and_update(
            {"_id": parse_object_id(user_id)},
            {"$set": {"isBlocked": blocked}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("User not found")
        logger.info(f"User {doc['email']} {'blocked' if blocked else 'unblocked'}")
        return serialize(doc)

    def grant_premium(self, email: str) -> bool:
        result = self.collection.update_one({"email": email}, {"$set": {"isPremium": True}})
        if result.matched_count == 0:
            logger.warning(f"No user record for {email}, premium not granted")
            return False
        return True
