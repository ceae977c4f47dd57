"""
Issue Store Accessor.

All mutations that touch status, priority or upvotes are single atomic
document updates. The timeline is only ever written through append_event(),
which $push-es one entry; nothing reassigns the array.
"""
import logging
import re
from typing import Optional

from pymongo import ReturnDocument

from database import parse_object_id, serialize
from errors import Conflict, Forbidden, InvalidId, NotFound
from schemas import PRIORITY_RANK, Issue, TimelineEntry, utcnow

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "category", "location", "image")


def sort_issues(docs: list) -> list:
    """High priority first, then newest first."""
    docs = sorted(docs, key=lambda d: d.get("createdAt") or 0, reverse=True)
    return sorted(docs, key=lambda d: PRIORITY_RANK.get(d.get("priority"), len(PRIORITY_RANK)))


class IssueStore:
    def __init__(self, database):
        self.collection = database.issues

    # ---------- reads ----------

    def _find(self, issue_id: str) -> dict:
        doc = self.collection.find_one({"_id": parse_object_id(issue_id)})
        if doc is None:
            raise NotFound("Issue not found")
        return doc

    def get(self, issue_id: str) -> dict:
        return serialize(self._find(issue_id))

    def list(self, search: Optional[str] = None, status: Optional[str] = None,
             category: Optional[str] = None, extra: Optional[dict] = None) -> list:
        query = dict(extra or {})
        if search:
            query["title"] = {"$regex": re.escape(search), "$options": "i"}
        if status:
            query["status"] = status
        if category:
            query["category"] = category
        return [serialize(d) for d in sort_issues(list(self.collection.find(query)))]

    def by_creator(self, email: str) -> list:
        return self.list(extra={"createdBy": email})

    def assigned_to(self, staff_email: str) -> list:
        return self.list(extra={"assignedStaff.email": staff_email})

    def has_upvoted(self, issue_id: str, email: str) -> bool:
        try:
            oid = parse_object_id(issue_id)
        except InvalidId:
            return False
        return self.collection.count_documents({"_id": oid, "upvotedBy": email}) > 0

    # ---------- writes ----------

    def create(self, title: str, description: str, category: str, location: str,
               created_by: str, priority: str = "Normal", image: str = "",
               payment_status: Optional[str] = None) -> dict:
        issue = Issue(
            title=title,
            description=description,
            category=category,
            location=location,
            image=image or "",
            priority=priority or "Normal",
            paymentStatus=payment_status,
            createdBy=created_by,
            timeline=[TimelineEntry(status="Pending", message="Issue reported", actor=created_by)],
        )
        doc = issue.model_dump(mode="python")
        result = self.collection.insert_one(doc)
        logger.info(f"Issue {result.inserted_id} created by {created_by}")
        return serialize(doc)

    def append_event(self, issue_id: str, entry: TimelineEntry, changes: Optional[dict] = None) -> dict:
        """Apply `changes` and append one timeline entry in a single atomic update."""
        update = {
            "$set": {**(changes or {}), "updatedAt": utcnow()},
            "$push": {"timeline": entry.model_dump(mode="python")},
        }
        doc = self.collection.find_one_and_update(
            {"_id": parse_object_id(issue_id)}, update, return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("Issue not found")
        return serialize(doc)

    def update(self, issue_id: str, fields: dict) -> dict:
        changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
        changes["updatedAt"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"_id": parse_object_id(issue_id)}, {"$set": changes}, return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("Issue not found")
        return serialize(doc)

    def delete(self, issue_id: str) -> int:
        result = self.collection.delete_one({"_id": parse_object_id(issue_id)})
        return result.deleted_count

    def upvote(self, issue_id: str, voter: str) -> dict:
        oid = parse_object_id(issue_id)
        doc = self.collection.find_one_and_update(
            {"_id": oid, "createdBy": {"$ne": voter}, "upvotedBy": {"$nin": [voter]}},
            {"$inc": {"upvotes": 1}, "$push": {"upvotedBy": voter}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return serialize(doc)
        # Nothing matched: work out why.
        current = self.collection.find_one({"_id": oid}, {"createdBy": 1, "upvotedBy": 1})
        if current is None:
            raise NotFound("Issue not found")
        if current.get("createdBy") == voter:
            raise Forbidden("SelfVote", "You cannot upvote your own issue")
        raise Conflict("You have already upvoted this issue")

    def assign(self, issue_id: str, staff: dict, actor: str) -> dict:
        entry = TimelineEntry(
            status="Pending",
            message=f"Issue assigned to {staff['name']}",
            actor=actor,
        )
        doc = self.append_event(issue_id, entry, {"assignedStaff": staff, "status": "Pending"})
        logger.info(f"Issue {issue_id} assigned to {staff['email']} by {actor}")
        return doc

    def reject(self, issue_id: str, actor: str, message: Optional[str] = None) -> dict:
        entry = TimelineEntry(status="Rejected", message=message or "Issue rejected", actor=actor)
        doc = self.append_event(issue_id, entry, {"status": "Rejected"})
        logger.info(f"Issue {issue_id} rejected by {actor}")
        return doc

    def change_status(self, issue_id: str, status: str, actor: str, message: Optional[str] = None) -> dict:
        entry = TimelineEntry(status=status, message=message or f"Status changed to {status}", actor=actor)
        doc = self.append_event(issue_id, entry, {"status": status})
        logger.info(f"Issue {issue_id} moved to {status} by {actor}")
        return doc

    def promote(self, issue_id: str, actor: str) -> dict:
        current = self._find(issue_id)
        entry = TimelineEntry(
            status=current.get("status", "Pending"),
            message="Issue boosted to High priority",
            actor=actor,
        )
        doc = self.append_event(issue_id, entry, {"priority": "High", "paymentStatus": "Paid"})
        logger.info(f"Issue {issue_id} promoted to High priority")
        return doc
