"""
Authorization rules, independent of the HTTP layer.

authorize() composes four checks: identity verified, account active,
role in the required set, and ownership of the target resource.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

ADMIN = "admin"
STAFF = "staff"
CITIZEN = "citizen"


class Action(str, Enum):
    CREATE_ISSUE = "create_issue"
    EDIT_ISSUE = "edit_issue"
    DELETE_ISSUE = "delete_issue"
    UPVOTE_ISSUE = "upvote_issue"
    VIEW_OWN_ISSUES = "view_own_issues"
    ASSIGN_ISSUE = "assign_issue"
    REJECT_ISSUE = "reject_issue"
    CHANGE_STATUS = "change_status"
    VIEW_USER = "view_user"
    MANAGE_USERS = "manage_users"
    VIEW_PAYMENTS = "view_payments"
    START_CHECKOUT = "start_checkout"
    VIEW_CITIZEN_STATS = "view_citizen_stats"
    VIEW_STAFF_STATS = "view_staff_stats"
    VIEW_ADMIN_STATS = "view_admin_stats"


@dataclass(frozen=True)
class Rule:
    roles: frozenset = frozenset({CITIZEN, STAFF, ADMIN})
    active: bool = False  # blocked accounts are denied
    owner: bool = False  # resource must belong to the caller
    admin_bypasses_owner: bool = True
    owner_field: Optional[str] = None  # dotted path to the owning email, default creator/email


ALL_ROLES = frozenset({CITIZEN, STAFF, ADMIN})
STAFF_ROLES = frozenset({STAFF, ADMIN})
ADMIN_ONLY = frozenset({ADMIN})

RULES = {
    Action.CREATE_ISSUE: Rule(active=True),
    Action.EDIT_ISSUE: Rule(active=True, owner=True),
    Action.DELETE_ISSUE: Rule(owner=True),
    Action.UPVOTE_ISSUE: Rule(active=True),
    Action.VIEW_OWN_ISSUES: Rule(owner=True, admin_bypasses_owner=False),
    Action.ASSIGN_ISSUE: Rule(roles=ADMIN_ONLY),
    Action.REJECT_ISSUE: Rule(roles=ADMIN_ONLY),
    Action.CHANGE_STATUS: Rule(roles=STAFF_ROLES, owner=True, owner_field="assignedStaff.email"),
    Action.VIEW_USER: Rule(owner=True),
    Action.MANAGE_USERS: Rule(roles=ADMIN_ONLY),
    Action.VIEW_PAYMENTS: Rule(roles=ADMIN_ONLY),
    Action.START_CHECKOUT: Rule(active=True),
    Action.VIEW_CITIZEN_STATS: Rule(owner=True),
    Action.VIEW_STAFF_STATS: Rule(roles=STAFF_ROLES, owner=True),
    Action.VIEW_ADMIN_STATS: Rule(roles=ADMIN_ONLY),
}


@dataclass(frozen=True)
class Caller:
    """A verified identity plus whatever the users collection knows about it."""
    email: str
    role: str = CITIZEN
    is_blocked: bool = False
    user_id: Optional[str] = None
    claims: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_record(cls, email: str, record: Optional[dict], claims: Optional[dict] = None) -> "Caller":
        if record is None:
            return cls(email=email, claims=claims or {})
        return cls(
            email=email,
            role=record.get("role", CITIZEN),
            is_blocked=bool(record.get("isBlocked", False)),
            user_id=str(record["_id"]) if record.get("_id") is not None else None,
            claims=claims or {},
        )

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.allowed


ALLOW = Decision(True)


def owner_of(resource, field_path: Optional[str] = None) -> Optional[str]:
    """The email that owns a resource: an issue's creator, a user's email, or a bare email string."""
    if resource is None:
        return None
    if isinstance(resource, str):
        return resource
    if field_path:
        value = resource
        for key in field_path.split("."):
            value = value.get(key) if isinstance(value, dict) else None
        return value
    if "createdBy" in resource:
        return resource.get("createdBy")
    return resource.get("email")


def authorize(caller: Optional[Caller], action: Action, resource=None) -> Decision:
    if caller is None or not caller.email:
        return Decision(False, "Unauthenticated")
    rule = RULES[action]
    if rule.active and caller.is_blocked:
        return Decision(False, "AccountBlocked")
    if caller.role not in rule.roles:
        return Decision(False, "InsufficientRole")
    if rule.owner and resource is not None:
        if rule.admin_bypasses_owner and caller.is_admin:
            return ALLOW
        owner = owner_of(resource, rule.owner_field)
        if owner is None or owner.lower() != caller.email.lower():
            return Decision(False, "NotOwner")
    return ALLOW
