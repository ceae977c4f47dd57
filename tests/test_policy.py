"""
Tests for policy.authorize().
"""
from policy import Action, Caller, authorize

CITIZEN = Caller(email="a@x.com")
OTHER = Caller(email="b@x.com")
BLOCKED = Caller(email="c@x.com", is_blocked=True)
STAFF = Caller(email="s@x.com", role="staff")
ADMIN = Caller(email="admin@x.com", role="admin")

ISSUE = {"title": "Pothole", "createdBy": "a@x.com"}
ASSIGNED = {"title": "Pothole", "createdBy": "a@x.com", "assignedStaff": {"name": "Sam", "email": "s@x.com"}}


class TestAuthorize:

    def test_missing_caller_is_unauthenticated(self):
        decision = authorize(None, Action.CREATE_ISSUE)
        assert not decision
        assert decision.reason == "Unauthenticated"

    def test_blocked_account_cannot_create_issue(self):
        decision = authorize(BLOCKED, Action.CREATE_ISSUE)
        assert not decision
        assert decision.reason == "AccountBlocked"

    def test_blocked_account_may_still_read_own_issues(self):
        assert authorize(BLOCKED, Action.VIEW_OWN_ISSUES, "c@x.com")

    def test_admin_only_actions(self):
        for action in (Action.ASSIGN_ISSUE, Action.REJECT_ISSUE, Action.MANAGE_USERS, Action.VIEW_PAYMENTS):
            assert authorize(ADMIN, action)
            assert authorize(STAFF, action).reason == "InsufficientRole"
            assert authorize(CITIZEN, action).reason == "InsufficientRole"

    def test_status_change_needs_staff_or_admin(self):
        assert authorize(STAFF, Action.CHANGE_STATUS)
        assert authorize(ADMIN, Action.CHANGE_STATUS)
        assert authorize(CITIZEN, Action.CHANGE_STATUS).reason == "InsufficientRole"

    def test_status_change_limited_to_assigned_staff(self):
        assert authorize(STAFF, Action.CHANGE_STATUS, ASSIGNED)
        assert authorize(Caller(email="t@x.com", role="staff"), Action.CHANGE_STATUS, ASSIGNED).reason == "NotOwner"
        assert authorize(STAFF, Action.CHANGE_STATUS, ISSUE).reason == "NotOwner"
        assert authorize(ADMIN, Action.CHANGE_STATUS, ISSUE)

    def test_edit_requires_ownership(self):
        assert authorize(CITIZEN, Action.EDIT_ISSUE, ISSUE)
        assert authorize(OTHER, Action.EDIT_ISSUE, ISSUE).reason == "NotOwner"
        assert authorize(ADMIN, Action.EDIT_ISSUE, ISSUE)

    def test_own_issue_listing_is_strictly_self(self):
        assert authorize(CITIZEN, Action.VIEW_OWN_ISSUES, "a@x.com")
        assert authorize(CITIZEN, Action.VIEW_OWN_ISSUES, "A@X.com")
        assert authorize(ADMIN, Action.VIEW_OWN_ISSUES, "a@x.com").reason == "NotOwner"

    def test_staff_stats_self_or_admin(self):
        assert authorize(STAFF, Action.VIEW_STAFF_STATS, "s@x.com")
        assert authorize(STAFF, Action.VIEW_STAFF_STATS, "other@x.com").reason == "NotOwner"
        assert authorize(ADMIN, Action.VIEW_STAFF_STATS, "s@x.com")
        assert authorize(CITIZEN, Action.VIEW_STAFF_STATS, "a@x.com").reason == "InsufficientRole"

    def test_caller_from_missing_record_is_active_citizen(self):
        caller = Caller.from_record("new@x.com", None)
        assert caller.role == "citizen"
        assert caller.is_blocked is False
        assert authorize(caller, Action.CREATE_ISSUE)

    def test_caller_from_record(self):
        caller = Caller.from_record("s@x.com", {"_id": "abc", "role": "staff", "isBlocked": True})
        assert caller.role == "staff"
        assert caller.is_blocked
        assert caller.user_id == "abc"
