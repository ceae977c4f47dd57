"""
Tests for the Payment Orchestrator: amount selection, checkout metadata,
and exactly-once side effects on completion.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from errors import NotFound, ValidationFailed
from issues import IssueStore
from payments import UNAPPLIED, PaymentOrchestrator, PaymentStore, resolve_amount
from users import UserStore
from schemas import Payment


def draft(title="Broken bench"):
    return {"title": title, "description": "split in half", "category": "Park", "location": "Central Park"}


class TestResolveAmount:

    def test_precedence(self):
        assert resolve_amount(50, 20, 100) == 50
        assert resolve_amount(None, 20, 100) == 20
        assert resolve_amount(None, None, 100) == 100


class TestBeginCheckout:

    def test_subscription(self, orchestrator, checkout):
        result = orchestrator.begin_checkout("subscription", "a@x.com", "Ann", amount=10)
        assert result["url"].startswith("https://checkout.test/pay/")
        session = checkout.sessions[result["sessionId"]]
        assert session.metadata == {"paymentType": "subscription", "email": "a@x.com", "name": "Ann"}
        assert checkout.created[0]["amount_minor"] == 1000
        assert checkout.created[0]["success_url"] == \
            "http://localhost:5173/payment-success?session_id={CHECKOUT_SESSION_ID}"

    def test_default_amount(self, orchestrator, checkout):
        orchestrator.begin_checkout("subscription", "a@x.com")
        assert checkout.created[0]["amount_minor"] == 10000

    def test_promotion_of_existing_issue(self, orchestrator, issue_store, checkout):
        issue = issue_store.create("Pothole", "deep", "Road", "5th Ave", created_by="a@x.com")
        result = orchestrator.begin_checkout("issue_promotion", "a@x.com", issue_id=issue["id"])
        assert checkout.sessions[result["sessionId"]].metadata["issueId"] == issue["id"]

    def test_promotion_of_unknown_issue(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.begin_checkout("issue_promotion", "a@x.com", issue_id="5f9f1b9b9c9d440000000000")

    def test_promotion_with_new_issue_creates_draft(self, orchestrator, issue_store):
        result = orchestrator.begin_checkout("issue_promotion", "a@x.com", issue_data=draft())
        issue = issue_store.get(result["issueId"])
        assert issue["paymentStatus"] == "Pending"
        assert issue["priority"] == "Normal"
        assert issue["createdBy"] == "a@x.com"

    def test_promotion_needs_a_target(self, orchestrator):
        with pytest.raises(ValidationFailed):
            orchestrator.begin_checkout("issue_promotion", "a@x.com")


class TestConfirm:

    def test_unpaid_session_records_nothing(self, orchestrator, database):
        result = orchestrator.begin_checkout("subscription", "a@x.com")
        assert orchestrator.confirm(result["sessionId"]) == {"success": False}
        assert database.payments.count_documents({}) == 0

    def test_subscription_grants_premium(self, orchestrator, checkout, user_store, database):
        user_store.register("Ann", "a@x.com")
        result = orchestrator.begin_checkout("subscription", "a@x.com", "Ann", amount=10)
        checkout.complete(result["sessionId"])

        confirmed = orchestrator.confirm(result["sessionId"])
        assert confirmed["success"] is True
        assert confirmed["applied"] is True
        assert user_store.get_by_email("a@x.com")["isPremium"] is True
        payment = database.payments.find_one({})
        assert payment["amount"] == 10
        assert payment["type"] == "subscription"
        assert payment["transactionId"] == f"pi_{result['sessionId']}"

    def test_duplicate_notifications_apply_once(self, orchestrator, checkout, issue_store, database):
        result = orchestrator.begin_checkout("issue_promotion", "a@x.com", issue_data=draft())
        checkout.complete(result["sessionId"])

        first = orchestrator.confirm(result["sessionId"])
        second = orchestrator.confirm(result["sessionId"])
        third = orchestrator.confirm(result["sessionId"])

        assert first["success"] and second["success"] and third["success"]
        assert "duplicate" not in first
        assert second["duplicate"] is True and third["duplicate"] is True
        assert database.payments.count_documents({}) == 1
        issue = issue_store.get(result["issueId"])
        assert issue["priority"] == "High"
        assert issue["paymentStatus"] == "Paid"
        boosts = [e for e in issue["timeline"] if e["message"] == "Issue boosted to High priority"]
        assert len(boosts) == 1

    def test_record_if_absent(self, payment_store):
        payment = Payment(transactionId="pi_1", email="a@x.com", amount=10, type="subscription")
        assert payment_store.record_if_absent(payment) is True
        assert payment_store.record_if_absent(payment) is False
        assert len(payment_store.list()) == 1

    def test_promotion_of_deleted_issue_is_recorded_unapplied(self, orchestrator, checkout, issue_store,
                                                              payment_store, caplog):
        result = orchestrator.begin_checkout("issue_promotion", "a@x.com", issue_data=draft())
        issue_store.delete(result["issueId"])
        checkout.complete(result["sessionId"])

        with caplog.at_level("ERROR", logger="payments"):
            confirmed = orchestrator.confirm(result["sessionId"])
        assert confirmed == {"success": True, "transactionId": f"pi_{result['sessionId']}", "applied": False}
        assert f"pi_{result['sessionId']}" in caplog.text
        [payment] = payment_store.list()
        assert payment["status"] == UNAPPLIED
        assert orchestrator.confirm(result["sessionId"])["duplicate"] is True

    def test_subscription_without_user_record_is_unapplied(self, orchestrator, checkout, payment_store, caplog):
        result = orchestrator.begin_checkout("subscription", "ghost@x.com", amount=10)
        checkout.complete(result["sessionId"])

        with caplog.at_level("WARNING", logger="payments"):
            confirmed = orchestrator.confirm(result["sessionId"])
        assert confirmed["success"] is True
        assert confirmed["applied"] is False
        assert f"pi_{result['sessionId']}" in caplog.text
        assert payment_store.list()[0]["status"] == UNAPPLIED


class TestConcurrentConfirm:

    def test_simultaneous_notifications_record_and_boost_once(self, shared_database, checkout, settings):
        issues = IssueStore(shared_database)
        orchestrator = PaymentOrchestrator(
            PaymentStore(shared_database), issues, UserStore(shared_database), checkout, settings,
        )
        result = orchestrator.begin_checkout("issue_promotion", "a@x.com", issue_data=draft())
        checkout.complete(result["sessionId"])

        workers = 8
        barrier = threading.Barrier(workers)

        def notify(_):
            barrier.wait()
            return orchestrator.confirm(result["sessionId"])

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(notify, range(workers)))

        assert all(o["success"] for o in outcomes)
        assert sum(1 for o in outcomes if not o.get("duplicate")) == 1
        assert shared_database.payments.count_documents({}) == 1
        issue = issues.get(result["issueId"])
        assert issue["priority"] == "High"
        boosts = [e for e in issue["timeline"] if e["message"] == "Issue boosted to High priority"]
        assert len(boosts) == 1
