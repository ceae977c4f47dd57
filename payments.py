"""
Payment Orchestrator.

A payment attempt is either Initiated (a provider session exists, nothing is
stored here) or Recorded (a Payment row exists and its side effect has been
applied). The unique index on payments.transactionId makes recording an
atomic insert-if-absent, so duplicate completion notifications can never
apply the side effect twice.
"""
import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from database import serialize
from errors import ApiError, ValidationFailed
from schemas import Payment, utcnow

logger = logging.getLogger(__name__)

SUBSCRIPTION = "subscription"
ISSUE_PROMOTION = "issue_promotion"

UNAPPLIED = "unapplied"  # recorded, side effect not applied

PRODUCT_NAMES = {
    SUBSCRIPTION: "CivicAlert Premium Subscription",
    ISSUE_PROMOTION: "CivicAlert Issue Boost",
}


class PaymentStore:
    def __init__(self, database):
        self.collection = database.payments

    def record_if_absent(self, payment: Payment) -> bool:
        """Insert the payment; False when this transactionId is already recorded."""
        try:
            self.collection.insert_one(payment.model_dump(mode="python"))
        except DuplicateKeyError:
            return False
        return True

    def mark_status(self, transaction_id: str, status: str):
        self.collection.update_one({"transactionId": transaction_id}, {"$set": {"status": status}})

    def list(self, email: Optional[str] = None) -> list:
        query = {"email": email} if email else {}
        return [serialize(d) for d in self.collection.find(query).sort("date", -1)]


def resolve_amount(amount: Optional[float], price: Optional[float], default: float) -> float:
    if amount:
        return amount
    if price:
        return price
    return default


class PaymentOrchestrator:
    def __init__(self, payments: PaymentStore, issues, users, checkout, settings):
        self.payments = payments
        self.issues = issues
        self.users = users
        self.checkout = checkout
        self.settings = settings

    def begin_checkout(self, payment_type: str, email: str, name: str = "",
                       amount: Optional[float] = None, price: Optional[float] = None,
                       issue_id: Optional[str] = None, issue_data: Optional[dict] = None) -> dict:
        total = resolve_amount(amount, price, self.settings.default_payment_amount)
        metadata = {"paymentType": payment_type, "email": email, "name": name or ""}

        if payment_type == ISSUE_PROMOTION:
            if issue_id:
                self.issues.get(issue_id)
            elif issue_data:
                draft = self.issues.create(
                    title=issue_data["title"],
                    description=issue_data["description"],
                    category=issue_data["category"],
                    location=issue_data["location"],
                    image=issue_data.get("image") or "",
                    created_by=email,
                    payment_status="Pending",
                )
                issue_id = draft["id"]
            else:
                raise ValidationFailed("issueId or issueData is required for an issue promotion")
            metadata["issueId"] = issue_id

        site = self.settings.site_domain
        session = self.checkout.create_session(
            amount_minor=int(round(total * 100)),
            product_name=PRODUCT_NAMES[payment_type],
            customer_email=email,
            metadata=metadata,
            success_url=f"{site}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site}/payment-cancelled",
        )
        logger.info(f"Checkout session {session.id} created for {email} ({payment_type}, {total})")
        return {"url": session.url, "sessionId": session.id, "issueId": metadata.get("issueId")}

    def confirm(self, session_id: str) -> dict:
        session = self.checkout.retrieve_session(session_id)
        if not session.is_paid:
            logger.info(f"Checkout session {session_id} not paid ({session.payment_status})")
            return {"success": False}

        metadata = session.metadata
        payment_type = metadata.get("paymentType", SUBSCRIPTION)
        email = metadata.get("email") or session.customer_email or ""
        payment = Payment(
            transactionId=session.transaction_id,
            email=email,
            name=metadata.get("name", ""),
            amount=session.amount_total / 100,
            date=utcnow(),
            type=payment_type,
            issueId=metadata.get("issueId"),
        )
        if not self.payments.record_if_absent(payment):
            logger.info(f"Payment {payment.transactionId} already recorded, skipping")
            return {"success": True, "transactionId": payment.transactionId, "duplicate": True}

        logger.info(f"Payment {payment.transactionId} recorded for {email}")
        applied = self._apply(payment)
        if not applied:
            self.payments.mark_status(payment.transactionId, UNAPPLIED)
        return {"success": True, "transactionId": payment.transactionId, "applied": applied}

    def _apply(self, payment: Payment) -> bool:
        """Run the side effect for a freshly recorded payment; False when it could not be applied."""
        try:
            if payment.type == ISSUE_PROMOTION and payment.issueId:
                self.issues.promote(payment.issueId, actor=payment.email)
                return True
            if self.users.grant_premium(payment.email):
                return True
        except (ApiError, PyMongoError):
            logger.exception(f"Payment {payment.transactionId} recorded but its side effect failed")
            return False
        logger.warning(f"Payment {payment.transactionId} recorded but not applied: no user {payment.email}")
        return False
