"""
Dashboard counters.
"""
from schemas import ISSUE_STATUSES


def _status_counts(collection, query: dict) -> dict:
    counts = {status: 0 for status in ISSUE_STATUSES}
    for row in collection.aggregate([
        {"$match": query},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ]):
        counts[row["_id"]] = row["count"]
    return counts


def _payment_totals(collection, query: dict):
    count, total = 0, 0.0
    for doc in collection.find(query, {"amount": 1}):
        count += 1
        total += doc.get("amount", 0) or 0
    return count, total


def staff_stats(database, email: str) -> dict:
    query = {"assignedStaff.email": email}
    return {
        "email": email,
        "totalAssigned": database.issues.count_documents(query),
        "byStatus": _status_counts(database.issues, query),
    }


def citizen_stats(database, email: str) -> dict:
    query = {"createdBy": email}
    payment_count, paid = _payment_totals(database.payments, {"email": email})
    return {
        "email": email,
        "totalIssues": database.issues.count_documents(query),
        "byStatus": _status_counts(database.issues, query),
        "totalPayments": payment_count,
        "totalPaid": paid,
    }


def admin_stats(database) -> dict:
    payment_count, revenue = _payment_totals(database.payments, {})
    users = database.users
    return {
        "totalIssues": database.issues.count_documents({}),
        "byStatus": _status_counts(database.issues, {}),
        "highPriority": database.issues.count_documents({"priority": "High"}),
        "users": {
            "total": users.count_documents({}),
            "citizens": users.count_documents({"role": "citizen"}),
            "staff": users.count_documents({"role": "staff"}),
            "admins": users.count_documents({"role": "admin"}),
            "blocked": users.count_documents({"isBlocked": True}),
            "premium": users.count_documents({"isPremium": True}),
        },
        "totalPayments": payment_count,
        "revenue": revenue,
    }
