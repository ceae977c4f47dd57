"""
Auth Gate and Role Guards as FastAPI dependencies.

verify_token() checks the bearer credential on every request; get_caller()
does the single users lookup; require() turns policy.authorize() into a guard.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, Request

from errors import Forbidden, Unauthorized
from policy import Action, Caller, authorize

logger = logging.getLogger(__name__)


def verify_token(request: Request, authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid auth scheme")
    claims = request.app.state.identity.verify(token.strip())
    if not claims.get("email"):
        raise Unauthorized("Token carries no email")
    return claims


def get_caller(request: Request, claims: dict = Depends(verify_token)) -> Caller:
    record = request.app.state.users.find_by_email(claims["email"])
    return Caller.from_record(claims["email"], record, claims)


def ensure(caller: Caller, action: Action, resource=None):
    decision = authorize(caller, action, resource)
    if not decision:
        logger.warning(f"Denied {action.value} for {caller.email}: {decision.reason}")
        raise Forbidden(decision.reason, "Forbidden access")


def require(*actions: Action):
    """Guard dependency: every listed action must be allowed before the handler runs."""
    def guard(caller: Caller = Depends(get_caller)) -> Caller:
        for action in actions:
            ensure(caller, action)
        return caller
    return guard
