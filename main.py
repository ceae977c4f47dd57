import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pymongo.errors import PyMongoError

import stats
from auth import ensure, get_caller, require
from checkout import StripeCheckout
from config import APP_NAME, Settings
from database import Database
from errors import ApiError, Forbidden, NotFound, UpstreamError
from identity import LocalIdentityProvider, build_identity_provider, check_identity_settings
from issues import IssueStore
from payments import PaymentOrchestrator, PaymentStore
from policy import Action, Caller
from schemas import (
    AssignRequest, BlockRequest, CheckoutRequest, IssueCreateRequest, IssueUpdateRequest,
    LoginRequest, PaymentSuccessRequest, RegisterRequest, StaffCreateRequest,
    StaffUpdateRequest, StatusUpdateRequest, UpvoteRequest, UserCreateRequest,
)
from users import UserStore

logger = logging.getLogger(__name__)

router = APIRouter()


def issues_store(request: Request) -> IssueStore:
    return request.app.state.issues


def users_store(request: Request) -> UserStore:
    return request.app.state.users


def acting_email(request: Request, caller: Caller, supplied: Optional[str]) -> str:
    """The verified email, unless the deployment trusts client-supplied identities."""
    if supplied and request.app.state.settings.trust_client_identity:
        return supplied
    return caller.email


# ---------- Basic routes ----------

@router.get("/", response_class=PlainTextResponse)
def root():
    return "The CivicAlert data base running well!"


@router.get("/test")
def test_database(request: Request):
    info = {"backend": "running", "database": "disconnected", "collections": []}
    database = request.app.state.database
    try:
        database.ping()
        info["database"] = "connected"
        info["collections"] = database.db.list_collection_names()[:10]
    except PyMongoError as e:
        info["database"] = f"error: {str(e)[:80]}"
    return info


# ---------- Local identity endpoints ----------

def local_identity(request: Request) -> LocalIdentityProvider:
    identity = request.app.state.identity
    if not isinstance(identity, LocalIdentityProvider):
        raise NotFound("Local authentication is disabled")
    return identity


@router.post("/auth/register")
def register(req: RegisterRequest, request: Request, identity=Depends(local_identity)):
    uid = identity.create_account(req.email, req.password, req.name)
    try:
        users_store(request).register(req.name, req.email)
    except PyMongoError:
        logger.warning(f"User record for {req.email} failed, removing identity account {uid}")
        identity.delete_account(uid)
        raise UpstreamError("Could not create user record")
    return {"token": identity.create_token(req.email, uid), "user": {"name": req.name, "email": req.email}}


@router.post("/auth/login")
def login(req: LoginRequest, identity=Depends(local_identity)):
    return {"token": identity.login(req.email, req.password)}


# ---------- Issue endpoints ----------

@router.post("/issues")
def create_issue(req: IssueCreateRequest, request: Request, caller: Caller = Depends(require(Action.CREATE_ISSUE))):
    created_by = acting_email(request, caller, req.createdBy)
    return issues_store(request).create(
        title=req.title,
        description=req.description,
        category=req.category,
        location=req.location,
        priority=req.priority,
        image=req.image or "",
        created_by=created_by,
    )


@router.get("/issues")
def list_issues(request: Request, search: Optional[str] = None, status: Optional[str] = None,
                category: Optional[str] = None):
    return issues_store(request).list(search=search, status=status, category=category)


@router.get("/issues/{issue_id}")
def get_issue(issue_id: str, request: Request):
    return issues_store(request).get(issue_id)


@router.get("/issues/{issue_id}/upvote-status")
def upvote_status(issue_id: str, email: str, request: Request):
    return {"upvoted": issues_store(request).has_upvoted(issue_id, email)}


@router.patch("/issues/upvote/{issue_id}")
def upvote_issue(issue_id: str, body: UpvoteRequest, request: Request,
                 caller: Caller = Depends(require(Action.UPVOTE_ISSUE))):
    voter = acting_email(request, caller, body.email)
    doc = issues_store(request).upvote(issue_id, voter)
    return {"ok": True, "upvotes": doc["upvotes"]}


@router.patch("/issues/assign/{issue_id}")
def assign_issue(issue_id: str, body: AssignRequest, request: Request,
                 caller: Caller = Depends(require(Action.ASSIGN_ISSUE))):
    staff = {"id": body.staffId, "name": body.staffName, "email": body.staffEmail}
    issues_store(request).assign(issue_id, staff, actor=caller.email)
    return {"ok": True}


@router.patch("/issues/reject/{issue_id}")
def reject_issue(issue_id: str, request: Request, caller: Caller = Depends(require(Action.REJECT_ISSUE))):
    issues_store(request).reject(issue_id, actor=caller.email)
    return {"ok": True}


@router.patch("/issues/status/{issue_id}")
def change_issue_status(issue_id: str, body: StatusUpdateRequest, request: Request,
                        caller: Caller = Depends(require(Action.CHANGE_STATUS))):
    store = issues_store(request)
    ensure(caller, Action.CHANGE_STATUS, store.get(issue_id))
    store.change_status(issue_id, body.status, actor=caller.email, message=body.message)
    return {"ok": True}


@router.patch("/issues/{issue_id}")
def edit_issue(issue_id: str, body: IssueUpdateRequest, request: Request, caller: Caller = Depends(get_caller)):
    store = issues_store(request)
    issue = store.get(issue_id)
    ensure(caller, Action.EDIT_ISSUE, issue)
    if request.app.state.settings.edit_pending_only and issue.get("status") != "Pending":
        raise Forbidden("NotEditable", "Only pending issues can be edited")
    store.update(issue_id, body.model_dump(exclude_unset=True))
    return {"ok": True}


@router.delete("/issues/{issue_id}")
def delete_issue(issue_id: str, request: Request, caller: Caller = Depends(get_caller)):
    store = issues_store(request)
    ensure(caller, Action.DELETE_ISSUE, store.get(issue_id))
    return {"ok": True, "deletedCount": store.delete(issue_id)}


@router.get("/my-issues/{email}")
def my_issues(email: str, request: Request, caller: Caller = Depends(get_caller)):
    ensure(caller, Action.VIEW_OWN_ISSUES, email)
    return issues_store(request).by_creator(email)


@router.get("/assigned-issues/{email}")
def assigned_issues(email: str, request: Request, caller: Caller = Depends(get_caller)):
    ensure(caller, Action.VIEW_STAFF_STATS, email)
    return issues_store(request).assigned_to(email)


# ---------- User endpoints ----------

@router.post("/users")
def create_user(body: UserCreateRequest, request: Request, caller: Caller = Depends(get_caller)):
    email = acting_email(request, caller, body.email)
    return users_store(request).register(body.name, email, body.photo or "")


@router.get("/users")
def list_users(request: Request, caller: Caller = Depends(require(Action.MANAGE_USERS))):
    return users_store(request).list()


@router.get("/users/staff")
def list_staff(request: Request, caller: Caller = Depends(require(Action.MANAGE_USERS))):
    return users_store(request).list_staff()


@router.post("/users/staff")
def create_staff(body: StaffCreateRequest, request: Request, caller: Caller = Depends(require(Action.MANAGE_USERS))):
    return users_store(request).create_staff(
        name=body.name, email=body.email, password=body.password,
        phone=body.phone or "", photo=body.photo or "",
    )


@router.put("/users/staff/{user_id}")
def update_staff(user_id: str, body: StaffUpdateRequest, request: Request,
                 caller: Caller = Depends(require(Action.MANAGE_USERS))):
    return users_store(request).update_staff(user_id, body.name, phone=body.phone, photo=body.photo)


@router.delete("/users/staff/{user_id}")
def delete_staff(user_id: str, request: Request, caller: Caller = Depends(require(Action.MANAGE_USERS))):
    return {"ok": True, "deletedCount": users_store(request).delete_staff(user_id)}


@router.patch("/users/block/{user_id}")
def block_user(user_id: str, body: BlockRequest, request: Request,
               caller: Caller = Depends(require(Action.MANAGE_USERS))):
    doc = users_store(request).set_blocked(user_id, body.isBlocked)
    return {"ok": True, "isBlocked": doc["isBlocked"]}


@router.get("/users/{email}")
def get_user(email: str, request: Request, caller: Caller = Depends(get_caller)):
    ensure(caller, Action.VIEW_USER, email)
    return users_store(request).get_by_email(email)


# ---------- Payment endpoints ----------

@router.post("/create-checkout-session")
def create_checkout_session(body: CheckoutRequest, request: Request,
                            caller: Caller = Depends(require(Action.START_CHECKOUT))):
    email = acting_email(request, caller, body.customerEmail)
    result = request.app.state.orchestrator.begin_checkout(
        payment_type=body.paymentType,
        email=email,
        name=body.customerName or "",
        amount=body.amount,
        price=body.price,
        issue_id=body.issueId,
        issue_data=body.issueData.model_dump() if body.issueData else None,
    )
    return result


@router.post("/payment-success")
def payment_success(body: PaymentSuccessRequest, request: Request):
    return request.app.state.orchestrator.confirm(body.sessionId)


@router.get("/payments")
def list_payments(request: Request, caller: Caller = Depends(require(Action.VIEW_PAYMENTS))):
    return request.app.state.payments.list()


# ---------- Dashboard endpoints ----------

@router.get("/staff-stats/{email}")
def get_staff_stats(email: str, request: Request, caller: Caller = Depends(get_caller)):
    ensure(caller, Action.VIEW_STAFF_STATS, email)
    return stats.staff_stats(request.app.state.database, email)


@router.get("/citizen-stats/{email}")
def get_citizen_stats(email: str, request: Request, caller: Caller = Depends(get_caller)):
    ensure(caller, Action.VIEW_CITIZEN_STATS, email)
    return stats.citizen_stats(request.app.state.database, email)


@router.get("/admin-stats")
def get_admin_stats(request: Request, caller: Caller = Depends(require(Action.VIEW_ADMIN_STATS))):
    return stats.admin_stats(request.app.state.database)


# ---------- App factory ----------

async def handle_api_error(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_validation_error(request: Request, exc: RequestValidationError):
    missing = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors() if err["type"] == "missing"]
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
    else:
        message = "; ".join(f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors())
    return JSONResponse(status_code=400, content={"message": message})


async def handle_database_error(request: Request, exc: PyMongoError):
    logger.exception("Database failure", exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Database error"})


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None,
               identity=None, checkout=None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    if identity is None:
        check_identity_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = database or Database(settings.database_url, settings.database_name)
        db.connect()
        idp = identity or build_identity_provider(settings, db)
        users = UserStore(db, idp)
        issues = IssueStore(db)
        payments = PaymentStore(db)
        app.state.settings = settings
        app.state.database = db
        app.state.identity = idp
        app.state.users = users
        app.state.issues = issues
        app.state.payments = payments
        app.state.orchestrator = PaymentOrchestrator(
            payments, issues, users,
            checkout or StripeCheckout(settings.stripe_secret_key, settings.payment_currency),
            settings,
        )
        logger.info(f"{APP_NAME} started ({idp.name} identity backend)")
        try:
            yield
        finally:
            if identity is None:
                idp.close()
            db.close()
            logger.info(f"{APP_NAME} stopped")

    app = FastAPI(title=APP_NAME, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ApiError, handle_api_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(PyMongoError, handle_database_error)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
