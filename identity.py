"""
Identity backends.

FirebaseIdentityProvider talks to the external identity service.
LocalIdentityProvider keeps accounts in the `identities` collection and signs
its own HS256 tokens, so the API can run without the external service.
Both expose verify(), create_account() and delete_account().
"""
import base64
import json
import logging
from datetime import datetime, timedelta, timezone

import firebase_admin
from firebase_admin import auth as firebase_auth, credentials
from firebase_admin.exceptions import FirebaseError
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import parse_object_id
from errors import Conflict, Unauthorized, UpstreamError

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
WEAK_SECRETS = {"dev-secret-change", "secret", "changeme"}

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class FirebaseIdentityProvider:
    name = "firebase"

    def __init__(self, service_key_b64: str, app_name: str = "civic-alert"):
        decoded = base64.b64decode(service_key_b64).decode("utf-8")
        service_account = json.loads(decoded)
        self.app = firebase_admin.initialize_app(credentials.Certificate(service_account), name=app_name)

    def verify(self, token: str) -> dict:
        try:
            claims = firebase_auth.verify_id_token(token, app=self.app)
        except (ValueError, FirebaseError) as e:
            logger.warning(f"Token verification failed: {e}")
            raise Unauthorized("Unauthorized access")
        return {"email": claims.get("email"), "uid": claims.get("uid"), "name": claims.get("name")}

    def create_account(self, email: str, password: str, display_name: str) -> str:
        try:
            record = firebase_auth.create_user(
                email=email, password=password, display_name=display_name, app=self.app,
            )
        except firebase_auth.EmailAlreadyExistsError:
            raise Conflict("An account with this email already exists")
        except (ValueError, FirebaseError) as e:
            logger.exception("Identity account creation failed")
            raise UpstreamError(f"Could not create identity account: {e}")
        return record.uid

    def delete_account(self, uid: str):
        try:
            firebase_auth.delete_user(uid, app=self.app)
        except firebase_auth.UserNotFoundError:
            logger.warning(f"Identity account {uid} already gone")
        except (ValueError, FirebaseError) as e:
            logger.exception("Identity account deletion failed")
            raise UpstreamError(f"Could not delete identity account: {e}")

    def close(self):
        firebase_admin.delete_app(self.app)


class LocalIdentityProvider:
    name = "local"

    def __init__(self, database, secret: str, expire_minutes: int = 60 * 24 * 14):
        self.database = database
        self.secret = secret
        self.expire_minutes = expire_minutes

    def create_token(self, email: str, uid: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": email,
            "uid": uid,
            "exp": now + timedelta(minutes=self.expire_minutes),
            "iat": now,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALG)

    def verify(self, token: str) -> dict:
        try:
            data = jwt.decode(token, self.secret, algorithms=[JWT_ALG])
        except JWTError as e:
            logger.warning(f"Token verification failed: {e}")
            raise Unauthorized("Unauthorized access")
        if not data.get("sub"):
            raise Unauthorized("Unauthorized access")
        return {"email": data["sub"], "uid": data.get("uid")}

    def create_account(self, email: str, password: str, display_name: str) -> str:
        doc = {
            "email": email,
            "name": display_name,
            "password_hash": pwd_context.hash(password),
            "createdAt": datetime.now(timezone.utc),
        }
        try:
            result = self.database.identities.insert_one(doc)
        except DuplicateKeyError:
            raise Conflict("An account with this email already exists")
        return str(result.inserted_id)

    def delete_account(self, uid: str):
        self.database.identities.delete_one({"_id": parse_object_id(uid)})

    def login(self, email: str, password: str) -> str:
        account = self.database.identities.find_one({"email": email})
        if not account or not pwd_context.verify(password, account.get("password_hash", "")):
            raise Unauthorized("Invalid credentials")
        return self.create_token(email, str(account["_id"]))

    def close(self):
        pass


def check_identity_settings(settings):
    """Refuse to start without an identity backend that can actually reject forged tokens."""
    backend = settings.identity_backend
    if backend == "firebase":
        if not settings.firebase_service_key:
            raise RuntimeError("FB_SERVICE_KEY is required for the firebase identity backend")
    elif backend == "local":
        if not settings.jwt_secret or settings.jwt_secret in WEAK_SECRETS:
            raise RuntimeError("The local identity backend needs its own JWT_SECRET")
    elif backend is None:
        raise RuntimeError("No identity backend configured: set FB_SERVICE_KEY or IDENTITY_BACKEND=local")
    else:
        raise RuntimeError(f"Unknown identity backend: {backend}")


def build_identity_provider(settings, database):
    check_identity_settings(settings)
    if settings.identity_backend == "firebase":
        return FirebaseIdentityProvider(settings.firebase_service_key)
    return LocalIdentityProvider(database, settings.jwt_secret, settings.jwt_expire_minutes)
