import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import MalformedDocument, MongoStore, get_store, parse_document, serialize_doc, to_object_id
from schemas import Vendor
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer()

SESSION_COOKIE = "session"
TOKEN_COOKIE = "token"
SESSION_CREATED_COOKIE = "sessionCreated"
TEST_MODE_COOKIE = "testMode"

TEST_VENDOR_ID = "test-vendor-id"
TEST_VENDOR_EMAIL = "test@example.com"
TEST_VENDOR_PASSWORD = "password"


def development_vendor() -> Vendor:
    return Vendor(
        id=TEST_VENDOR_ID,
        name="Test Vendor",
        email=TEST_VENDOR_EMAIL,
        phone="1234567890",
        address="Test Address",
        pincodes=["123456"],
        status="active",
        is_open=True,
    )


# ----------------------- Passwords & tokens -----------------------
def hash_password(password: str, secret: str) -> str:
    return hmac.new(secret.encode(), password.encode(), hashlib.sha256).hexdigest()


def verify_password(password: str, password_hash: Optional[str], secret: str) -> bool:
    if not password_hash:
        return False
    return hmac.compare_digest(hash_password(password, secret), password_hash)


def create_token(payload: dict, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.session_days)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def peek_token(token: Optional[str], settings: Settings) -> Optional[dict]:
    """Decode a token without raising; None when absent or invalid."""
    if not token:
        return None
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError:
        return None


# ----------------------- Customers, admins, delivery -----------------------
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    store: MongoStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    payload = decode_token(credentials.credentials, settings)
    user_id = payload.get("id")
    if not user_id or payload.get("role") == "vendor":
        raise HTTPException(status_code=401, detail="Invalid token payload")
    oid = to_object_id(user_id)
    user = store.db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


def require_role(*roles: str):
    async def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=f"{' or '.join(r.capitalize() for r in roles)} only")
        return user

    return checker


# ----------------------- Vendors -----------------------
class VendorLoginError(Exception):
    MESSAGES = {
        "invalid_credentials": "Invalid email or password",
        "not_vendor": "Account exists but not registered as vendor",
        "pending": "Vendor account pending. Your registration has not been approved yet.",
        "blocked": "Vendor account blocked. Please contact admin.",
    }

    def __init__(self, kind: str):
        super().__init__(self.MESSAGES[kind])
        self.kind = kind
        self.message = self.MESSAGES[kind]


def authenticate_vendor(store: MongoStore, email: str, password: str, settings: Settings) -> Vendor:
    if settings.is_development and email == TEST_VENDOR_EMAIL and password == TEST_VENDOR_PASSWORD:
        logger.info("Using test vendor account in development mode")
        return development_vendor()

    doc = store.find_one("vendor", {"email": email})
    if not doc:
        # a customer account with this email is not a vendor
        user = store.find_one("user", {"email": email})
        if user and verify_password(password, user.get("password_hash"), settings.jwt_secret):
            raise VendorLoginError("not_vendor")
        raise VendorLoginError("invalid_credentials")
    try:
        vendor = parse_document(Vendor, doc, "vendor")
    except MalformedDocument as e:
        logger.warning("Vendor %s is malformed, refusing login", e.doc_id)
        raise VendorLoginError("invalid_credentials")
    if not verify_password(password, vendor.password_hash, settings.jwt_secret):
        raise VendorLoginError("invalid_credentials")
    return vendor


def check_vendor_status(vendor: Vendor) -> None:
    """Raise the pending/blocked login error for a vendor that may not use the dashboard."""
    if vendor.status != "active":
        raise VendorLoginError(vendor.status)


def load_vendor(store: MongoStore, vendor_id: Optional[str], settings: Settings, test_mode: bool = False) -> Optional[Vendor]:
    if not vendor_id:
        return None
    if vendor_id == TEST_VENDOR_ID:
        return development_vendor() if settings.is_development and test_mode else None
    doc = store.find_by_id("vendor", vendor_id)
    if not doc:
        return None
    return parse_document(Vendor, doc, "vendor")


def vendor_token(vendor: Vendor, settings: Settings) -> str:
    return create_token({"id": vendor.id, "email": vendor.email, "role": "vendor"}, settings)


def set_vendor_session_cookies(response: Response, vendor_id: str, token: str, settings: Settings,
                               test_account: bool = False) -> None:
    max_age = settings.session_days * 24 * 3600
    logger.info("Setting vendor session cookies for %s (test=%s)", vendor_id, test_account)
    response.set_cookie(SESSION_COOKIE, vendor_id, max_age=max_age, path="/", samesite="lax", httponly=True)
    response.set_cookie(TOKEN_COOKIE, token, max_age=max_age, path="/", samesite="lax", httponly=True)
    if test_account and settings.is_development:
        response.set_cookie(TEST_MODE_COOKIE, "true", max_age=max_age, path="/", samesite="lax")
    else:
        response.delete_cookie(TEST_MODE_COOKIE, path="/")
    response.set_cookie(
        SESSION_CREATED_COOKIE,
        datetime.now(timezone.utc).isoformat(),
        max_age=max_age,
        path="/",
        samesite="lax",
    )


def clear_vendor_session_cookies(response: Response) -> None:
    logger.info("Clearing vendor session cookies")
    for name in (SESSION_COOKIE, TOKEN_COOKIE, SESSION_CREATED_COOKIE, TEST_MODE_COOKIE):
        response.delete_cookie(name, path="/")
