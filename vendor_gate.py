"""
Access gate for the vendor area.

Every request under /vendor is classified as anonymous, authenticated but not
yet active, or authenticated and active, and is either let through or
redirected:

* anonymous visitors go to the login page, carrying the page they asked for
  in the ``redirect`` query parameter;
* vendors whose account is pending or blocked only ever see the status page;
* an active vendor hitting the login page is sent on to the dashboard, or to
  the page it was originally after.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse

from auth import SESSION_COOKIE, TEST_MODE_COOKIE, TEST_VENDOR_ID, TOKEN_COOKIE, load_vendor, peek_token
from database import MalformedDocument, StoreNotReady
from schemas import Vendor

logger = logging.getLogger(__name__)

VENDOR_PREFIX = "/vendor"
LOGIN_PATH = "/vendor/login"
STATUS_PATH = "/vendor/status"
DASHBOARD_PATH = "/vendor"
PUBLIC_PATHS = {"/vendor/register", "/vendor/logout"}


class GateState(enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED_INACTIVE = "authenticated_inactive"
    AUTHENTICATED_ACTIVE = "authenticated_active"


@dataclass(frozen=True)
class GateDecision:
    allow: bool
    location: Optional[str] = None

    @classmethod
    def proceed(cls) -> "GateDecision":
        return cls(allow=True)

    @classmethod
    def redirect(cls, location: str) -> "GateDecision":
        return cls(allow=False, location=location)


def is_vendor_path(path: str) -> bool:
    return path == VENDOR_PREFIX or path.startswith(VENDOR_PREFIX + "/")


def resolve_state(vendor: Optional[Vendor]) -> GateState:
    if vendor is None:
        return GateState.ANONYMOUS
    if vendor.status == "active":
        return GateState.AUTHENTICATED_ACTIVE
    return GateState.AUTHENTICATED_INACTIVE


def safe_return_target(target: Optional[str]) -> str:
    """Only vendor pages are valid return targets; anything else lands on the dashboard."""
    if not target or target.startswith("//") or not is_vendor_path(target.split("?", 1)[0]):
        return DASHBOARD_PATH
    if target.split("?", 1)[0] in (LOGIN_PATH, STATUS_PATH):
        return DASHBOARD_PATH
    return target


def login_url(original: str) -> str:
    return f"{LOGIN_PATH}?{urlencode({'redirect': original})}"


def evaluate(path: str, state: GateState, original: Optional[str] = None,
             redirect_target: Optional[str] = None, method: str = "GET") -> GateDecision:
    if not is_vendor_path(path) or path in PUBLIC_PATHS:
        return GateDecision.proceed()

    if path == LOGIN_PATH:
        # submitting credentials always reaches the login handler, even over an existing session
        if state is GateState.ANONYMOUS or method != "GET":
            return GateDecision.proceed()
        if state is GateState.AUTHENTICATED_INACTIVE:
            return GateDecision.redirect(STATUS_PATH)
        return GateDecision.redirect(safe_return_target(redirect_target))

    if state is GateState.ANONYMOUS:
        return GateDecision.redirect(login_url(original or path))

    if state is GateState.AUTHENTICATED_INACTIVE:
        if path == STATUS_PATH:
            return GateDecision.proceed()
        return GateDecision.redirect(STATUS_PATH)

    if path == STATUS_PATH:
        return GateDecision.redirect(DASHBOARD_PATH)
    return GateDecision.proceed()


def session_vendor_id(request: Request, settings) -> Optional[str]:
    """Actor id backed by the session marker, or None for an anonymous request.

    A valid vendor provider token (cookie or bearer header) is the credential;
    when a ``session`` cookie is also present it has to name the same vendor.
    The bare session cookie is only honoured for the development test account.
    """
    session_id = request.cookies.get(SESSION_COOKIE)
    token = request.cookies.get(TOKEN_COOKIE)
    auth_header = request.headers.get("authorization", "")
    if not token and auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()

    payload = peek_token(token, settings)
    if payload and payload.get("role") == "vendor" and payload.get("id"):
        if session_id and session_id != payload["id"]:
            logger.warning("Session cookie does not match provider token, treating as anonymous")
            return None
        return payload["id"]
    if session_id == TEST_VENDOR_ID and settings.is_development:
        return session_id
    return None


class VendorGateMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not is_vendor_path(path):
            return await call_next(request)

        settings = request.app.state.settings
        store = request.app.state.store
        vendor_id = session_vendor_id(request, settings)
        test_mode = request.cookies.get(TEST_MODE_COOKIE) == "true"
        try:
            vendor = await run_in_threadpool(load_vendor, store, vendor_id, settings, test_mode=test_mode)
        except MalformedDocument as e:
            logger.warning("Vendor %s is malformed, treating session as anonymous", e.doc_id)
            vendor = None
        except (PyMongoError, StoreNotReady) as e:
            logger.error("Could not load vendor %s: %s", vendor_id, e)
            return JSONResponse({"detail": "Service unavailable"}, status_code=503)

        state = resolve_state(vendor)
        original = path + (f"?{request.url.query}" if request.url.query else "")
        decision = evaluate(path, state, original, request.query_params.get("redirect"), request.method)
        if not decision.allow:
            logger.info("Vendor gate: %s (%s) -> %s", path, state.value, decision.location)
            return RedirectResponse(decision.location, status_code=303)

        request.state.vendor = vendor
        return await call_next(request)
