"""Customer delivery location (pincode) held in a cookie."""
import re
from typing import Optional

from fastapi import Request, Response

from settings import Settings

PINCODE_COOKIE = "pincode"
PINCODE_RE = re.compile(r"^\d{6}$")


def is_valid_pincode(value: str) -> bool:
    return bool(PINCODE_RE.match(value or ""))


def current_pincode(request: Request, settings: Settings, explicit: Optional[str] = None) -> str:
    # An explicit empty value stays empty so the catalog reports no coverage.
    if explicit is not None:
        return explicit.strip()
    stored = request.cookies.get(PINCODE_COOKIE)
    if stored:
        return stored
    return settings.default_pincode


def remember_pincode(response: Response, pincode: str) -> None:
    response.set_cookie(
        PINCODE_COOKIE,
        pincode,
        max_age=365 * 24 * 3600,
        path="/",
        samesite="lax",
    )
