"""
Administrator authentication.

There is a single administrator whose credentials come from settings.
A successful login yields a signed, expiring JWT which the API sets as
an HttpOnly cookie; scripts may send the same token as
`Authorization: Bearer <token>`.

Tokens are stateless (HS256 over the admin name in `sub` and an `exp`
claim), so every worker process accepts them without shared session
storage.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from ..config.settings import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

_fallback_secret: Optional[str] = None


def _signing_key(settings: Settings) -> str:
    """
    Key used to sign session tokens.

    Without SESSION_SECRET a random per-process key is used, so sessions
    end on restart and aren't shared between workers.
    """
    global _fallback_secret

    if settings.session_secret:
        return settings.session_secret

    if _fallback_secret is None:
        _fallback_secret = secrets.token_hex(32)
        logger.warning("SESSION_SECRET not set; using a random per-process key")
    return _fallback_secret


def verify_credentials(settings: Settings, username: str, password: str) -> bool:
    """Constant-time check against the configured administrator."""
    if not settings.admin_password:
        logger.warning("Admin login attempted but ADMIN_PASSWORD is not configured")
        return False

    user_ok = hmac.compare_digest(username.encode(), settings.admin_username.encode())
    password_ok = hmac.compare_digest(password.encode(), settings.admin_password.encode())
    return user_ok and password_ok


def issue_session_token(settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(hours=settings.session_ttl_hours)

    claims = {
        "sub": settings.admin_username,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(claims, _signing_key(settings), algorithm=ALGORITHM)


def verify_session_token(settings: Settings, token: Optional[str]) -> bool:
    """
    True if token was issued by us for the current admin and hasn't expired.

    Changing ADMIN_USERNAME or SESSION_SECRET invalidates every session.
    """
    if not token:
        return False

    try:
        payload = jwt.decode(
            token,
            _signing_key(settings),
            algorithms=[ALGORITHM],
            options={"require_exp": True, "require_sub": True},
        )
    except JWTError as e:
        logger.debug("Rejected session token", extra={"error": str(e)})
        return False

    return payload.get("sub") == settings.admin_username
