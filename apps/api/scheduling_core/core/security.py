"""Security utilities for staff session tokens and appointment action tokens."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode
from uuid import UUID

import jwt

from scheduling_core.core.config import settings
from scheduling_core.db.enums import ActionType


ACTION_TOKEN_TYPE = "appointment_action"


# =============================================================================
# Session Token (staff bearer JWT)
# =============================================================================

def create_session_token(user_id: UUID, org_id: UUID) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    Token carries the staff identity and organization context.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Appointment Action Tokens (public confirm/cancel/reschedule links)
# =============================================================================

@dataclass(frozen=True)
class ActionTokenPayload:
    """Verified contents of an action token."""
    appointment_id: UUID
    email: str
    action: ActionType


def create_action_token(
    appointment_id: UUID,
    email: str,
    action: ActionType | str,
    expires_in_hours: int | None = None,
) -> str:
    """Sign a stateless, expiring token for one appointment/email/action."""
    hours = expires_in_hours if expires_in_hours is not None else settings.ACTION_TOKEN_EXPIRY_HOURS
    now = datetime.now(timezone.utc)
    payload = {
        "typ": ACTION_TOKEN_TYPE,
        "sub": str(appointment_id),
        "email": email.strip().lower(),
        "action": ActionType(action).value,
        "iat": now,
        "exp": now + timedelta(hours=hours),
    }
    return jwt.encode(payload, settings.action_token_secret, algorithm="HS256")


def verify_action_token(token: str) -> ActionTokenPayload | None:
    """
    Verify signature, expiry and shape of an action token.

    Returns None for anything that does not verify; never raises.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            settings.action_token_secret,
            algorithms=["HS256"],
            options={"require": ["exp", "sub"]},
        )
    except jwt.InvalidTokenError:
        return None

    if claims.get("typ") != ACTION_TOKEN_TYPE:
        return None
    try:
        return ActionTokenPayload(
            appointment_id=UUID(claims["sub"]),
            email=str(claims["email"]),
            action=ActionType(claims["action"]),
        )
    except (KeyError, ValueError):
        return None


def build_action_urls(appointment_id: UUID, email: str, base_url: str | None = None) -> dict[str, str]:
    """Build confirm/cancel/reschedule links, one token per action."""
    base = (base_url or settings.FRONTEND_URL).rstrip("/")
    urls: dict[str, str] = {}
    for action in ActionType:
        token = create_action_token(appointment_id, email, action)
        urls[action.value] = f"{base}/appointment/{action.value}?{urlencode({'token': token})}"
    return urls
