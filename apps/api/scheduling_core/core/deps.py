"""FastAPI dependencies for authentication and database access."""

from dataclasses import dataclass
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from scheduling_core.core.security import decode_session_token
from scheduling_core.db.models import Organization
from scheduling_core.db.session import SessionLocal
from scheduling_core.services.notification_transport import (
    NotificationTransport,
    get_notification_transport,
)


@dataclass
class StaffSession:
    """Authenticated staff context (organization-scoped)."""
    user_id: UUID
    org_id: UUID


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
) -> StaffSession:
    """
    Resolve the staff session from an `Authorization: Bearer <jwt>` header.

    Raises:
        HTTPException 401: Missing, invalid or expired token, or unknown organization
    """
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
        session = StaffSession(user_id=UUID(payload["sub"]), org_id=UUID(payload["org_id"]))
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")

    org_exists = db.query(Organization.id).filter(Organization.id == session.org_id).first()
    if not org_exists:
        raise HTTPException(status_code=401, detail="Organization not found")

    return session


def get_transport() -> NotificationTransport:
    """Notification transport dependency (overridden in tests)."""
    return get_notification_transport()
