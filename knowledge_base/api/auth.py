"""Bearer credential validation against the identity provider's session table."""

import logging
from typing import Optional

from fastapi import Depends, Request

from knowledge_base.database.models import AuthSession
from knowledge_base.database.repository import GenericRepository, SessionFactory
from knowledge_base.database.session import with_db_session
from knowledge_base.errors import AuthError
from knowledge_base.timeutils import utc_now

logger = logging.getLogger(__name__)


def bearer_token(request: Request) -> Optional[str]:
    """Return the token from ``Authorization: Bearer <token>``, if present."""
    auth_header = request.headers.get("Authorization") or ""
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


class SessionTokenIdentity:
    """Resolves a bearer token to a user id via a non-expired ``session`` row."""

    def __init__(self, session_factory: SessionFactory = with_db_session):
        self.session_factory = session_factory

    def resolve(self, token: Optional[str]) -> str:
        """Return the user id owning ``token``.

        Raises:
            AuthError: If the token is missing, unknown or expired
        """
        if not token:
            raise AuthError("Unauthorized")

        with self.session_factory() as session:
            row = GenericRepository(session, AuthSession).find_one(token=token)
            user_id = row.userId if row is not None else None
            expires_at = row.expiresAt if row is not None else None

        if user_id is None:
            logger.warning("Rejected unknown session token")
            raise AuthError("Unauthorized")
        if expires_at is not None and expires_at <= utc_now():
            logger.warning(f"Rejected expired session token for user {user_id}")
            raise AuthError("Unauthorized")
        return user_id


_identity = SessionTokenIdentity()


def get_identity_provider() -> SessionTokenIdentity:
    return _identity


def get_current_user_id(
    request: Request,
    identity: SessionTokenIdentity = Depends(get_identity_provider),
) -> str:
    """FastAPI dependency: authenticated user id or ``AuthError``."""
    return identity.resolve(bearer_token(request))
