"""Request-scoped dependencies: database connection, caller identity, admin check."""

from __future__ import annotations

import hmac
import sqlite3
from typing import Iterator, Optional

from fastapi import Depends, Header, Request

from lexrag.chat.core import UserIdentity
from lexrag.config import LexragConfig
from lexrag.db.connection import Database
from lexrag.errors import UNAUTHORIZED, RejectionError


def get_config(request: Request) -> LexragConfig:
    return request.app.state.config


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_conn(database: Database = Depends(get_database)) -> Iterator[sqlite3.Connection]:
    """One connection per request, closed when the response is sent."""
    conn = database.connect()
    try:
        yield conn
    finally:
        conn.close()


def current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Optional[UserIdentity]:
    """Identity set by the upstream auth provider, or None if absent."""
    if not x_user_id:
        return None
    return UserIdentity(id=x_user_id, email=x_user_email)


def require_user(user: Optional[UserIdentity] = Depends(current_user)) -> UserIdentity:
    if user is None:
        raise RejectionError(UNAUTHORIZED, "Authentication required.")
    return user


def require_admin(
    config: LexragConfig = Depends(get_config),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """Accept ``Authorization: Bearer <LEXRAG_ADMIN_TOKEN>`` only."""
    expected = config.server.admin_token
    if not expected:
        raise RejectionError(UNAUTHORIZED, "Admin access is not configured.")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), expected.encode()):
        raise RejectionError(UNAUTHORIZED, "Admin authorization required.")
