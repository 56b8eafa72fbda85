from datetime import datetime
from typing import Optional

import structlog
from fastapi import Depends, Request, Response
from itsdangerous import BadData, SignatureExpired, TimestampSigner, URLSafeTimedSerializer
from passlib.context import CryptContext
from pydantic import ValidationError as PayloadError

from config import get_settings
from errors import Unauthorized
from schemas import SessionPayload

logger = structlog.get_logger(__name__)

SESSION_COOKIE = "budgeto_session"
SESSION_SALT = "budgeto-session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7  # 7 days

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


class SessionSigner(TimestampSigner):
    """TimestampSigner that can stamp a fixed issue time instead of now."""

    def __init__(self, *args, issued_at: Optional[datetime] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.issued_at = issued_at

    def get_timestamp(self) -> int:
        if self.issued_at is not None:
            return int(self.issued_at.timestamp())
        return super().get_timestamp()


def _serializer(issued_at: Optional[datetime] = None):
    return URLSafeTimedSerializer(
        get_settings().auth_secret,
        salt=SESSION_SALT,
        signer=SessionSigner,
        signer_kwargs={"issued_at": issued_at},
    )


def issue_session(user_id: int, email: str, issued_at: Optional[datetime] = None) -> str:
    """Sign a session token for the user, valid for SESSION_MAX_AGE seconds from issued_at."""
    return _serializer(issued_at).dumps({"user_id": user_id, "email": email})


def verify_session(token: str) -> Optional[SessionPayload]:
    """Return the payload of a valid token, or None when it is malformed, forged or expired."""
    if not token:
        return None
    try:
        data, signed_at = _serializer().loads(token, max_age=SESSION_MAX_AGE, return_timestamp=True)
        issued_at = int(signed_at.timestamp())
        return SessionPayload(**data, issued_at=issued_at, expires_at=issued_at + SESSION_MAX_AGE)
    except SignatureExpired:
        logger.info("session_rejected", reason="expired")
    except (BadData, TypeError, PayloadError):
        logger.info("session_rejected", reason="bad_token")
    return None


def get_session(request: Request) -> Optional[SessionPayload]:
    return verify_session(request.cookies.get(SESSION_COOKIE))


def require_session(session: Optional[SessionPayload] = Depends(get_session)) -> SessionPayload:
    if session is None:
        raise Unauthorized()
    return session


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=SESSION_MAX_AGE,
        path="/",
        httponly=True,
        secure=get_settings().is_production,
        samesite="lax",
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")
