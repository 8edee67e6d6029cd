"""Signed session tokens for registered accounts."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "hirescore_session"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    email: Optional[str]
    expires_at: int


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Sign a token for ``user_id`` and return it with its expiry (epoch seconds)."""
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(hours=max(int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24), 1))
    expires_at = int((issued_at + lifetime).timestamp())

    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": expires_at,
    }
    if email:
        claims["email"] = email

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": expires_at,
    }


def read_session_token(token: str) -> SessionClaims:
    """Verify ``token``; raises ValueError when it is expired, forged or not a session token."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if claims.get("type") != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise ValueError("Session token missing subject.")

    return SessionClaims(
        user_id=user_id,
        email=claims.get("email") or None,
        expires_at=int(claims.get("exp") or 0),
    )
