"""Signed tokens: user sessions and moderation action links."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "catalog_session"
MODERATION_TOKEN_TYPE = "catalog_moderation"


def _encode(claims: Dict[str, Any], ttl_hours: int) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=max(int(ttl_hours), 1))
    claims = {
        **claims,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def _decode(token: str, expected_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != expected_type:
        raise ValueError("Invalid token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Token missing subject.")

    return payload


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    claims: Dict[str, Any] = {"sub": user_id, "type": SESSION_TOKEN_TYPE}
    if email:
        claims["email"] = email
    return _encode(claims, int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24))


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    return _decode(token, SESSION_TOKEN_TYPE)


def create_moderation_token(submission_id: str, expires_hours: Optional[int] = None) -> str:
    """Token embedded in the approve/decline links of the admin review email."""
    payload = _encode(
        {"sub": submission_id, "type": MODERATION_TOKEN_TYPE},
        int(expires_hours or settings.MODERATION_TOKEN_TTL_HOURS or 168),
    )
    return payload["token"]


def verify_moderation_token(token: str, submission_id: str) -> None:
    payload = _decode(token, MODERATION_TOKEN_TYPE)
    if str(payload.get("sub")) != str(submission_id):
        raise ValueError("Moderation token does not match submission.")
