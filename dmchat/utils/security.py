from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from dmchat.config import Settings, get_settings
from dmchat.errors import AuthorizationError


def create_access_token(subject: str, settings: Optional[Settings] = None, expires_minutes: Optional[int] = None) -> str:
    settings = settings or get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode({"sub": subject, "exp": expire}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise AuthorizationError("Invalid or expired token", authenticated=False) from exc
    if not payload.get("sub"):
        raise AuthorizationError("Token has no subject", authenticated=False)
    return payload
