from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from courier.core.errors import Unauthenticated
from courier.core.settings import settings


def create_access_token(subject: str, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {"sub": subject, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as err:
        raise Unauthenticated("Invalid or expired token") from err


def user_id_from_token(token: Optional[str]) -> str:
    if not token:
        raise Unauthenticated()
    sub = decode_access_token(token).get("sub")
    if not sub:
        raise Unauthenticated("Token has no subject")
    return str(sub)
