from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import jwt, JWTError
from slotbook.core.config import settings

ALGORITHM = "HS256"

ROLE_USER = "user"
ROLE_PARTNER = "partner"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as resolved by the identity provider."""

    user_id: UUID
    role: str = ROLE_USER

    @property
    def is_partner(self) -> bool:
        return self.role == ROLE_PARTNER


def create_access_token(subject: str, role: str = ROLE_USER, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"exp": expire, "sub": str(subject), "role": role}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[Principal]:
    """Returns the caller (sub + role claims) or None if the token is invalid/expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    try:
        user_id = UUID(subject)
    except ValueError:
        return None
    return Principal(user_id=user_id, role=payload.get("role") or ROLE_USER)
