from datetime import datetime, timedelta, timezone

from jose import jwt

from boxoffice.core.config import settings

# Tokens are issued by the identity service; we only need to read (and, in tests, mint) them.
ALGO = "HS256"


def create_access_token(subject: str, role: str = "customer", expires_minutes: int | None = None) -> str:
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    exp = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "role": role, "type": "access", "exp": exp}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
