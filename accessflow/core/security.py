from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from jose import JWTError, jwt
from passlib.context import CryptContext

from accessflow.core.config import settings
from accessflow.core.rbac import Permission


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    subject: str,
    role: str,
    permissions: Iterable[str],
    config_version: int,
    expires_delta: timedelta | None = None,
) -> tuple[str, datetime]:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "perms": sorted(Permission(p).value for p in permissions),
        "cfg": config_version,
        "iat": int(datetime.now(timezone.utc).timestamp()),
        "exp": expire,
    }
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt, expire


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
