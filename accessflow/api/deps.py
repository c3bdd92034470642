from collections.abc import Callable
from typing import Literal

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from accessflow.core.errors import ConfigurationError
from accessflow.core.rbac import Permission
from accessflow.core.security import decode_access_token
from accessflow.models.auth import SessionSnapshot
from accessflow.services.container import auth_service, permission_service


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def get_current_session(token: str = Depends(oauth2_scheme)) -> SessionSnapshot:
    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from exc

    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    try:
        snapshot = auth_service.session_from_claims(payload)
    except ConfigurationError as exc:
        # The token names a permission the catalog no longer knows.
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session permissions are out of date; sign in again",
        ) from exc

    return permission_service.check_session(snapshot)


def require_permission(
    *permissions: Permission,
    mode: Literal["any", "all"] = "any",
) -> Callable[[SessionSnapshot], SessionSnapshot]:
    def dependency(session: SessionSnapshot = Depends(get_current_session)) -> SessionSnapshot:
        permission_service.require(session, list(permissions), mode)
        return session

    return dependency
