from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from accessflow.api.deps import get_current_session
from accessflow.models.auth import CurrentSession, EmployeeDirectory, SessionSnapshot, Token, UserPublic
from accessflow.services.container import auth_service, permission_service


router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/token", response_model=Token)
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()) -> Token:
    user = auth_service.authenticate(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth_service.issue_token(user)


@router.get("/current-session", response_model=CurrentSession)
def read_current_session(session: SessionSnapshot = Depends(get_current_session)) -> CurrentSession:
    return auth_service.current_session(session)


@router.post("/refresh", response_model=Token)
def refresh_session(session: SessionSnapshot = Depends(get_current_session)) -> Token:
    return auth_service.token_for(permission_service.refresh(session))


@router.get("/me", response_model=UserPublic)
def read_me(session: SessionSnapshot = Depends(get_current_session)) -> UserPublic:
    return auth_service.as_public(auth_service.require_user(session.user_id))


@router.get("/employees", response_model=EmployeeDirectory)
def list_employees(session: SessionSnapshot = Depends(get_current_session)) -> EmployeeDirectory:
    return auth_service.list_employees(session)
