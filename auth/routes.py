# src/auth/routes.py
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from auth.services import AuthService
from auth.schemas import UserResponse
from auth.models import User
from database import get_db

router = APIRouter(prefix="/auth", tags=["auth"])
bearer_scheme = HTTPBearer(auto_error=False)

def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme), db: Session = Depends(get_db)) -> User:
    """Resolve the paying user from the bearer token."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    email = AuthService.read_subject(credentials.credentials)
    if not email:
        raise _unauthorized("Could not validate credentials")
    user = AuthService.get_user_by_email(email, db)
    if user is None or not user.is_active:
        raise _unauthorized("Could not validate credentials")
    return user

@router.get("/me", response_model=UserResponse)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user
