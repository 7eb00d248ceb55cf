# src/auth/services.py
import logging

from sqlalchemy.orm import Session
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from typing import Optional
from auth.models import User
from config import settings

logger = logging.getLogger(__name__)

class AuthService:
    """Token handling for callers of the billing API.

    Accounts are managed elsewhere; this service only issues and reads the
    bearer tokens that identify the paying user.
    """

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        claims = dict(data)
        lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        claims["exp"] = datetime.now(timezone.utc) + lifetime
        return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def read_subject(token: str) -> Optional[str]:
        """Email carried by a valid, unexpired token; None otherwise."""
        try:
            claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError as e:
            logger.warning(f"Rejected bearer token: {str(e)}")
            return None
        if claims.get("exp") is None:
            return None
        return claims.get("sub")

    @staticmethod
    def get_user_by_email(email: str, db: Session) -> Optional[User]:
        return db.query(User).filter(User.email == email).first()
