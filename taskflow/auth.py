from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.hash import bcrypt
from sqlalchemy.orm import Session

from . import crud, models
from .config import server_settings
from .database import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login")


def verify_password(plain_password, hashed_password):
    return bcrypt.verify(plain_password, hashed_password)


def authenticate_user(db: Session, email: str, password: str):
    user = crud.get_user_by_email(db, email)
    if not user:
        return False
    if not verify_password(password, user.hashed_password):
        return False
    return user


def create_access_token(sub: str, expires_delta: timedelta = None):
    expire = models.utcnow() + (expires_delta or timedelta(minutes=server_settings.token_expire_minutes))
    to_encode = {"sub": sub, "exp": expire}
    return jwt.encode(to_encode, server_settings.secret_key, algorithm=server_settings.algorithm)


def decode_access_token(token: str) -> Optional[str]:
    """User id carried by ``token``, or None when it is invalid or expired."""
    try:
        payload = jwt.decode(token, server_settings.secret_key, algorithms=[server_settings.algorithm])
    except JWTError:
        return None
    return payload.get("sub")


def require_api_key(apikey: Optional[str] = Header(default=None)):
    if server_settings.api_key and apikey != server_settings.api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user_id = decode_access_token(token)
    if user_id is None:
        raise credentials_exception
    user = crud.get_user_by_id(db, user_id)
    if user is None:
        raise credentials_exception
    return user


def get_super_admin(current_user=Depends(get_current_user)):
    if not current_user.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super-admin access required")
    return current_user
