import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from dotenv import load_dotenv

from .exceptions import AuthenticationError
from .models import UserRole
from .schemas import Principal

load_dotenv()

# JWT settings
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-please-change-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create access token carrying sub, tenant_id and role"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> Principal:
    """Verify the token and turn its claims into the caller's principal"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    token_type = payload.get("type")

    if not user_id or not tenant_id or token_type != "access":
        raise AuthenticationError("Could not validate credentials")

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise AuthenticationError("Unknown role in access token")

    return Principal(user_id=user_id, tenant_id=tenant_id, role=role)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Principal:
    """Caller identity for every authenticated endpoint"""
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return decode_access_token(credentials.credentials)
