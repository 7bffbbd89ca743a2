# storefront/auth_utils.py
from datetime import datetime, timedelta, timezone

import jwt

from storefront.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from storefront.errors import AuthError


def create_access_token(data: dict, expires_delta: timedelta = None):
    """Создает JWT токен с указанным временем истечения."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Возвращает payload токена; просроченный или битый токен - AuthError."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Your session has expired, please sign in again")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")
    if payload.get("id") is None:
        raise AuthError("Invalid token")
    return payload
