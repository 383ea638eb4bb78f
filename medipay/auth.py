from fastapi import Header, HTTPException
from jose import JWTError, jwt

from medipay.config import get_settings


def verify_token(authorization: str = Header(None)):
    """Bearer HS256 check guarding operator-only endpoints."""
    secret = get_settings().jwt_secret
    if not authorization or not secret:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError(scheme)
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
