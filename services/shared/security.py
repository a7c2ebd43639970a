import os
from typing import Optional

from fastapi import Header, HTTPException
from jose import jwt, JWTError, ExpiredSignatureError

JWT_SECRET = os.getenv("JWT_SECRET")
ALGO = "HS256"

# Optional future-proofing
JWT_ISSUER = os.getenv("JWT_ISSUER")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")


def decode_token(token: str) -> dict:
    if not JWT_SECRET:
        raise HTTPException(status_code=401, detail="Token auth is not configured")

    try:
        options = {"verify_aud": bool(JWT_AUDIENCE)}
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[ALGO],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options=options,
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def optional_user(authorization: str = Header(default=None)) -> Optional[dict]:
    """
    Guest checkout is allowed, so a missing header yields None.
    A header that is present must carry a valid bearer token.
    """
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    return decode_token(token)


def claims_user_id(claims: Optional[dict]) -> Optional[int]:
    if not claims:
        return None
    sub = claims.get("sub")
    try:
        return int(sub) if sub is not None else None
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")
