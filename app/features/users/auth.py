"""
Bearer token creation and verification.
"""
import time
from typing import Any, Dict

import jwt
from fastapi import HTTPException, status

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


def create_access_token(user_id: str, email: str, name: str, exp_minutes: int = 60) -> str:
    """
    Issue a signed token for a user.

    Used by scripts and tests; production tokens come from the identity provider
    sharing JWT_SECRET.
    """
    now = int(time.time())
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + exp_minutes * 60,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify a bearer token and return its payload.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        log.info("Rejected bearer token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
