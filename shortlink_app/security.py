"""
Bearer token validation.

Accounts and sessions live outside this service. A token only has to carry
the principal id (``sub``) that owns the links it creates.
"""

from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError

from shortlink_app.config import settings
from shortlink_app.logging_config import get_logger
from shortlink_app.utils import utc_now

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class TokenAuthority:
    """Issues and verifies HS256 access tokens for a principal id"""

    def __init__(self, secret_key: str = None, algorithm: str = None, expire_minutes: int = None):
        self.secret_key = secret_key or settings.secret_key
        if not self.secret_key:
            raise ValueError("SECRET_KEY must be configured")
        self.algorithm = algorithm or settings.jwt_algorithm
        self.expires = timedelta(minutes=expire_minutes or settings.jwt_expire_minutes)

    def issue_token(self, principal_id: str) -> str:
        now = utc_now()
        payload = {
            "sub": principal_id,
            "iat": now,
            "exp": now + self.expires,
            "type": "access",
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[str]:
        """Principal id of a valid access token, else None"""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"]}
            )
        except InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            return None

        if payload.get("type") != "access":
            logger.debug("Invalid token type")
            return None
        return payload.get("sub")


def get_token_authority() -> TokenAuthority:
    return TokenAuthority()


async def get_optional_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    authority: TokenAuthority = Depends(get_token_authority)
) -> Optional[str]:
    """Principal id when a valid token is sent; anonymous callers get None"""
    if credentials is None:
        return None
    return authority.verify_token(credentials.credentials)


async def require_owner(owner: Optional[str] = Depends(get_optional_owner)) -> str:
    """
    Principal id of the caller.

    Raises:
        HTTPException: 401 when the token is missing or invalid
    """
    if owner is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return owner
