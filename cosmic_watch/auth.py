"""Bearer-token verification for identities issued by the external provider."""
import logging
from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    uid: str
    email: str | None = None
    name: str | None = None


def decode_token(token: str) -> dict:
    """Verify signature and registered claims, returning the token payload."""
    options = {"require": ["exp"]}
    try:
        return jwt.decode(
            token,
            config.AUTH_SECRET,
            algorithms=[config.AUTH_ALGORITHM],
            audience=config.AUTH_AUDIENCE,
            issuer=config.AUTH_ISSUER,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as exc:
        logger.info("rejected token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(credentials.credentials)
    uid = payload.get("sub") or payload.get("user_id")
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return CurrentUser(uid=str(uid), email=payload.get("email"), name=payload.get("name"))
