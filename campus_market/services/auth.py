from dataclasses import dataclass
from typing import Optional, Protocol
import logging

from jose import JWTError, jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.config import settings
from campus_market.db import functions as queries
from campus_market.db.session import get_db

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class AuthenticationFailed(Exception):
    pass


@dataclass(frozen=True)
class Identity:
    """What the identity provider vouches for."""
    subject_id: str
    email: str
    name: Optional[str] = None


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    is_admin: bool = False
    name: Optional[str] = None


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> Identity:
        ...


class JWTIdentityVerifier:
    """Verifies access tokens issued by the external identity provider."""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: Optional[str] = None):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience

    async def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            raise AuthenticationFailed(str(e))

        subject_id = payload.get("sub")
        email = payload.get("email")
        if not subject_id or not email:
            raise AuthenticationFailed("Token is missing subject or email")

        metadata = payload.get("user_metadata") or {}
        return Identity(subject_id=subject_id, email=email, name=metadata.get("name"))


_verifier: Optional[IdentityVerifier] = None

def get_identity_verifier() -> IdentityVerifier:
    global _verifier
    if _verifier is None:
        _verifier = JWTIdentityVerifier(
            secret=settings.AUTH_JWT_SECRET,
            algorithm=settings.AUTH_JWT_ALGORITHM,
            audience=settings.AUTH_JWT_AUDIENCE,
        )
    return _verifier


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Identity:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return await verifier.verify(credentials.credentials)
    except AuthenticationFailed as e:
        logger.info(f"Rejected bearer token: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

async def get_current_user(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    # The local row may not exist yet if the client has not synced
    user = await queries.get_user_by_id(db, identity.subject_id)
    if user is not None and user.is_blocked:
        raise HTTPException(status_code=403, detail="User is blocked")

    return CurrentUser(
        id=identity.subject_id,
        email=identity.email,
        is_admin=bool(user.is_admin) if user is not None else False,
        name=identity.name,
    )

async def get_admin_user(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
