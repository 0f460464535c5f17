"""
Caller identity.

Authentication proper (login, sessions, passwords) belongs to the identity
service; this module only validates its bearer JWTs, resolves the subject
against the user directory and exposes role-checking dependencies. The
resolved identity is trusted for audit attribution.
"""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.config import settings
from geotrack.constants.roles import AUDIT_VIEWER_ROLE, OPERATOR_ROLE
from geotrack.database import get_db
from geotrack.exceptions import AuthenticationError, InsufficientPrivilegeError, TransientStorageError
from geotrack.models.user import User
from geotrack.schemas.caller import Caller

logger = logging.getLogger(__name__)

# OAuth2 scheme for token validation
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (email) in token data.")
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> str:
    """Return the email in the token's ``sub`` claim."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        logger.warning("Token expired")
        raise AuthenticationError("Token has expired") from None
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {str(e)}")
        raise AuthenticationError("Invalid token") from None

    email = payload.get("sub")
    if not email:
        raise AuthenticationError("Token does not contain 'sub' field.")
    return email


async def get_user_from_token(token: str, db: AsyncSession) -> User:
    email = decode_access_token(token)
    try:
        result = await db.execute(select(User).where(User.email == email))
    except SQLAlchemyError as exc:
        raise TransientStorageError(operation="resolve_user") from exc
    user = result.scalars().first()
    if user is None or not user.is_active:
        logger.warning(f"User with email '{email}' not found or inactive.")
        raise AuthenticationError()
    return user


def client_ip(request) -> str | None:
    """Network origin of the caller, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45]
    return request.client.host if request.client else None


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise AuthenticationError("Not authenticated")
    return await get_user_from_token(token, db)


async def get_caller(request: Request, user: User = Depends(get_current_user)) -> Caller:
    request.state.caller_id = user.id
    return Caller(user_id=user.id, role=user.role, ip_address=client_ip(request))


async def require_operator(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_operator:
        raise InsufficientPrivilegeError(OPERATOR_ROLE.value)
    return caller


async def require_audit_viewer(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.can_view_audit:
        raise InsufficientPrivilegeError(
            AUDIT_VIEWER_ROLE.value,
            message="Reading the location audit log requires administrator privileges",
        )
    return caller
