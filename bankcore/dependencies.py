"""
FastAPI dependencies for authentication, authorization and service wiring.

Dependencies form a chain that turns a bearer token into an explicit caller
context, which is then passed to every service call:

  get_current_user (JWT -> User)
      └── get_caller_context (User -> CallerContext)
              ├── require_member  [USER role]
              └── require_admin   [ADMIN role]

Role-based access control:
  - USER: Moves money out of (and into) accounts it owns, manages its own
    cards, reads its own movements and notifications.
  - ADMIN: Reads every account and movement, adjusts balances and changes
    account status through /admin/*, resolves operator alerts. Admins are
    blocked from the customer movement endpoints.

The services re-check ownership against the CallerContext they receive;
these dependencies only decide who reaches which endpoint.
"""

import secrets
import uuid

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bankcore.config import settings
from bankcore.context import CallerContext
from bankcore.database import get_db, get_session_factory
from bankcore.models.user import User, UserRole
from bankcore.security import decode_access_token
from bankcore.services.notifications import NotificationDispatcher, build_dispatcher
from bankcore.services.transfer_engine import TransferEngine


# OAuth2PasswordBearer tells FastAPI where to look for the token:
# the "Authorization: Bearer <token>" header. The tokenUrl points to
# the login endpoint (used by Swagger UI's "Authorize" button).
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT token, then return the corresponding User.

    Raises:
        HTTPException 401: If the token is invalid, or the user doesn't exist
            or has been deactivated.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id_str: str | None = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = uuid.UUID(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


async def get_caller_context(user: User = Depends(get_current_user)) -> CallerContext:
    """
    The caller's identity as services see it.

    The role comes from the database row, not the token, so a demotion takes
    effect on the next request.
    """
    return CallerContext(user_id=user.id, role=user.role)


async def require_member(ctx: CallerContext = Depends(get_caller_context)) -> CallerContext:
    """
    Require a customer caller.

    Raises:
        HTTPException 403: If the caller is an admin (admins use /admin/*).
    """
    if ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin accounts cannot access member banking endpoints. "
                   "Use /admin/* endpoints instead.",
        )
    return ctx


async def require_admin(ctx: CallerContext = Depends(get_caller_context)) -> CallerContext:
    """
    Require the authenticated user to have the ADMIN role.

    Raises:
        HTTPException 403: If the user is not an admin.
    """
    if ctx.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return ctx


async def verify_provider_secret(
    x_verification_secret: str | None = Header(None),
) -> None:
    """
    Authenticate the identity-verification provider's webhook calls with the
    shared VERIFICATION_WEBHOOK_SECRET.
    """
    if x_verification_secret is None or not secrets.compare_digest(
        x_verification_secret, settings.VERIFICATION_WEBHOOK_SECRET
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid verification provider secret",
        )


def get_dispatcher(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> NotificationDispatcher:
    return build_dispatcher(session_factory)


def get_transfer_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> TransferEngine:
    """
    A Transfer Engine bound to the application's session factory.

    The engine opens its own sessions; it shares the process-wide account
    locks and change feed with every other engine instance.
    """
    return TransferEngine(session_factory, dispatcher)


async def idempotency_key_header(
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> str | None:
    """Optional `Idempotency-Key` header; takes precedence over a key in the body."""
    return idempotency_key
