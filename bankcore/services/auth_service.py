"""
Authentication service — signup and login business logic.

Signup flow:
  1. Check if email is already registered
  2. Hash the password with Argon2id
  3. Create the User and its identity-verification case in one transaction
  4. Return a JWT token so the user is immediately logged in

Login flow:
  1. Look up user by email
  2. Verify password against stored hash
  3. Return a JWT token

The token carries the user id ("sub") and role ("role"). The dependency
layer re-reads the user on every request, so a role change or
deactivation takes effect without waiting for the token to expire.

Login returns the same error for "wrong password" and "email not found"
to prevent user enumeration.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.exceptions import DuplicateEmailError, InvalidCredentialsError
from bankcore.models.user import User, UserRole
from bankcore.security import create_access_token, hash_password, verify_password
from bankcore.services import verification_service

logger = logging.getLogger(__name__)


def issue_token(user: User) -> str:
    return create_access_token(data={"sub": str(user.id), "role": user.role.value})


async def signup(
    db: AsyncSession,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
) -> tuple[User, str]:
    """
    Register a new customer.

    Returns:
        Tuple of (User instance, JWT token string).

    Raises:
        DuplicateEmailError: If the email is already registered.
    """
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise DuplicateEmailError(email)

    user = User(
        email=email,
        hashed_password=hash_password(password),
        role=UserRole.USER,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
    )
    db.add(user)
    # Flush to get user.id assigned (needed for the verification case FK)
    await db.flush()

    await verification_service.get_or_create_case(db, user.id)

    logger.info("user.signed_up", extra={"user_id": str(user.id)})
    return user, issue_token(user)


async def login(
    db: AsyncSession,
    email: str,
    password: str,
) -> tuple[User, str]:
    """
    Authenticate a user and return a JWT token.

    Raises:
        InvalidCredentialsError: If email doesn't exist, the password is
            wrong, or the user is deactivated.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    # Same error for every case — prevents user enumeration
    if user is None:
        raise InvalidCredentialsError()

    if not verify_password(password, user.hashed_password):
        logger.warning("user.login_failed", extra={"user_id": str(user.id)})
        raise InvalidCredentialsError()

    if not user.is_active:
        raise InvalidCredentialsError()

    return user, issue_token(user)
