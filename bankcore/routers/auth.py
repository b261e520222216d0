"""
Auth router.

  POST /auth/signup  — create a customer and log them in
  POST /auth/login   — exchange email and password for a bearer token

Both are public, as is the verification provider's webhook; every other
route needs the token. Passwords are hashed by auth_service and never
logged.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.database import get_db
from bankcore.schemas.auth import (
    SignupResponse,
    TokenResponse,
    UserLoginRequest,
    UserSignupRequest,
)
from bankcore.services import auth_service

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer",
)
async def signup(
    request: UserSignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a customer together with their identity-verification case.
    Until verification completes, movements are capped at the unverified
    limit. Answers 409 `duplicate_email` when the address is taken.
    """
    user, token = await auth_service.signup(
        db=db,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
    )
    return SignupResponse(
        user_id=user.id,
        email=user.email,
        role=user.role.value,
        token=token,
    )


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Log in",
)
async def login(
    request: UserLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Unknown email, wrong password and deactivated user all answer 401
    `invalid_credentials`, so the response never reveals which one it was.
    """
    _, token = await auth_service.login(
        db=db,
        email=request.email,
        password=request.password,
    )
    return TokenResponse(token=token)
