"""
Request and response bodies of /auth. New users are always customers;
administrators are provisioned outside the API.
"""

import uuid

from pydantic import BaseModel, EmailStr, Field


class UserSignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    # Without a phone number no SMS channel is used
    phone: str | None = Field(None, max_length=20)


class UserLoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"


class SignupResponse(TokenResponse):
    """The new user, already logged in."""
    user_id: uuid.UUID
    email: str
    role: str
