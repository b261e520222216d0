"""
Security utilities: password hashing, JWT tokens, and Fernet encryption.

1. PASSWORD HASHING (Argon2)
   Passwords are hashed with Argon2id through passlib's CryptContext and
   never stored or logged in plaintext.

2. JWT TOKENS
   After login the caller receives a signed token carrying the user id
   ("sub") and role ("role"). The dependency layer turns it into an explicit
   CallerContext that is passed to every Transfer Engine call; nothing reads
   identity from ambient global state.

3. FERNET ENCRYPTION (AES-128-CBC + HMAC-SHA256)
   Card numbers, CVVs and activation codes are encrypted at rest with the
   key from CARD_ENCRYPTION_KEY.
"""

from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from jose import jwt
from passlib.context import CryptContext

from bankcore.config import settings


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password using Argon2id."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a stored Argon2 hash (constant time)."""
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Claims to encode; must include "sub" (user id) and "role".
        expires_delta: Optional custom lifetime. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ---------------------------------------------------------------------------
# 3. Fernet Encryption (for card data at rest)
# ---------------------------------------------------------------------------

_fernet = Fernet(settings.CARD_ENCRYPTION_KEY.encode())


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a string for storage in a LargeBinary column."""
    return _fernet.encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """
    Decrypt a Fernet-encrypted value back to plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the data is corrupted or
            the encryption key doesn't match.
    """
    return _fernet.decrypt(ciphertext).decode()
