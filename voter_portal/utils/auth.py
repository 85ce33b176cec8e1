import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import uuid
import jwt
import bcrypt

from voter_portal.config.settings import settings

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72

ROLE_HIERARCHY: Dict[str, int] = {
    "volunteer": 1,
    "supervisor": 2,
    "admin": 3,
}


class AuthUtils:
    """Authentication utilities for JWT token management and password hashing"""

    @staticmethod
    def hash_password(password: str, rounds: Optional[int] = None) -> str:
        """Hash a password with a per-password salt"""
        encoded = password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValueError("Password is too long")
        salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """Check a password against a stored bcrypt hash"""
        encoded = password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
        except ValueError:
            # Malformed hash in storage
            return False

    @staticmethod
    async def hash_password_async(password: str) -> str:
        """bcrypt is CPU bound; hash on the default executor"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, AuthUtils.hash_password, password)

    @staticmethod
    async def verify_password_async(password: str, password_hash: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, AuthUtils.verify_password, password, password_hash
        )

    @staticmethod
    def generate_access_token(
        user_id: int,
        email: str,
        role: str,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Generate JWT access token embedding the user's id, email and role"""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(hours=settings.JWT_EXPIRE_HOURS))

        payload = {
            "sub": str(user_id),  # Subject (user ID)
            "id": user_id,
            "email": email,
            "role": role,
            "iat": now,  # Issued at
            "exp": expire,  # Expiration
            "jti": str(uuid.uuid4()),  # JWT ID for uniqueness
        }

        return jwt.encode(
            payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
        )

    @staticmethod
    def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
        """Verify signature and expiry only; never consults the database"""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @staticmethod
    def has_role(user_role: str, required_role: str) -> bool:
        """Hierarchical role check: admin > supervisor > volunteer"""
        user_level = ROLE_HIERARCHY.get(user_role, 0)
        required_level = ROLE_HIERARCHY.get(required_role)
        if required_level is None:
            return False
        return user_level >= required_level


# Hash used to keep login timing uniform when the user does not exist
_DUMMY_PASSWORD_HASH: Optional[str] = None


def dummy_password_hash() -> str:
    global _DUMMY_PASSWORD_HASH
    if _DUMMY_PASSWORD_HASH is None:
        _DUMMY_PASSWORD_HASH = AuthUtils.hash_password(uuid.uuid4().hex)
    return _DUMMY_PASSWORD_HASH
