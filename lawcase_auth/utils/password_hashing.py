"""
Password hashing utilities using bcrypt
"""

import asyncio
import re
from typing import List

import bcrypt

# bcrypt only reads the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
SPECIAL_CHARACTERS = r"[!@#$%^&*(),.?\":{}|<>]"


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt hashing with a configurable work factor"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password

        Returns:
            Hashed password as string (salt and cost embedded)
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(_encode(password), salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash.

        Args:
            password: Plain text password
            hashed_password: Previously hashed password

        Returns:
            True if password matches, False otherwise (including malformed hashes)
        """
        try:
            return bcrypt.checkpw(_encode(password), hashed_password.encode("utf-8"))
        except ValueError:
            return False

    async def hash_password_async(self, password: str) -> str:
        """Hash on a worker thread so the event loop is not blocked."""
        return await asyncio.to_thread(self.hash_password, password)

    async def verify_password_async(self, password: str, hashed_password: str) -> bool:
        """Verify on a worker thread so the event loop is not blocked."""
        return await asyncio.to_thread(self.verify_password, password, hashed_password)


def validate_password_strength(password: str) -> List[str]:
    """
    Check a candidate password against the password policy.

    Args:
        password: Plain text password

    Returns:
        Human readable violations; empty when the password is acceptable
    """
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
        )
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(
            f"Password must be no more than {PASSWORD_MAX_LENGTH} characters long"
        )
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not re.search(SPECIAL_CHARACTERS, password):
        errors.append("Password must contain at least one special character")
    return errors
