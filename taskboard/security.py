"""
Password hashing. bcrypt only looks at the first 72 bytes of its input, so
passwords are cut to that many bytes before hashing and verifying.
"""

import logging

from passlib.context import CryptContext
from passlib.exc import PasswordValueError

from taskboard.config import get_settings
from taskboard.errors import ValidationError

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_settings().bcrypt_rounds,
)


def configure_hashing(rounds: int) -> None:
    """Sets the bcrypt cost used for new hashes. Existing hashes still verify."""
    pwd_context.update(bcrypt__rounds=rounds)


def _truncate(password: str) -> str:
    # Drop a multi-byte character split at the boundary rather than keep half of it
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    try:
        return pwd_context.hash(_truncate(password))
    except PasswordValueError as exc:
        # bcrypt refuses NUL characters
        raise ValidationError("Invalid password") from exc


def verify_password(password: str, password_hash: str) -> bool:
    """
    True when `password` matches the stored hash. A stored value that is not a
    recognisable hash never matches, and neither does a password bcrypt cannot take.
    """
    if not password_hash:
        return False
    try:
        return pwd_context.verify(_truncate(password), password_hash)
    except PasswordValueError:
        logger.info("Submitted password rejected by the hasher")
        return False
    except ValueError:
        logger.warning("Stored password hash has an unrecognised format")
        return False
