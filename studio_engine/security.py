"""One-way password hashing for password attributes written through resources."""

from passlib.context import CryptContext

# pbkdf2_sha256 is pure Python in passlib; no native backend needed.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def is_hashed(value: str) -> bool:
    """True when ``value`` is already a hash this context recognises."""
    return pwd_context.identify(value) is not None
