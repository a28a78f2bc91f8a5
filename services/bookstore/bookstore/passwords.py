"""
One-way password hashing
"""
from passlib.context import CryptContext


password_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return password_ctx.verify(password, hashed)
    except ValueError:
        # unrecognised hash format
        return False
