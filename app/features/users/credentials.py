"""
Credential issuance for accounts created on someone else's behalf.

Admins created by a superAdmin or a primary admin get a generated password,
stored as a bcrypt hash and delivered once by email.
"""
import secrets

import bcrypt

from app.core import config


UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
DIGITS = "0123456789"
SPECIAL = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def generate_password(length: int = 12, min_per_class: int = 2) -> str:
    """
    Random password with at least `min_per_class` characters from each class.

    Length is clamped to 8..20.
    """
    length = max(8, min(length, 20))
    classes = (UPPERCASE, LOWERCASE, DIGITS, SPECIAL)
    chars = [secrets.choice(charset) for charset in classes for _ in range(min_per_class)]
    charset = "".join(classes)
    chars += [secrets.choice(charset) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def hash_password(password: str, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class CredentialIssuer:
    """
    Generates and hashes one-time account credentials.

    Usage:
        issuer = CredentialIssuer()
        secret = issuer.generate_credential()
        user.password_hash = issuer.hash(secret)
    """

    def __init__(self, rounds: int | None = None):
        self.rounds = rounds

    def generate_credential(self) -> str:
        return generate_password(12, min_per_class=2)

    def hash(self, secret: str) -> str:
        return hash_password(secret, self.rounds)
