"""Peer authentication for the receiver."""

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from fieldsync.receiver.config import ReceiverSettings

logger = logging.getLogger(__name__)

# PBKDF2 parameters
PBKDF2_ITERATIONS = 480_000
PBKDF2_HASH = "sha256"
SALT_LENGTH = 32


@dataclass(frozen=True)
class Principal:
    """An authenticated peer."""

    name: str
    method: str  # api-key or password


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Hash a password with PBKDF2-HMAC-SHA256 and a random salt.

    Returns a string in the format: ``iterations$salt_hex$derived_hex``.
    """
    salt = os.urandom(SALT_LENGTH)
    derived = hashlib.pbkdf2_hmac(PBKDF2_HASH, password.encode(), salt, iterations)
    return f"{iterations}${salt.hex()}${derived.hex()}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Constant-time password verification against a PBKDF2 hash string."""
    parts = stored_hash.split("$", 2)
    if len(parts) != 3:
        return False
    iterations_str, salt_hex, expected_hex = parts
    try:
        iterations = int(iterations_str)
        salt = bytes.fromhex(salt_hex)
    except (ValueError, TypeError):
        return False
    derived = hashlib.pbkdf2_hmac(PBKDF2_HASH, password.encode(), salt, iterations)
    return hmac.compare_digest(derived.hex().encode(), expected_hex.encode())


class Authenticator:
    """Turns request headers into a Principal.

    Accepts `Authorization: Bearer <apiKey>` or the `X-Username` and
    `X-Password` pair. A credential kind the receiver is not configured
    for never authenticates.
    """

    def __init__(self, settings: ReceiverSettings):
        self.api_key = settings.api_key
        self.username = settings.username
        self.password_hash = settings.password_hash
        if not self.api_key and not (self.username and self.password_hash):
            logger.warning("Receiver has no credentials configured; every request will be rejected")

    def authenticate(
        self,
        authorization: Optional[str],
        username: Optional[str],
        password: Optional[str],
    ) -> Optional[Principal]:
        if authorization and self.api_key:
            scheme, _, token = authorization.partition(" ")
            if scheme.lower() == "bearer" and hmac.compare_digest(token.strip().encode(), self.api_key.encode()):
                return Principal(name="api-key", method="api-key")

        if username and password and self.username and self.password_hash:
            if hmac.compare_digest(username.encode(), self.username.encode()) and verify_password(password, self.password_hash):
                return Principal(name=username, method="password")

        return None

    async def __call__(self, request: Request) -> Principal:
        """FastAPI dependency: authenticated principal or 401."""
        principal = self.authenticate(
            request.headers.get("authorization"),
            request.headers.get("x-username"),
            request.headers.get("x-password"),
        )
        if principal is None:
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Rejected unauthenticated request from {client} to {request.url.path}")
            raise HTTPException(
                status_code=401,
                detail="Invalid or missing credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return principal
