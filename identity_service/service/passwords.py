from __future__ import annotations

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import HashingError, InvalidHash, VerificationError, VerifyMismatchError

from identity_service.logging import get_logger
from identity_service.service.errors import InfrastructureFault

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class PasswordHasher:
    """argon2id hashing with a random salt embedded in every digest.

    ``verify`` answers ``False`` only for a genuine mismatch. A malformed
    stored hash or a backend failure raises :class:`InfrastructureFault`
    so it cannot be mistaken for a wrong password.
    """

    def __init__(self, hasher: _Argon2Hasher | None = None) -> None:
        self._hasher = hasher or _Argon2Hasher(type=Type.ID)
        # Lazily computed; used to spend verify time on unknown accounts
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        try:
            return self._hasher.hash(plaintext)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise InfrastructureFault("password hashing failed") from exc

    def verify(self, password_hash: str, plaintext: str) -> bool:
        try:
            return self._hasher.verify(password_hash, plaintext)
        except VerifyMismatchError:
            return False
        except InvalidHash as exc:
            logger.error("password_hash_malformed", error=str(exc))
            raise InfrastructureFault("stored password hash is malformed") from exc
        except VerificationError as exc:
            logger.error("password_verify_failed", error=str(exc))
            raise InfrastructureFault("password verification failed") from exc

    def burn_verify(self, plaintext: str) -> None:
        """Run one verification against a throwaway hash and discard the result."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("identity-service-timing-placeholder")
        self.verify(self._dummy_hash, plaintext)
