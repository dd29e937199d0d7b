from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol, Tuple

from identity_service.config import Settings
from identity_service.logging import get_logger
from identity_service.service.errors import AuthenticationError
from identity_service.storage.models import RefreshToken, User

logger = get_logger(__name__)


class RefreshTokenWriter(Protocol):
    def create_refresh_token(self, token: RefreshToken) -> RefreshToken: ...


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str
    record: RefreshToken


def hash_refresh_token(plaintext: str) -> str:
    """Deterministic digest used for storage, lookup and rotation."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


class TokenMinter:
    """Signs access tokens and mints opaque refresh tokens."""

    def __init__(self, settings: Settings, store: RefreshTokenWriter) -> None:
        self.settings = settings
        self.store = store
        self._secret = (settings.jwt_secret or "").encode()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_ttl_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_ttl_days)

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def mint_access_token(self, user_id: str, username: str) -> str:
        now = self._now()
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "iss": self.settings.jwt_issuer,
            "userId": user_id,
            "username": username,
            "type": "access",
            "jti": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "exp": int((now + self.access_ttl).timestamp()),
        }
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """Return the claims of a valid access token or raise AuthenticationError."""
        claims = self._decode(token)
        if claims is None:
            raise AuthenticationError("invalid access token")
        return claims

    def _decode(self, token: str) -> Optional[dict[str, Any]]:
        if not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to avoid algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        if payload.get("type") != "access":
            return None
        try:
            exp_ts = float(payload.get("exp"))
        except (TypeError, ValueError):
            return None
        if exp_ts <= self._now().timestamp():
            return None
        return payload

    def mint_refresh_token(self) -> Tuple[str, str]:
        """Return ``(plaintext, digest)``; only the plaintext leaves the service."""
        plaintext = secrets.token_hex(self.settings.refresh_token_bytes)
        return plaintext, hash_refresh_token(plaintext)

    def issue(self, user: User) -> IssuedTokens:
        """Mint both tokens and persist one new refresh-token row for ``user``.

        Existing rows for the user are left alone.
        """
        access_token = self.mint_access_token(user.id, user.username)
        plaintext, digest = self.mint_refresh_token()
        record = self.store.create_refresh_token(
            RefreshToken.new(digest, user.id, self.refresh_ttl)
        )
        return IssuedTokens(
            access_token=access_token, refresh_token=plaintext, record=record
        )
