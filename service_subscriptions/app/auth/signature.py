"""
Ed25519 request signature verification for Discord interactions.
"""

from __future__ import annotations

import binascii
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from fastapi import Request

from shared.errors import AuthenticationError, ConfigurationError, ValidationError
from shared.logging import get_logger

SIGNATURE_HEADER = "X-Signature-Ed25519"
TIMESTAMP_HEADER = "X-Signature-Timestamp"

SIGNATURE_LENGTH = 64


class Ed25519SignatureVerifier:
    """Verifies ``signature == sign(timestamp || body)`` for inbound requests."""

    def __init__(self, public_key_hex: str):
        self.public_key_hex = public_key_hex
        self.logger = get_logger("subscriptions.auth.signature")
        self._public_key: Optional[Ed25519PublicKey] = None

    async def authenticate(self, request: Request) -> bytes:
        """FastAPI dependency guarding the interaction endpoint.

        Returns the raw body. Starlette keeps the bytes on the request, so the
        handler can read the identical body again.
        """
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            raise AuthenticationError("Missing signature header")

        timestamp = request.headers.get(TIMESTAMP_HEADER)
        if not timestamp:
            raise AuthenticationError("Missing signature timestamp")

        body = await request.body()
        self.verify(timestamp, body, signature)
        return body

    def verify(self, timestamp: str, body: bytes, signature_hex: str) -> None:
        """Raise unless ``signature_hex`` signs ``timestamp || body``."""
        public_key = self._load_public_key()

        try:
            signature = binascii.unhexlify(signature_hex)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Failed to decode signature") from exc

        if len(signature) != SIGNATURE_LENGTH:
            raise AuthenticationError("Invalid signature")

        # Header values are decoded as latin-1, so this restores the bytes as sent.
        try:
            signed = timestamp.encode("latin-1") + body
        except UnicodeEncodeError as exc:
            raise AuthenticationError("Invalid signature timestamp") from exc

        try:
            public_key.verify(signature, signed)
        except InvalidSignature as exc:
            raise AuthenticationError("Invalid signature") from exc

    def _load_public_key(self) -> Ed25519PublicKey:
        if self._public_key is not None:
            return self._public_key

        try:
            raw = binascii.unhexlify(self.public_key_hex.strip())
            self._public_key = Ed25519PublicKey.from_public_bytes(raw)
        except (binascii.Error, ValueError) as exc:
            self.logger.error("Failed to decode public key", error=str(exc))
            raise ConfigurationError("Failed to decode public key") from exc

        return self._public_key
