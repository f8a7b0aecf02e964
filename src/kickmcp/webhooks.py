"""Webhook signature verification.

Kick signs ``"{message_id}.{timestamp}.{body}"`` with RSA PKCS#1 v1.5 over
SHA-256 and sends the base64 signature in ``Kick-Event-Signature``.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from kickmcp.errors import InvalidParamsError, UpstreamError

logger = logging.getLogger(__name__)


def extract_public_key(response: Any) -> str:
    """Pull the PEM out of a ``/public-key`` response (wrapped or bare)."""
    if isinstance(response, dict):
        inner = response.get("data")
        if isinstance(inner, dict) and isinstance(inner.get("public_key"), str):
            return inner["public_key"]
        if isinstance(response.get("public_key"), str):
            return response["public_key"]
    if isinstance(response, str) and "BEGIN PUBLIC KEY" in response:
        return response
    raise UpstreamError(502, response, "Public key missing from upstream response")


def load_public_key(pem: str) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem.encode())
    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidParamsError("public_key", "Webhook public key is not an RSA key")
    return key


def verify_signature(
    public_key: rsa.RSAPublicKey,
    signature: str,
    message_id: str,
    timestamp: str,
    body: str,
) -> bool:
    try:
        raw = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    message = f"{message_id}.{timestamp}.{body}".encode()
    try:
        public_key.verify(raw, message, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


class WebhookVerifier:
    """Verifies signatures against the platform key, fetched once and kept."""

    def __init__(self, fetch_public_key: Callable[[], Awaitable[Any]]):
        self._fetch = fetch_public_key
        self._key: rsa.RSAPublicKey | None = None

    async def public_key(self) -> rsa.RSAPublicKey:
        if self._key is None:
            pem = extract_public_key(await self._fetch())
            self._key = load_public_key(pem)
            logger.info("Loaded webhook public key")
        return self._key

    async def verify(self, signature: str, message_id: str, timestamp: str, body: str) -> bool:
        key = await self.public_key()
        valid = verify_signature(key, signature, str(message_id), str(timestamp), body)
        if not valid:
            logger.warning("Webhook signature mismatch for message %s", message_id)
        return valid
