# Token Store — AES-256-GCM encrypted token persistence.
# Created: 2026-03-04
#
# File layout: {"iv": hex, "tag": hex, "encrypted": hex}. The plaintext is a
# JSON object of persisted values; the token record lives under "tokens".

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import stat
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from kickmcp.auth.models import TokenRecord
from kickmcp.errors import ConfigurationError

logger = logging.getLogger(__name__)

_IV_BYTES = 12
_TAG_BYTES = 16
_TOKENS_KEY = "tokens"


_PRIVATE_MODE = stat.S_IRUSR | stat.S_IWUSR


def _write_private(path: Path, text: str, *, exclusive: bool = False) -> None:
    """Write ``text`` to a file that is 0600 from the moment it exists."""
    flags = os.O_WRONLY | os.O_CREAT | (os.O_EXCL if exclusive else os.O_TRUNC)
    fd = os.open(path, flags, _PRIVATE_MODE)
    with os.fdopen(fd, "w") as fh:
        os.fchmod(fh.fileno(), _PRIVATE_MODE)
        fh.write(text)


def load_or_create_key(key_path: Path) -> bytes:
    """Read the hex key file, generating a fresh 32-byte key on first use."""
    if key_path.exists():
        raw = key_path.read_text().strip()
        return _parse_key(raw, source=str(key_path))

    key_path.parent.mkdir(parents=True, exist_ok=True)
    key = secrets.token_bytes(32)
    try:
        _write_private(key_path, key.hex(), exclusive=True)
    except FileExistsError:
        # Another process created it first; use theirs.
        return _parse_key(key_path.read_text().strip(), source=str(key_path))
    logger.info("Generated token encryption key at %s", key_path)
    return key


def _parse_key(raw: str, source: str = "token_encryption_key") -> bytes:
    try:
        key = bytes.fromhex(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{source} is not valid hex") from exc
    if len(key) != 32:
        raise ConfigurationError(f"{source} must decode to 32 bytes, got {len(key)}")
    return key


class PersistentStore:
    """Encrypted key/value file holding the process's :class:`TokenRecord`.

    File I/O runs in a worker thread so the event loop never blocks on disk.
    An unreadable or undecryptable file resets the store to empty.
    """

    def __init__(self, path: Path, key: bytes | str):
        self.path = Path(path)
        self._key = _parse_key(key) if isinstance(key, str) else key
        if len(self._key) != 32:
            raise ConfigurationError("Token encryption key must be 32 bytes")
        self._aes = AESGCM(self._key)
        self._data: dict[str, Any] = {}
        self._loaded = False

    @classmethod
    def from_settings(cls, settings) -> PersistentStore:
        path = settings.resolved_token_store_path()
        if settings.token_encryption_key:
            key: bytes = _parse_key(settings.token_encryption_key)
        else:
            key = load_or_create_key(path.with_suffix(".key"))
        return cls(path, key)

    # -- encryption ----------------------------------------------------------

    def _encrypt(self, payload: dict[str, Any]) -> dict[str, str]:
        iv = secrets.token_bytes(_IV_BYTES)
        sealed = self._aes.encrypt(iv, json.dumps(payload).encode(), None)
        # AESGCM appends the 16-byte tag to the ciphertext
        return {
            "iv": iv.hex(),
            "tag": sealed[-_TAG_BYTES:].hex(),
            "encrypted": sealed[:-_TAG_BYTES].hex(),
        }

    def _decrypt(self, blob: dict[str, str]) -> dict[str, Any]:
        iv = bytes.fromhex(blob["iv"])
        tag = bytes.fromhex(blob["tag"])
        ciphertext = bytes.fromhex(blob["encrypted"])
        plain = self._aes.decrypt(iv, ciphertext + tag, None)
        data = json.loads(plain)
        if not isinstance(data, dict):
            raise ValueError("decrypted payload is not an object")
        return data

    # -- file I/O ------------------------------------------------------------

    def _read_sync(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return {}
        try:
            blob = json.loads(self.path.read_text())
            return self._decrypt(blob)
        except (InvalidTag, ValueError, KeyError, TypeError, json.JSONDecodeError):
            logger.warning("Token store %s is unreadable; resetting", self.path, exc_info=True)
            return None

    def _write_sync(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        _write_private(tmp, json.dumps(self._encrypt(payload)))
        os.replace(tmp, self.path)

    async def load(self) -> None:
        data = await asyncio.to_thread(self._read_sync)
        if data is None:
            self._data = {}
            await self.save()
        else:
            self._data = data
        self._loaded = True

    async def save(self) -> None:
        await asyncio.to_thread(self._write_sync, dict(self._data))

    # -- key/value -----------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self.save()

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            await self.save()

    async def clear(self) -> None:
        self._data = {}
        await self.save()

    # -- token record --------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get_tokens(self) -> TokenRecord | None:
        raw = self._data.get(_TOKENS_KEY)
        if not isinstance(raw, dict) or not raw.get("access_token"):
            return None
        return TokenRecord.from_dict(raw)

    def get_access_token(self) -> str | None:
        record = self.get_tokens()
        return record.access_token if record else None

    async def save_tokens(self, record: TokenRecord) -> None:
        await self.set(_TOKENS_KEY, record.to_dict())
        logger.info("Saved OAuth tokens (user=%s)", record.user_id or "unknown")

    async def clear_tokens(self) -> None:
        await self.delete(_TOKENS_KEY)
        logger.info("Cleared OAuth tokens")
