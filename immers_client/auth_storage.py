"""Session persistence for the immers client.

A SessionStore holds the user's handle and credential. By default it is a
plain in-memory mapping that lives as long as the client. With persistence
enabled every mutation is mirrored to the system keyring under a single key
(`_immers_client_store`) and the store hydrates from it on construction.

The record is one JSON document. Some keyring backends (Windows Credential
Manager variants) reject large values, so it is written as base64 chunks
under `{key}.part{i}` with the part count stored at `{key}.parts`.

Keyring failures never reach callers: the in-memory record stays
authoritative for the life of the process and the failure is logged.

Public surface:
  - SessionStore.load() -> dict
  - SessionStore.save() -> bool
  - SessionStore.clear() -> None
  - handle / credential properties
"""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .auth_config import KEYRING_SERVICE, STORE_KEY
from .data_models import Credential
from .log import get_logger

# Bytes of the encoded record per keyring entry
_CHUNK_SIZE = 1000

logger = get_logger("auth_storage")


def _split(data: bytes, size: int) -> List[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)] or [b""]


def store_chunked_value(key_base: str, value: str, service: str = KEYRING_SERVICE) -> None:
    """Replace the value at `key_base` with base64 chunks plus a parts index.

    The index is written last, so a reader never sees a count for parts that
    were not written.
    """
    delete_chunked_value(key_base, service)
    parts = _split(value.encode("utf-8"), _CHUNK_SIZE)
    for idx, part in enumerate(parts):
        keyring.set_password(service, f"{key_base}.part{idx}", base64.b64encode(part).decode("ascii"))
    keyring.set_password(service, f"{key_base}.parts", str(len(parts)))
    logger.debug("auth_storage: stored %s in %d chunk(s)", key_base, len(parts))


def read_chunked_value(key_base: str, service: str = KEYRING_SERVICE) -> Optional[str]:
    """Read a value written by store_chunked_value, or None if not present.

    Raises RuntimeError when the index points at a missing chunk.
    """
    count = keyring.get_password(service, f"{key_base}.parts")
    if not count:
        return None
    chunks = []
    for idx in range(int(count)):
        encoded = keyring.get_password(service, f"{key_base}.part{idx}")
        if encoded is None:
            raise RuntimeError(f"missing chunk {key_base}.part{idx}")
        chunks.append(base64.b64decode(encoded))
    return b"".join(chunks).decode("utf-8")


def delete_chunked_value(key_base: str, service: str = KEYRING_SERVICE) -> None:
    count = keyring.get_password(service, f"{key_base}.parts")
    if not count:
        return
    keys = [f"{key_base}.part{idx}" for idx in range(int(count) if count.isdigit() else 0)]
    # index first, so an interrupted delete reads back as "not present"
    for key in [f"{key_base}.parts"] + keys:
        try:
            keyring.delete_password(service, key)
        except PasswordDeleteError:
            logger.debug("auth_storage: %s already gone", key)


class SessionStore:
    """Handle and credential cache, optionally mirrored to the keyring."""

    def __init__(self, persist: bool = False, key: str = STORE_KEY, service: str = KEYRING_SERVICE):
        self.persist = persist
        self.key = key
        self.service = service
        self._data: Dict[str, Any] = self.load() if persist else {}

    # --- repository interface ---
    def load(self) -> Dict[str, Any]:
        """Read the stored record. Corrupt or unreadable data counts as empty."""
        try:
            raw = read_chunked_value(self.key, self.service)
            if not raw:
                return {}
            data = json.loads(raw)
        except (KeyringError, RuntimeError, ValueError):
            logger.warning("auth_storage: stored session unreadable; starting empty", exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.warning("auth_storage: stored session has unexpected shape %s", type(data).__name__)
            return {}
        return data

    def save(self) -> bool:
        """Mirror the record to the keyring; False if the keyring refused it."""
        if not self.persist:
            return True
        try:
            store_chunked_value(self.key, json.dumps(self._data), self.service)
        except (KeyringError, RuntimeError):
            logger.warning("auth_storage: could not persist session; keeping it in memory", exc_info=True)
            return False
        return True

    def clear(self) -> None:
        self._data = {}
        if not self.persist:
            return
        try:
            delete_chunked_value(self.key, self.service)
        except (KeyringError, RuntimeError):
            logger.warning("auth_storage: could not remove stored session", exc_info=True)

    # --- accessors ---
    def get(self, name: str, default: Any = None) -> Any:
        return self._data.get(name, default)

    def set(self, name: str, value: Any) -> None:
        if value is None:
            self._data.pop(name, None)
        else:
            self._data[name] = value
        self.save()

    @property
    def handle(self) -> Optional[str]:
        return self.get("handle")

    @handle.setter
    def handle(self, value: Optional[str]) -> None:
        self.set("handle", value)

    @property
    def credential(self) -> Optional[Credential]:
        data = self.get("credential")
        if not data:
            return None
        try:
            return Credential.from_dict(data)
        except (KeyError, TypeError):
            logger.warning("auth_storage: stored credential is incomplete; ignoring")
            return None

    @credential.setter
    def credential(self, value: Optional[Credential]) -> None:
        self.set("credential", value.to_dict() if value else None)
