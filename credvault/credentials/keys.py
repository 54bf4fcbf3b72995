"""Versioned master-key registry.

Holds AES-256 master keys in memory only. One version is active and used for
encryption; every registered version can decrypt. Key material never leaves
this module except as the raw bytes handed to the cipher.
"""

import base64
import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass, field

from credvault.exceptions import InvalidKeyMaterial, KeyUnavailable, NoActiveKey

logger = logging.getLogger(__name__)

KEY_SIZE = 32
ALGORITHM = "aes-256-gcm"


def generate_master_key() -> bytes:
    """Return 32 cryptographically random bytes. For tests and `credvault keygen`."""
    return secrets.token_bytes(KEY_SIZE)


def key_fingerprint(key_material: bytes) -> str:
    """SHA-256 hex of the key, for telling keys apart without exposing them."""
    return hashlib.sha256(bytes(key_material)).hexdigest()


@dataclass
class MasterKey:
    version: int
    key_material: bytearray = field(repr=False)
    algorithm: str = ALGORITHM
    active: bool = False

    def wipe(self) -> None:
        for i in range(len(self.key_material)):
            self.key_material[i] = 0


def _check_material(key_material: bytes) -> bytearray:
    if not isinstance(key_material, (bytes, bytearray)) or len(key_material) != KEY_SIZE:
        raise InvalidKeyMaterial()
    return bytearray(key_material)


def _same_material(key: MasterKey, material: bytearray) -> bool:
    return secrets.compare_digest(bytes(key.key_material), bytes(material))


class KeyRegistry:
    """Thread-safe map of key version → master key.

    Reads take the lock briefly to copy out the bytes they need; rotation
    swaps the active version under the same lock, so no encrypt call can see
    a half-updated key set.
    """

    def __init__(self) -> None:
        self._keys: dict[int, MasterKey] = {}
        self._active_version: int | None = None
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, cfg) -> "KeyRegistry":
        """Build a registry from injected base64 key material.

        Retired keys are loaded first. A retired entry may repeat the active
        version only with the same bytes.
        Returns an empty registry if no master key is configured.
        """
        registry = cls()
        for version, encoded in sorted(cfg.retired_keys.items()):
            registry.add_retired_key(int(version), base64.b64decode(encoded.get_secret_value()))
        active = cfg.master_key.get_secret_value()
        if active:
            registry.set_active_key(cfg.master_key_version, base64.b64decode(active))
        else:
            logger.warning("[Keys] No master key configured; encryption is unavailable")
        return registry

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def set_active_key(self, version: int, key_material: bytes) -> None:
        """Register *key_material* as the active key.

        The previously active key is kept as a retired, decrypt-only key. A
        version that is already registered may only be re-activated with the
        same bytes; anything else raises InvalidKeyMaterial and leaves the
        registered key untouched.
        """
        material = _check_material(key_material)
        with self._lock:
            previous = self._active_version
            existing = self._keys.get(version)
            if existing is not None and not _same_material(existing, material):
                raise InvalidKeyMaterial(f"Key version {version} is already registered with other material")
            if previous is not None and previous != version:
                self._keys[previous].active = False
            if existing is None:
                self._keys[version] = MasterKey(version=version, key_material=material, active=True)
            else:
                existing.active = True
            self._active_version = version
        logger.info("[Keys] Active master key set: version=%d (previous=%s)", version, previous)

    def add_retired_key(self, version: int, key_material: bytes) -> None:
        """Register a key usable only for decryption."""
        material = _check_material(key_material)
        with self._lock:
            if version == self._active_version:
                raise InvalidKeyMaterial(f"Key version {version} is the active key")
            existing = self._keys.get(version)
            if existing is not None:
                if not _same_material(existing, material):
                    raise InvalidKeyMaterial(f"Key version {version} is already registered with other material")
                return
            self._keys[version] = MasterKey(version=version, key_material=material, active=False)
        logger.info("[Keys] Retired key loaded: version=%d", version)

    def drop_key(self, version: int) -> None:
        """Forget a retired key once no row references it."""
        with self._lock:
            if version == self._active_version:
                raise InvalidKeyMaterial(f"Cannot drop active key version {version}")
            key = self._keys.pop(version, None)
            if key is None:
                raise KeyUnavailable()
            key.wipe()
        logger.info("[Keys] Dropped retired key: version=%d", version)

    def clear(self) -> None:
        """Zero and forget every key. Call at shutdown."""
        with self._lock:
            for key in self._keys.values():
                key.wipe()
            self._keys.clear()
            self._active_version = None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_active_key(self) -> tuple[int, bytes]:
        with self._lock:
            if self._active_version is None:
                raise NoActiveKey()
            key = self._keys[self._active_version]
            return key.version, bytes(key.key_material)

    def get_key(self, version: int) -> bytes:
        with self._lock:
            key = self._keys.get(version)
            if key is None:
                raise KeyUnavailable()
            return bytes(key.key_material)

    @property
    def active_version(self) -> int | None:
        with self._lock:
            return self._active_version

    def versions(self) -> list[int]:
        with self._lock:
            return sorted(self._keys)

    def __repr__(self) -> str:
        return f"KeyRegistry(versions={self.versions()}, active={self.active_version})"
