"""AES-256-GCM encryption of credential payloads at rest.

Each payload is sealed under the active master key with a fresh 16-byte IV.
The additional authenticated data is ``"{tenant_id}:{service_type}:{name}"``,
so ciphertext copied into another tenant's row, or renamed, fails to open.
"""

import json
import logging
import secrets
from typing import Any, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from credvault.credentials.keys import KeyRegistry
from credvault.exceptions import AccessDenied, EncryptionFailed, KeyUnavailable, NoActiveKey
from credvault.types import EncryptionResult, ServiceType

logger = logging.getLogger(__name__)

IV_SIZE = 16
TAG_SIZE = 16


def build_aad(tenant_id: str, service_type: Union[ServiceType, str], name: str) -> bytes:
    service = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
    return f"{tenant_id}:{service}:{name}".encode("utf-8")


def wipe(buffer: bytearray) -> None:
    """Overwrite a plaintext buffer in place."""
    for i in range(len(buffer)):
        buffer[i] = 0


def scrub(payload: dict[str, Any]) -> None:
    """Drop every reference held by a decrypted payload dict.

    Python strings are immutable, so this is best effort: it stops the dict
    from keeping secrets alive, it cannot overwrite them.
    """
    payload.clear()


class EncryptionService:
    """Seals and opens credential payloads with keys from a :class:`KeyRegistry`.

    Holds no plaintext between calls. Every decrypt failure, whatever its
    cause, surfaces as :class:`AccessDenied` with the same message.
    """

    def __init__(self, registry: KeyRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(
        self,
        plaintext: dict[str, Any],
        tenant_id: str,
        service_type: Union[ServiceType, str],
        name: str,
    ) -> EncryptionResult:
        """JSON-serialise *plaintext* and seal it under the active key.

        Raises:
            NoActiveKey: no key is active.
            EncryptionFailed: serialisation or the cipher failed.
        """
        key_version, key = self._registry.get_active_key()
        buffer = bytearray()
        try:
            buffer = bytearray(json.dumps(plaintext).encode("utf-8"))
            iv = secrets.token_bytes(IV_SIZE)
            sealed = AESGCM(key).encrypt(iv, bytes(buffer), build_aad(tenant_id, service_type, name))
        except Exception as exc:
            logger.error(
                "[Crypto] Encryption failed: tenant=%s service=%s error=%s",
                tenant_id, service_type, type(exc).__name__,
            )
            raise EncryptionFailed() from None
        finally:
            wipe(buffer)

        logger.debug("[Crypto] Sealed payload: tenant=%s service=%s key_version=%d",
                     tenant_id, service_type, key_version)
        return EncryptionResult(
            ciphertext=sealed[:-TAG_SIZE],
            iv=iv,
            auth_tag=sealed[-TAG_SIZE:],
            key_version=key_version,
        )

    def decrypt(
        self,
        ciphertext: bytes,
        iv: bytes,
        auth_tag: bytes,
        key_version: int,
        tenant_id: str,
        service_type: Union[ServiceType, str],
        name: str,
    ) -> dict[str, Any]:
        """Open a sealed payload. The AAD is rebuilt from the caller's arguments.

        Raises:
            AccessDenied: for any failure at all.
        """
        try:
            key = self._registry.get_key(key_version)
        except KeyUnavailable:
            logger.warning("[Crypto] Decryption failed: tenant=%s key_version=%s unavailable",
                           tenant_id, key_version)
            raise AccessDenied() from None

        buffer = bytearray()
        try:
            if len(iv) != IV_SIZE or len(auth_tag) != TAG_SIZE:
                raise ValueError("malformed envelope")
            buffer = bytearray(AESGCM(key).decrypt(
                bytes(iv),
                bytes(ciphertext) + bytes(auth_tag),
                build_aad(tenant_id, service_type, name),
            ))
            payload = json.loads(buffer.decode("utf-8"))
        except (InvalidTag, ValueError, TypeError) as exc:
            reason = "verification_failed" if isinstance(exc, InvalidTag) else "malformed"
            logger.warning(
                "[Crypto] Decryption failed: tenant=%s service=%s key_version=%s reason=%s",
                tenant_id, service_type, key_version, reason,
            )
            raise AccessDenied() from None
        finally:
            wipe(buffer)

        if not isinstance(payload, dict):
            raise AccessDenied()
        return payload

    def rotate_key(self, new_key_material: bytes) -> int:
        """Register *new_key_material* as the next active version and return it.

        Existing rows are untouched; they stay readable through the retired key.
        """
        versions = self._registry.versions()
        new_version = (max(versions) if versions else 0) + 1
        self._registry.set_active_key(new_version, new_key_material)
        logger.info("[Crypto] Key rotated to version %d", new_version)
        return new_version
