"""Reversible payload transforms: compression, then client-side encryption.

Upload order is compress -> encrypt; download inverts strictly in reverse
(decrypt -> decompress). What was applied is written into object metadata
so a reader needs nothing but the stored tags to undo it.

Metadata tags (sent as ``x-amz-meta-<tag>``):

- ``compression``: ``gzip``
- ``compression-requested``: set when the requested codec was degraded
- ``encryption``: ``aes256``
- ``original-content-type``: Content-Type before transforms
- ``transforms``: comma-joined apply order, e.g. ``gzip,aes256``
"""

import gzip
import hashlib
import logging
import os
import zlib
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from s3_objstore.errors import (
    ConfigurationError,
    DecompressionError,
    DecryptionError,
    TransformError,
)

logger = logging.getLogger(__name__)

GZIP = "gzip"
ZSTD = "zstd"
AES256 = "aes256"

SUPPORTED_COMPRESSION = (GZIP, ZSTD)

TAG_COMPRESSION = "compression"
TAG_COMPRESSION_REQUESTED = "compression-requested"
TAG_ENCRYPTION = "encryption"
TAG_ORIGINAL_CONTENT_TYPE = "original-content-type"
TAG_TRANSFORMS = "transforms"

# Metadata names written by the pipeline; user metadata may not reuse them
RESERVED_TAGS = frozenset({
    TAG_COMPRESSION,
    TAG_COMPRESSION_REQUESTED,
    TAG_ENCRYPTION,
    TAG_ORIGINAL_CONTENT_TYPE,
    TAG_TRANSFORMS,
})

NONCE_SIZE = 12


@dataclass
class TransformedPayload:
    """Bytes after transforms plus what was applied, in apply order."""
    body: bytes
    applied_transforms: Tuple[str, ...] = ()
    metadata: dict = field(default_factory=dict)

    @property
    def is_transformed(self) -> bool:
        return bool(self.applied_transforms)


class TransformPipeline:
    """Apply and invert compression/encryption on object payloads.

    Args:
        encryption_secret: Secret the AES-256 key is derived from (SHA-256).
            Without it, encryption is unavailable and encrypted objects
            cannot be read.
        compression_level: gzip level, 1-9
    """

    def __init__(self, encryption_secret: Optional[str] = None, compression_level: int = 6):
        self._key = hashlib.sha256(encryption_secret.encode("utf-8")).digest() if encryption_secret else None
        self.compression_level = compression_level

    @property
    def can_encrypt(self) -> bool:
        return self._key is not None

    def _require_key(self) -> bytes:
        if self._key is None:
            raise ConfigurationError("No encryption secret configured")
        return self._key

    # -- individual transforms ------------------------------------------------

    def compress(self, body: bytes) -> bytes:
        # mtime=0 keeps output deterministic for identical input
        return gzip.compress(body, compresslevel=self.compression_level, mtime=0)

    def decompress(self, body: bytes) -> bytes:
        try:
            return gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as exc:
            raise DecompressionError(f"Corrupted gzip stream: {exc}") from exc

    def encrypt(self, body: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + AESGCM(self._require_key()).encrypt(nonce, body, None)

    def decrypt(self, body: bytes) -> bytes:
        key = self._require_key()
        if len(body) < NONCE_SIZE + 16:
            raise DecryptionError("Ciphertext shorter than nonce and tag")
        nonce, ciphertext = body[:NONCE_SIZE], body[NONCE_SIZE:]
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError("Ciphertext failed authentication") from exc

    # -- pipeline -------------------------------------------------------------

    def apply(
        self,
        body: bytes,
        compression: Optional[str] = None,
        encrypt: bool = False,
        content_type: Optional[str] = None,
    ) -> TransformedPayload:
        """Run compress -> encrypt and build the metadata tags.

        A requested ``zstd`` is written as gzip; the tags record both the
        codec actually used and the one asked for.
        """
        applied = []
        metadata = {}

        if compression:
            if compression not in SUPPORTED_COMPRESSION:
                raise ValueError(f"Unsupported compression: {compression}")
            if compression == ZSTD:
                logger.warning("zstd compression unavailable, writing gzip instead")
                metadata[TAG_COMPRESSION_REQUESTED] = ZSTD
            body = self.compress(body)
            applied.append(GZIP)
            metadata[TAG_COMPRESSION] = GZIP

        if encrypt:
            body = self.encrypt(body)
            applied.append(AES256)
            metadata[TAG_ENCRYPTION] = AES256

        if applied:
            metadata[TAG_TRANSFORMS] = ",".join(applied)
            if content_type:
                metadata[TAG_ORIGINAL_CONTENT_TYPE] = content_type

        return TransformedPayload(body=body, applied_transforms=tuple(applied), metadata=metadata)

    @staticmethod
    def recorded_transforms(metadata: Mapping[str, str]) -> Tuple[str, ...]:
        """Transforms named by stored tags, in apply order."""
        order = metadata.get(TAG_TRANSFORMS)
        if order:
            return tuple(name.strip() for name in order.split(",") if name.strip())

        applied = []
        if metadata.get(TAG_COMPRESSION):
            applied.append(metadata[TAG_COMPRESSION])
        if metadata.get(TAG_ENCRYPTION):
            applied.append(metadata[TAG_ENCRYPTION])
        return tuple(applied)

    def invert(self, body: bytes, metadata: Mapping[str, str]) -> bytes:
        """Undo recorded transforms in reverse apply order.

        No tags means the payload passes through unchanged.
        """
        for name in reversed(self.recorded_transforms(metadata)):
            if name == AES256:
                body = self.decrypt(body)
            elif name in (GZIP, ZSTD):
                # zstd tags only ever describe gzip output written by apply()
                body = self.decompress(body)
            else:
                raise TransformError(f"Unknown transform in metadata: {name}")
        return body
