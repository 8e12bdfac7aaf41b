"""
core/crypto.py -- CryptoBox: symmetric encryption of key secrets at rest.

Blob layout (base64 of):
    [salt 16B][nonce 12B][AES-256-GCM ciphertext + tag 16B]

Key derivation: HKDF-SHA256(passphrase, salt, info="keygate-cryptobox-v1").
A fresh random salt and nonce are drawn for every encrypt() call, so
encrypting the same plaintext twice never yields the same blob. HKDF is
sufficient because the passphrase is the MasterKey -- 32+ random bytes --
not a human-chosen password.

Security notes:
    Never log plaintext, passphrases, or derived keys.
    decrypt() raises one DecryptionError for every failure cause (bad base64,
    truncated blob, wrong passphrase, tampered ciphertext) so it cannot be
    used as an oracle.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from core.errors import DecryptionError

logger = logging.getLogger("keygate.crypto")

SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256

_INFO = b"keygate-cryptobox-v1"


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class CryptoBox:
    """Passphrase-based authenticated encryption.

    Usage:
        box = CryptoBox()
        blob = box.encrypt(b"secret:2026-01-01", master_key)
        box.decrypt(blob, master_key)   # b"secret:2026-01-01"
    """

    def _derive(self, passphrase: str | bytes, salt: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            info=_INFO,
        )
        return hkdf.derive(_as_bytes(passphrase))

    def encrypt(self, plaintext: str | bytes, passphrase: str | bytes) -> str:
        """Encrypt plaintext under passphrase and return an ASCII blob.

        The blob embeds its salt and nonce, so decrypt() needs only the blob
        and the passphrase.
        """
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        ct = AESGCM(self._derive(passphrase, salt)).encrypt(nonce, _as_bytes(plaintext), None)
        return base64.b64encode(salt + nonce + ct).decode("ascii")

    def decrypt(self, blob: str | bytes, passphrase: str | bytes) -> bytes:
        """Decrypt a blob produced by encrypt().

        Raises:
            DecryptionError: blob is malformed or passphrase is wrong.
        """
        try:
            raw = base64.b64decode(_as_bytes(blob), validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionError() from None
        if len(raw) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
            logger.debug("Blob too short: %d bytes", len(raw))
            raise DecryptionError()
        salt = raw[:SALT_SIZE]
        nonce = raw[SALT_SIZE : SALT_SIZE + NONCE_SIZE]
        ct = raw[SALT_SIZE + NONCE_SIZE :]
        try:
            return AESGCM(self._derive(passphrase, salt)).decrypt(nonce, ct, None)
        except InvalidTag:
            logger.debug("Blob failed authentication")
            raise DecryptionError() from None
