"""Unit tests for core/crypto.py -- CryptoBox.

Covers:
- Round trip for text and arbitrary bytes
- Fresh salt/nonce per call (no ciphertext equality)
- Wrong passphrase, truncated, tampered, and non-base64 blobs all raise DecryptionError
"""

import base64

import pytest

from core.crypto import NONCE_SIZE, SALT_SIZE, CryptoBox
from core.errors import DecryptionError

_PASS = "bWFzdGVyLWtleS1mb3ItdGVzdHMtMzItYnl0ZXMhIQ=="


@pytest.fixture
def box() -> CryptoBox:
    return CryptoBox()


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        [
            b"",
            b"abc123:2026-03-17",
            bytes(range(256)),
            "sécret:with:colons:2026-01-01".encode("utf-8"),
        ],
    )
    def test_decrypt_returns_original_bytes(self, box: CryptoBox, plaintext: bytes) -> None:
        assert box.decrypt(box.encrypt(plaintext, _PASS), _PASS) == plaintext

    def test_str_plaintext_is_utf8_encoded(self, box: CryptoBox) -> None:
        assert box.decrypt(box.encrypt("hello", _PASS), _PASS) == b"hello"

    def test_bytes_passphrase_matches_str_passphrase(self, box: CryptoBox) -> None:
        blob = box.encrypt(b"x", _PASS)
        assert box.decrypt(blob, _PASS.encode("utf-8")) == b"x"


class TestFreshSalt:
    def test_same_plaintext_gives_different_blobs(self, box: CryptoBox) -> None:
        blobs = {box.encrypt(b"same secret", _PASS) for _ in range(20)}
        assert len(blobs) == 20

    def test_blob_is_ascii_base64_with_salt_and_nonce(self, box: CryptoBox) -> None:
        raw = base64.b64decode(box.encrypt(b"abc", _PASS))
        # salt + nonce + 3 bytes ciphertext + 16 byte tag
        assert len(raw) == SALT_SIZE + NONCE_SIZE + 3 + 16


class TestDecryptionFailures:
    def test_wrong_passphrase(self, box: CryptoBox) -> None:
        blob = box.encrypt(b"payload", _PASS)
        with pytest.raises(DecryptionError):
            box.decrypt(blob, "another passphrase")

    def test_not_base64(self, box: CryptoBox) -> None:
        with pytest.raises(DecryptionError):
            box.decrypt("not base64 at all!!", _PASS)

    def test_truncated_blob(self, box: CryptoBox) -> None:
        short = base64.b64encode(b"\x00" * (SALT_SIZE + NONCE_SIZE)).decode("ascii")
        with pytest.raises(DecryptionError):
            box.decrypt(short, _PASS)

    def test_tampered_ciphertext(self, box: CryptoBox) -> None:
        raw = bytearray(base64.b64decode(box.encrypt(b"payload", _PASS)))
        raw[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            box.decrypt(base64.b64encode(bytes(raw)).decode("ascii"), _PASS)

    def test_failure_messages_do_not_reveal_cause(self, box: CryptoBox) -> None:
        blob = box.encrypt(b"payload", _PASS)
        with pytest.raises(DecryptionError) as wrong_key:
            box.decrypt(blob, "nope")
        with pytest.raises(DecryptionError) as garbage:
            box.decrypt("%%%", _PASS)
        assert str(wrong_key.value) == str(garbage.value)
