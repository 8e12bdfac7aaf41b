"""
core/errors.py -- Exception taxonomy for KeyGate.

Only two conditions are exceptions:
  DecryptionError: a blob could not be opened. Raised by CryptoBox only;
      KeyStore folds it into ValidationResult.INVALID so callers never see it.
  StoreError: the MasterKey, KeyStore, or Session file could not be read or
      written. This is the single fatal condition -- the CLI aborts the
      command with exit code 1.

Not found, expired, invalid, and locked out are result values, not errors.
"""


class KeyGateError(Exception):
    """Base class for KeyGate errors."""


class DecryptionError(KeyGateError):
    """The blob is malformed or the passphrase is wrong.

    The two causes are deliberately indistinguishable.
    """

    def __init__(self, message: str = "Unable to decrypt blob") -> None:
        super().__init__(message)


class StoreError(KeyGateError):
    """A persistent file could not be read or written."""
