"""
Exception hierarchy for the vault engine.

Callers that only need to know whether a vault could be opened catch
``VaultOpenError``. A wrong passphrase and a tampered file both raise
``AuthenticationFailure`` with the same message.
"""


class VaultError(Exception):
    """Base class for every error raised by passvault."""


class VaultOpenError(VaultError):
    """The vault cannot be opened."""


class AuthenticationFailure(VaultOpenError):
    """Wrong passphrase, or the ciphertext failed its integrity check."""

    def __init__(self, msg: str = "Wrong master password or vault is corrupted"):
        super().__init__(msg)


class FormatError(VaultOpenError):
    """The container or its decrypted payload is malformed."""


class UnsupportedVersionError(FormatError):
    def __init__(self, version: int):
        super().__init__(f"Unsupported vault format version {version}")
        self.version = version


class DuplicateNameError(VaultError):
    def __init__(self, name: str):
        super().__init__(f"An entry named {name!r} already exists")
        self.name = name


class NotFoundError(VaultError):
    def __init__(self, name: str):
        super().__init__(f"No entry named {name!r}")
        self.name = name


class InvalidEntryError(VaultError, ValueError):
    """An entry field has the wrong type or cannot be stored as UTF-8."""


class VaultIOError(VaultError):
    """
    A read, write or rename of the vault file failed.

    The originating ``OSError`` is chained as ``__cause__``; its errno and
    filename are copied so callers don't have to dig for them.
    """

    def __init__(self, msg: str, cause: OSError | None = None):
        super().__init__(msg)
        self.errno = getattr(cause, "errno", None)
        self.filename = getattr(cause, "filename", None)


class ConfigError(VaultError, ValueError):
    """Invalid generator options or out-of-range KDF parameters."""


class VaultStateError(VaultError):
    """Operation is not valid in the engine's current state."""


class VaultLockedError(VaultStateError):
    def __init__(self, msg: str = "Vault is locked"):
        super().__init__(msg)
