import secrets
from dataclasses import dataclass

from argon2.low_level import hash_secret_raw, Type
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from passvault.config.config_vault import *
from .errors import AuthenticationFailure, ConfigError

TAG_LEN = 16


@dataclass(frozen=True)
class KdfParams:
    """
    Argon2id cost parameters stored in every current-format container.

    Attributes:
        time_cost: Number of iterations.
        memory_cost: Memory in KiB.
        parallelism: Number of lanes.
    """
    time_cost: int = ARGON_TIME
    memory_cost: int = ARGON_MEMORY
    parallelism: int = ARGON_PARALLELISM

    def validate(self) -> None:
        """
        Reject parameters outside the accepted bounds.

        A vault file is untrusted input until it authenticates, so the
        parameters it carries are checked before any derivation work.

        Raises:
            ConfigError: If any parameter is out of range.
        """
        if not 1 <= self.parallelism <= ARGON_MAX_PARALLELISM:
            raise ConfigError(f"Argon2 parallelism {self.parallelism} out of range")
        if not 1 <= self.time_cost <= ARGON_MAX_TIME:
            raise ConfigError(f"Argon2 time cost {self.time_cost} out of range")
        if not 8 * self.parallelism <= self.memory_cost <= ARGON_MAX_MEMORY:
            raise ConfigError(f"Argon2 memory cost {self.memory_cost} KiB out of range")


@dataclass(frozen=True)
class ScryptParams:
    """scrypt cost parameters used by format version 1 containers."""
    log_n: int = 15
    r: int = 8
    p: int = 1

    def validate(self) -> None:
        if not 1 <= self.log_n <= SCRYPT_MAX_LOG_N:
            raise ConfigError(f"scrypt log_n {self.log_n} out of range")
        if not 1 <= self.r <= SCRYPT_MAX_R:
            raise ConfigError(f"scrypt r {self.r} out of range")
        if not 1 <= self.p <= SCRYPT_MAX_P:
            raise ConfigError(f"scrypt p {self.p} out of range")
        if 128 * self.r * (1 << self.log_n) > SCRYPT_MAX_MEMORY:
            raise ConfigError("scrypt parameters require too much memory")


def derive_key(pw: bytes, salt: bytes, params: KdfParams) -> bytearray:
    """
    Derive a symmetric encryption key from a password and salt using Argon2id.

    Args:
        pw: Master password as raw bytes.
        salt: Cryptographic salt as raw bytes.
        params: Argon2id cost parameters.

    Returns:
        A 32-byte key in a mutable buffer so it can be wiped later.

    Raises:
        ConfigError: If the parameters are out of bounds. Checked before
            any hashing happens.

    Security:
        - Argon2id is memory-hard, which makes offline guessing expensive.
        - The salt is not secret but must be unique per vault.
    """
    params.validate()
    key = hash_secret_raw(
        secret=pw,
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=ARGON_HASH_LEN,
        type=Type.ID
    )
    return bytearray(key)


def derive_legacy_key(pw: bytes, salt: bytes, params: ScryptParams) -> bytearray:
    """Derive a format version 1 key with scrypt."""
    params.validate()
    kdf = Scrypt(salt=salt, length=ARGON_HASH_LEN, n=1 << params.log_n, r=params.r, p=params.p)
    return bytearray(kdf.derive(pw))


def new_salt() -> bytes:
    return secrets.token_bytes(SALT_LEN)


def seal(key: bytearray, plaintext: bytes, associated_data: bytes) -> bytes:
    """
    Encrypt plaintext using ChaCha20-Poly1305 with associated data.

    A random nonce is generated on every call. The returned token is the
    nonce followed by the ciphertext and authentication tag.

    Args:
        key: 32-byte symmetric key.
        plaintext: Bytes to encrypt.
        associated_data: Bytes authenticated but not encrypted. Any change
            to them makes `open_sealed` fail.

    Returns:
        nonce || ciphertext || tag

    Security:
        - Nonces are random and must never be reused with the same key.
    """
    aead = ChaCha20Poly1305(key)
    nonce = secrets.token_bytes(NONCE_LEN)

    ciphertext = aead.encrypt(
        nonce=nonce,
        data=plaintext,
        associated_data=associated_data
    )
    return nonce + ciphertext


def open_sealed(key: bytearray, token: bytes, associated_data: bytes) -> bytes:
    """
    Decrypt and verify a token produced by `seal`.

    Raises:
        AuthenticationFailure: If the token is truncated, the key is wrong,
            or the ciphertext, tag or associated data were modified.

    Security:
        - No plaintext is released unless the tag verifies.
    """
    if len(token) < NONCE_LEN + TAG_LEN:
        raise AuthenticationFailure()

    aead = ChaCha20Poly1305(key)
    try:
        return aead.decrypt(
            nonce=token[:NONCE_LEN],
            data=token[NONCE_LEN:],
            associated_data=associated_data
        )
    except InvalidTag:
        raise AuthenticationFailure() from None


def open_legacy(key: bytearray, token: bytes, associated_data: bytes) -> bytes:
    """AES-256-GCM counterpart of `open_sealed` for format version 1."""
    if len(token) < NONCE_LEN + TAG_LEN:
        raise AuthenticationFailure()

    aead = AESGCM(key)
    try:
        return aead.decrypt(token[:NONCE_LEN], token[NONCE_LEN:], associated_data)
    except InvalidTag:
        raise AuthenticationFailure() from None


def wipe(buf: bytearray | None) -> None:
    """Overwrite a mutable buffer with zeros in place."""
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0
