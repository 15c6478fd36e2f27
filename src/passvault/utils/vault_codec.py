"""
On-disk container format for passvault files.

Every container starts with the 4-byte magic and a big-endian u16 format
version. What follows depends on the version; each historical version is
one entry in ``FORMATS`` and knows how to parse its own header and payload.
Only ``CURRENT_VERSION`` is ever written.

Version 2 (current)::

    magic(4) version(2) kdf_id(1) time_cost(4) memory_cost(4)
    parallelism(1) salt_len(1) salt(salt_len) | nonce(12) ciphertext+tag

    Argon2id + ChaCha20-Poly1305. Everything before the nonce is bound to
    the ciphertext as associated data.

Version 1 (legacy, read only)::

    magic(4) version(2) log_n(1) r(4) p(4) salt(16) | nonce(12) ciphertext+tag

    scrypt + AES-256-GCM, same associated data rule.
"""
import json
import logging
import struct
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

import pendulum

from passvault.config.config_vault import MAGIC, SALT_LEN, UTF8
from passvault.config.logging_config import stamp
from .Entry import Entry, EntryCollection
from .crypto_utils import (KdfParams, ScryptParams, derive_key, derive_legacy_key,
                           new_salt, open_legacy, open_sealed, seal, wipe)
from .errors import (AuthenticationFailure, ConfigError, DuplicateNameError,
                     FormatError, UnsupportedVersionError)

logger = logging.getLogger(__name__)

_PREFIX = struct.Struct(">4sH")
KDF_ARGON2ID = 1


@dataclass
class DecodedVault:
    """
    Result of a successful decode.

    `key`, `salt` and `params` always describe the current format, so
    the engine can save straight away. For a migrated vault they are
    freshly derived, not the ones read from the file.
    """
    entries: EntryCollection
    key: bytearray
    salt: bytes
    params: KdfParams
    format_version: int
    migrated: bool


class FormatV1:
    """Legacy scrypt / AES-GCM container with the flat ``passwords`` list."""
    version = 1
    _header = struct.Struct(">BII")

    @classmethod
    def open(cls, blob: bytes, passphrase: bytes) -> Tuple[EntryCollection, bytearray, bytes, ScryptParams]:
        offset = _PREFIX.size
        if len(blob) < offset + cls._header.size + SALT_LEN:
            raise FormatError("Vault file too small")
        log_n, r, p = cls._header.unpack_from(blob, offset)
        offset += cls._header.size
        salt = blob[offset:offset + SALT_LEN]
        offset += SALT_LEN

        try:
            params = ScryptParams(log_n=log_n, r=r, p=p)
            params.validate()
        except ConfigError as e:
            raise FormatError(f"Invalid key derivation parameters: {e}") from e

        key = derive_legacy_key(passphrase, salt, params)
        try:
            plaintext = open_legacy(key, blob[offset:], blob[:offset])
            entries = cls.load_entries(plaintext)
        except (AuthenticationFailure, FormatError):
            wipe(key)
            raise
        return entries, key, salt, params

    @staticmethod
    def load_entries(plaintext: bytes) -> EntryCollection:
        data = _load_json(plaintext)
        records = data.get("passwords") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise FormatError("Payload is missing the passwords list")

        entries = EntryCollection()
        for record in records:
            try:
                entry = Entry(
                    name=record["app_name"],
                    username=record["username"],
                    password=record["password"],
                    created_at=_from_unix(record["created_at"]),
                    updated_at=_from_unix(record["updated_at"]),
                )
                entries.add(entry)
            except DuplicateNameError as e:
                entries.wipe()
                raise FormatError(f"Duplicate entry name {e.name!r} in vault") from e
            except (KeyError, TypeError, ValueError) as e:
                entries.wipe()
                raise FormatError(f"Malformed entry record: {e}") from e
        return entries


class FormatV2:
    """Current Argon2id / ChaCha20-Poly1305 container."""
    version = 2
    _header = struct.Struct(">BIIBB")

    @classmethod
    def open(cls, blob: bytes, passphrase: bytes) -> Tuple[EntryCollection, bytearray, bytes, KdfParams]:
        params, salt, offset = cls.parse_header(blob)
        key = derive_key(passphrase, salt, params)
        try:
            plaintext = open_sealed(key, blob[offset:], blob[:offset])
            entries = cls.load_entries(plaintext)
        except (AuthenticationFailure, FormatError):
            wipe(key)
            raise
        return entries, key, salt, params

    @classmethod
    def parse_header(cls, blob: bytes) -> Tuple[KdfParams, bytes, int]:
        """
        Read the KDF parameters and salt.

        Returns:
            (params, salt, offset of the sealed token)
        """
        offset = _PREFIX.size
        if len(blob) < offset + cls._header.size:
            raise FormatError("Vault file too small")
        kdf_id, time_cost, memory_cost, parallelism, salt_len = \
            cls._header.unpack_from(blob, offset)
        offset += cls._header.size

        if kdf_id != KDF_ARGON2ID:
            raise FormatError(f"Unknown key derivation function id {kdf_id}")
        if salt_len < 8 or len(blob) < offset + salt_len:
            raise FormatError("Invalid or truncated salt")
        salt = blob[offset:offset + salt_len]
        offset += salt_len

        params = KdfParams(time_cost=time_cost, memory_cost=memory_cost,
                           parallelism=parallelism)
        try:
            params.validate()
        except ConfigError as e:
            raise FormatError(f"Invalid key derivation parameters: {e}") from e
        return params, salt, offset

    @classmethod
    def build_header(cls, salt: bytes, params: KdfParams) -> bytes:
        return (_PREFIX.pack(MAGIC, cls.version)
                + cls._header.pack(KDF_ARGON2ID, params.time_cost, params.memory_cost,
                                   params.parallelism, len(salt))
                + salt)

    @staticmethod
    def load_entries(plaintext: bytes) -> EntryCollection:
        data = _load_json(plaintext)
        records = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise FormatError("Payload is missing the entries list")

        entries = EntryCollection()
        for record in records:
            try:
                entries.add(Entry.from_dict(record))
            except DuplicateNameError as e:
                entries.wipe()
                raise FormatError(f"Duplicate entry name {e.name!r} in vault") from e
            except (TypeError, ValueError) as e:
                entries.wipe()
                raise FormatError(f"Malformed entry record: {e}") from e
        return entries

    @staticmethod
    def dump_entries(entries: EntryCollection) -> bytes:
        payload = {"entries": [entry.to_dict() for entry in entries]}
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode(UTF8)


FORMATS: Dict[int, Type] = {
    FormatV1.version: FormatV1,
    FormatV2.version: FormatV2,
}
CURRENT_VERSION = FormatV2.version


def peek_version(blob: bytes) -> int:
    """
    Return the container's format version without decrypting anything.

    Raises:
        FormatError: If the data is too short or the magic is wrong.
    """
    if len(blob) < _PREFIX.size:
        raise FormatError("Vault file too small")
    magic, version = _PREFIX.unpack_from(blob, 0)
    if magic != MAGIC:
        raise FormatError("Not a passvault file (bad magic)")
    return version


def encode(entries: EntryCollection, key: bytearray, salt: bytes, params: KdfParams) -> bytes:
    """
    Serialize and seal a collection into a current-format container.

    Args:
        entries: Collection to store.
        key: Key previously derived from the passphrase with `salt` and
            `params`. The codec never sees the passphrase on this path.
        salt: Salt that produced `key`; stored in the clear.
        params: Argon2id parameters that produced `key`; stored in the clear.

    Returns:
        Container bytes. A fresh nonce is drawn on every call.
    """
    params.validate()
    header = FormatV2.build_header(salt, params)
    token = seal(key, FormatV2.dump_entries(entries), header)
    return header + token


def decode(blob: bytes, passphrase: bytes,
           upgrade_params: Optional[KdfParams] = None) -> DecodedVault:
    """
    Parse, authenticate and deserialize a container.

    Args:
        blob: Raw file contents.
        passphrase: Master passphrase as bytes.
        upgrade_params: Argon2id parameters used to re-key a vault read
            from an older format. Defaults to the configured parameters.

    Returns:
        DecodedVault. `migrated` is True when the file used an older
        format; its key material has then been re-derived for the
        current one.

    Raises:
        FormatError: Bad magic, unknown version, bad header or payload.
        AuthenticationFailure: Wrong passphrase or tampered data.
    """
    version = peek_version(blob)
    fmt = FORMATS.get(version)
    if fmt is None:
        raise UnsupportedVersionError(version)

    entries, key, salt, params = fmt.open(blob, passphrase)
    if version == CURRENT_VERSION:
        return DecodedVault(entries, key, salt, params, version, migrated=False)

    # Older format: re-key for the current one so the next save upgrades it.
    wipe(key)
    params = upgrade_params or KdfParams()
    salt = new_salt()
    try:
        key = derive_key(passphrase, salt, params)
    except ConfigError:
        entries.wipe()
        raise
    logger.info(stamp(f"Read format version {version} vault, will upgrade on save"))
    return DecodedVault(entries, key, salt, params, version, migrated=True)


def _load_json(plaintext: bytes):
    try:
        return json.loads(plaintext.decode(UTF8))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"Vault payload is not valid JSON: {e}") from e


def _from_unix(value) -> pendulum.DateTime:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError("Timestamp must be an integer")
    return pendulum.from_timestamp(value, tz="UTC")
