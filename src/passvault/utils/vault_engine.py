import os
import logging
import tempfile
from pathlib import Path
from typing import List, NamedTuple, Optional

import pendulum

from passvault.config.config_vault import PASS_DEFAULTS, UTF8
from passvault.config.logging_config import stamp
from . import vault_codec
from .Entry import Entry, EntryCollection, check_text, password_buffer
from .crypto_utils import KdfParams, derive_key, new_salt, wipe
from .errors import (ConfigError, DuplicateNameError, InvalidEntryError, VaultIOError,
                     VaultLockedError, VaultOpenError, VaultStateError)
from .password_generator import CharsetOptions, generate

logger = logging.getLogger(__name__)


class EntrySummary(NamedTuple):
    """One row of a listing. Never carries the password."""
    name: str
    username: str
    updated_at: pendulum.DateTime


class EntryView(NamedTuple):
    name: str
    username: str
    notes: Optional[str]
    created_at: pendulum.DateTime
    updated_at: pendulum.DateTime


def _to_bytes(passphrase: str | bytes | bytearray) -> bytes:
    if isinstance(passphrase, str):
        try:
            passphrase = passphrase.encode(UTF8)
        except UnicodeEncodeError:
            raise ConfigError("Master password is not valid UTF-8 text") from None
    if not passphrase:
        raise ConfigError("Master password cannot be empty")
    return bytes(passphrase)


class VaultEngine:
    """
    Session object for one vault file.

    The engine is either Locked (no key, no entries in memory) or Unlocked
    (derived key and decrypted entries resident). Mutations only change
    memory and set the dirty flag; `save` is the single place that writes
    to disk.

    Use as a context manager to guarantee the key and entries are wiped on
    every exit path:

        with unlock(path, passphrase) as vault:
            vault.add_entry("github", "alice", "p@ss1")
            vault.save()
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self.format_version: Optional[int] = None
        self._key: Optional[bytearray] = None
        self._salt: Optional[bytes] = None
        self._params: Optional[KdfParams] = None
        self._entries: Optional[EntryCollection] = None
        self._dirty = False
        self._last_stamp: Optional[pendulum.DateTime] = None

    # ==============================================================
    # Lifecycle
    # ==============================================================
    @classmethod
    def create(cls, path: str | os.PathLike, passphrase: str | bytes,
               kdf_params: Optional[KdfParams] = None) -> "VaultEngine":
        """
        Start a new, empty vault. Nothing is written until `save`.

        Raises:
            VaultIOError: If a file already exists at `path`.
            ConfigError: If the passphrase is empty or the KDF parameters
                are out of range.
        """
        engine = cls(path)
        if engine.path.exists():
            err = FileExistsError(17, "Vault file already exists", str(engine.path))
            raise VaultIOError(f"Vault file already exists: {engine.path}", err) from err

        params = kdf_params or KdfParams()
        params.validate()
        pw = _to_bytes(passphrase)
        salt = new_salt()

        engine._key = derive_key(pw, salt, params)
        engine._salt = salt
        engine._params = params
        engine._entries = EntryCollection()
        engine._dirty = True
        engine.format_version = vault_codec.CURRENT_VERSION
        return engine

    def unlock(self, passphrase: str | bytes,
               upgrade_params: Optional[KdfParams] = None) -> "VaultEngine":
        """
        Read and decrypt the vault file.

        Args:
            passphrase: Master passphrase.
            upgrade_params: Argon2id parameters used if the file is in an
                older format and has to be re-keyed.

        Returns:
            self, now Unlocked.

        Raises:
            VaultStateError: If already unlocked.
            VaultIOError: If the file cannot be read.
            AuthenticationFailure: Wrong passphrase or tampered file.
            FormatError: Not a vault, unsupported version, malformed data.
        """
        if self.is_unlocked:
            raise VaultStateError("Vault is already unlocked")

        pw = _to_bytes(passphrase)
        try:
            blob = self.path.read_bytes()
        except OSError as e:
            logger.error(stamp(f"Could not read vault {self.path}: {e}"))
            raise VaultIOError(f"Could not read vault file: {e}", e) from e

        try:
            decoded = vault_codec.decode(blob, pw, upgrade_params)
        except VaultOpenError as e:
            self._clear()
            logger.error(stamp(f"Could not open vault {self.path}: {e}"))
            raise

        self._key = decoded.key
        self._salt = decoded.salt
        self._params = decoded.params
        self._entries = decoded.entries
        self._dirty = decoded.migrated
        self.format_version = decoded.format_version
        self._last_stamp = None
        return self

    def lock(self) -> None:
        """Wipe the key and all entries from memory. Safe to call twice."""
        self._clear()

    def _clear(self) -> None:
        wipe(self._key)
        if self._entries is not None:
            self._entries.wipe()
        self._key = None
        self._entries = None
        self._salt = None
        self._params = None
        self._dirty = False

    def __enter__(self) -> "VaultEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.lock()

    def __del__(self):
        try:
            self._clear()
        except Exception:
            # no errors in __del__ allowed
            pass

    def __repr__(self):
        state = "unlocked" if self.is_unlocked else "locked"
        return f"VaultEngine(path={str(self.path)!r}, {state})"

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None and self._entries is not None

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def _require_unlocked(self) -> EntryCollection:
        if not self.is_unlocked:
            raise VaultLockedError()
        return self._entries

    def _now(self) -> pendulum.DateTime:
        """Wall-clock time that never goes backwards within a session."""
        now = pendulum.now("UTC")
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp.add(microseconds=1)
        self._last_stamp = now
        return now

    # ==============================================================
    # Queries
    # ==============================================================
    def list_entries(self) -> List[EntrySummary]:
        """Every entry in insertion order, without passwords."""
        entries = self._require_unlocked()
        return [EntrySummary(e.name, e.username, e.updated_at) for e in entries]

    def search_entries(self, query: str) -> List[EntrySummary]:
        """
        Entries whose name, username or notes contain every search term.

        Matching is case-insensitive. An empty query matches everything.
        """
        entries = self._require_unlocked()
        terms = query.lower().split()
        results = []
        for e in entries:
            searchable_str = " ".join([e.name, e.username, e.notes or ""]).lower()
            if all(term in searchable_str for term in terms):
                results.append(EntrySummary(e.name, e.username, e.updated_at))
        return results

    def get_entry(self, name: str) -> EntryView:
        e = self._require_unlocked().get(name)
        return EntryView(e.name, e.username, e.notes, e.created_at, e.updated_at)

    def get_password(self, name: str) -> str:
        return self._require_unlocked().get(name).password_str()

    # ==============================================================
    # Mutations
    # ==============================================================
    def add_entry(self, name: str, username: str, password: str | bytes,
                  notes: Optional[str] = None) -> None:
        """
        Raises:
            DuplicateNameError: If `name` is taken. Nothing changes.
            InvalidEntryError: If a field has the wrong type or is not
                valid UTF-8 text. Nothing changes.
        """
        entries = self._require_unlocked()
        try:
            entry = Entry(name=name, username=username, password=password_buffer(password),
                          notes=notes)
        except (TypeError, ValueError) as e:
            raise InvalidEntryError(str(e)) from e
        if entry.name in entries:
            entry.wipe()
            raise DuplicateNameError(entry.name)
        entry.created_at = entry.updated_at = self._now()
        entries.add(entry)
        self._dirty = True

    def update_entry(self, name: str, *, username: Optional[str] = None,
                     password: Optional[str | bytes] = None,
                     notes: Optional[str] = None) -> None:
        """
        Change some fields of an entry. Fields passed as None are left alone.

        Every field is checked before the entry is touched.

        Raises:
            NotFoundError: If there is no entry `name`.
            InvalidEntryError: If a field has the wrong type or is not
                valid UTF-8 text.
        """
        entry = self._require_unlocked().get(name)
        new_pw = None
        try:
            if username is not None:
                check_text(username, "Username")
            if notes is not None:
                check_text(notes, "Notes")
            if password is not None:
                new_pw = password_buffer(password)
        except (TypeError, ValueError) as e:
            raise InvalidEntryError(str(e)) from e

        if username is not None:
            entry.username = username
        if notes is not None:
            entry.notes = notes
        if new_pw is not None:
            self._replace_password(entry, new_pw)
        entry.updated_at = self._now()
        self._dirty = True

    def remove_entry(self, name: str) -> None:
        """
        Raises:
            NotFoundError: If there is no entry `name`.
        """
        entry = self._require_unlocked().remove(name)
        entry.wipe()
        self._dirty = True

    def rename_entry(self, old: str, new: str) -> None:
        """
        Raises:
            NotFoundError: If there is no entry `old`.
            DuplicateNameError: If `new` is already taken.
            InvalidEntryError: If `new` is empty or not valid UTF-8 text.
        """
        entries = self._require_unlocked()
        if old == new:
            entries.get(old)
            return
        try:
            entry = entries.rename(old, new)
        except (TypeError, ValueError) as e:
            raise InvalidEntryError(str(e)) from e
        entry.updated_at = self._now()
        self._dirty = True

    def regenerate_password(self, name: str, length: Optional[int] = None,
                            options: Optional[CharsetOptions] = None) -> str:
        """
        Replace an entry's password with a freshly generated one.

        Returns:
            The new password.

        Raises:
            NotFoundError: If there is no entry `name`.
            ConfigError: If the generator options are invalid.
        """
        entry = self._require_unlocked().get(name)
        new_pw = self.generate_password(length, options)
        self._replace_password(entry, password_buffer(new_pw))
        entry.updated_at = self._now()
        self._dirty = True
        return new_pw

    def generate_password(self, length: Optional[int] = None,
                          options: Optional[CharsetOptions] = None) -> str:
        self._require_unlocked()
        return generate(PASS_DEFAULTS["length"] if length is None else length, options)

    @staticmethod
    def _replace_password(entry: Entry, new_buf: bytearray) -> None:
        entry.wipe()
        entry.password = new_buf

    def change_passphrase(self, new_passphrase: str | bytes) -> None:
        """
        Re-key the vault under a new passphrase and a new random salt.

        The on-disk file keeps the old passphrase until the next `save`.

        Raises:
            ConfigError: If the new passphrase is empty.
        """
        self._require_unlocked()
        pw = _to_bytes(new_passphrase)
        salt = new_salt()
        new_key = derive_key(pw, salt, self._params)

        wipe(self._key)
        self._key = new_key
        self._salt = salt
        self._dirty = True
        logger.info(stamp(f"Master password changed for {self.path}, pending save"))

    # ==============================================================
    # Persistence
    # ==============================================================
    def save(self) -> None:
        """
        Encrypt the vault and atomically replace the file on disk.

        The container is written to a temporary file in the vault's own
        directory, flushed to disk, then renamed over the vault path. If
        anything fails the original file is untouched, the temporary file
        is removed and the engine stays dirty.

        Raises:
            VaultLockedError: If the vault is locked.
            VaultIOError: If writing or renaming fails.
        """
        entries = self._require_unlocked()
        blob = vault_codec.encode(entries, self._key, self._salt, self._params)

        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp",
                                            dir=directory)
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno()) # force to disk

            # Atomic replace of the vault file.
            os.replace(tmp_name, self.path)
            tmp_name = None
            _fsync_directory(directory)
        except OSError as e:
            logger.error(stamp(f"Could not save vault {self.path}: {e}"))
            raise VaultIOError(f"Could not save vault file: {e}", e) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass

        self._dirty = False
        self.format_version = vault_codec.CURRENT_VERSION


def _fsync_directory(directory: Path) -> None:
    """Persist the rename itself. Not supported on Windows."""
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def unlock(path: str | os.PathLike, passphrase: str | bytes,
           upgrade_params: Optional[KdfParams] = None) -> VaultEngine:
    """Open an existing vault and return an unlocked engine."""
    return VaultEngine(path).unlock(passphrase, upgrade_params)


def create(path: str | os.PathLike, passphrase: str | bytes,
           kdf_params: Optional[KdfParams] = None) -> VaultEngine:
    """Start a new vault at `path`; call `save` to write it."""
    return VaultEngine.create(path, passphrase, kdf_params)
