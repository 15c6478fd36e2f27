import os
import string

import pytest

from passvault.utils import vault_engine
from passvault.utils.crypto_utils import KdfParams
from passvault.utils.errors import (AuthenticationFailure, ConfigError, DuplicateNameError,
                                    FormatError, InvalidEntryError, NotFoundError,
                                    VaultError, VaultIOError,
                                    VaultLockedError, VaultOpenError, VaultStateError)
from passvault.utils.password_generator import CharsetOptions
from passvault.utils.vault_codec import FormatV2, peek_version
from passvault.utils.vault_engine import VaultEngine, create, unlock

from conftest import FAST_KDF, PASSPHRASE, build_v1_blob


def nonce_and_salt(blob: bytes):
    _, salt, offset = FormatV2.parse_header(blob)
    return blob[offset:offset + 12], salt


# ==============================================================
# Scenario
# ==============================================================
def test_create_add_save_unlock_scenario(vault_path):
    vault = create(vault_path, "correct-horse", FAST_KDF)
    vault.add_entry("github", "alice", "p@ss1", "")
    vault.save()
    vault.lock()

    with unlock(vault_path, "correct-horse") as reopened:
        rows = reopened.list_entries()
        assert [(r.name, r.username) for r in rows] == [("github", "alice")]
        assert rows[0].updated_at is not None
        assert reopened.get_password("github") == "p@ss1"

    with pytest.raises(AuthenticationFailure):
        unlock(vault_path, "wrong-pass")


def test_wrong_passphrase_leaves_engine_locked(saved_vault, vault_path):
    engine = VaultEngine(vault_path)
    with pytest.raises(VaultOpenError):
        engine.unlock("wrong-pass")
    assert not engine.is_unlocked
    with pytest.raises(VaultLockedError):
        engine.list_entries()

    engine.unlock(PASSPHRASE)
    assert engine.is_unlocked
    assert not engine.is_dirty


def test_unlock_missing_file(tmp_path):
    with pytest.raises(VaultIOError) as exc:
        unlock(tmp_path / "missing.pvlt", PASSPHRASE)
    assert isinstance(exc.value.__cause__, FileNotFoundError)
    assert exc.value.filename is not None


def test_unlock_garbage_file(vault_path):
    vault_path.write_bytes(b"this is not a vault")
    with pytest.raises(FormatError):
        unlock(vault_path, PASSPHRASE)


def test_unlock_twice_is_state_error(saved_vault):
    with pytest.raises(VaultStateError):
        saved_vault.unlock(PASSPHRASE)


def test_create_refuses_existing_file(saved_vault, vault_path):
    with pytest.raises(VaultIOError):
        create(vault_path, PASSPHRASE, FAST_KDF)


def test_create_rejects_empty_passphrase(vault_path):
    with pytest.raises(ConfigError):
        create(vault_path, "", FAST_KDF)


def test_create_rejects_bad_kdf_params(vault_path):
    with pytest.raises(ConfigError):
        create(vault_path, PASSPHRASE, KdfParams(time_cost=0, memory_cost=1024, parallelism=1))


# ==============================================================
# Queries
# ==============================================================
def test_list_entries_has_no_passwords(saved_vault):
    rows = saved_vault.list_entries()
    assert [r.name for r in rows] == ["github", "mail"]
    for row in rows:
        assert "p@ss1" not in row and "hunter2" not in row
        assert len(row) == 3


def test_get_entry_view(saved_vault):
    view = saved_vault.get_entry("mail")
    assert view.username == "alice@example.com"
    assert view.notes == "personal inbox"
    assert not hasattr(view, "password")


def test_get_password_missing(saved_vault):
    with pytest.raises(NotFoundError):
        saved_vault.get_password("nope")


def test_search_entries(saved_vault):
    assert [r.name for r in saved_vault.search_entries("GIT")] == ["github"]
    assert [r.name for r in saved_vault.search_entries("alice inbox")] == ["mail"]
    assert [r.name for r in saved_vault.search_entries("")] == ["github", "mail"]
    assert saved_vault.search_entries("nothing") == []


# ==============================================================
# Mutations
# ==============================================================
def test_add_duplicate_name(new_vault):
    new_vault.add_entry("x", "u", "p")
    new_vault.save()
    with pytest.raises(DuplicateNameError):
        new_vault.add_entry("x", "other", "q")
    assert len(new_vault.list_entries()) == 1
    assert new_vault.get_password("x") == "p"
    assert not new_vault.is_dirty


def test_names_are_case_sensitive(new_vault):
    new_vault.add_entry("x", "u", "p")
    new_vault.add_entry("X", "u", "p")
    assert [r.name for r in new_vault.list_entries()] == ["x", "X"]


def test_mutations_mark_dirty_without_touching_disk(saved_vault, vault_path):
    before = vault_path.read_bytes()
    saved_vault.add_entry("new", "u", "p")
    assert saved_vault.is_dirty
    assert vault_path.read_bytes() == before


def test_update_entry(saved_vault):
    before = saved_vault.get_entry("github")
    saved_vault.update_entry("github", password="n3w", notes="rotated")
    after = saved_vault.get_entry("github")

    assert saved_vault.get_password("github") == "n3w"
    assert after.username == "alice"
    assert after.notes == "rotated"
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at
    assert saved_vault.is_dirty


def test_update_missing_entry(saved_vault):
    with pytest.raises(NotFoundError):
        saved_vault.update_entry("nope", username="x")
    assert not saved_vault.is_dirty


def test_remove_entry(saved_vault):
    saved_vault.remove_entry("github")
    assert [r.name for r in saved_vault.list_entries()] == ["mail"]
    with pytest.raises(NotFoundError):
        saved_vault.remove_entry("github")


def test_rename_entry(saved_vault):
    saved_vault.add_entry("zzz", "u", "p")
    saved_vault.rename_entry("github", "github-work")
    assert [r.name for r in saved_vault.list_entries()] == ["github-work", "mail", "zzz"]
    assert saved_vault.get_password("github-work") == "p@ss1"

    with pytest.raises(DuplicateNameError):
        saved_vault.rename_entry("mail", "zzz")
    with pytest.raises(NotFoundError):
        saved_vault.rename_entry("github", "x")


UNDECODABLE = "caf\udce9"   # what argparse makes of a latin-1 byte in argv


@pytest.mark.parametrize("fields", [
    ("x" + UNDECODABLE, "u", "p", None),
    ("x", UNDECODABLE, "p", None),
    ("x", "u", UNDECODABLE, None),
    ("x", "u", "p", UNDECODABLE),
    ("", "u", "p", None),
    ("x", 5, "p", None),
    ("x", "u", 1234, None),
])
def test_add_rejects_unstorable_fields(saved_vault, vault_path, fields):
    with pytest.raises(InvalidEntryError):
        saved_vault.add_entry(*fields)
    assert [r.name for r in saved_vault.list_entries()] == ["github", "mail"]
    assert not saved_vault.is_dirty

    saved_vault.add_entry("x", "u", "p")
    saved_vault.save()
    with unlock(vault_path, PASSPHRASE) as reopened:
        assert reopened.get_password("x") == "p"


@pytest.mark.parametrize("changes", [
    {"username": UNDECODABLE},
    {"notes": UNDECODABLE},
    {"password": UNDECODABLE},
    {"username": "ok", "notes": 3},
    {"notes": "ok", "password": ["p"]},
])
def test_update_rejects_unstorable_fields_before_changing_anything(saved_vault, changes):
    before = saved_vault.get_entry("github")
    with pytest.raises(InvalidEntryError):
        saved_vault.update_entry("github", **changes)
    assert saved_vault.get_entry("github") == before
    assert saved_vault.get_password("github") == "p@ss1"
    assert not saved_vault.is_dirty
    saved_vault.save()


@pytest.mark.parametrize("new", [UNDECODABLE, "", None])
def test_rename_rejects_unstorable_names(saved_vault, new):
    with pytest.raises(InvalidEntryError):
        saved_vault.rename_entry("github", new)
    assert [r.name for r in saved_vault.list_entries()] == ["github", "mail"]
    assert not saved_vault.is_dirty
    saved_vault.save()


def test_invalid_entry_is_a_vault_error():
    assert issubclass(InvalidEntryError, VaultError)
    assert issubclass(InvalidEntryError, ValueError)


def test_regenerate_password(saved_vault):
    opts = CharsetOptions(include_uppercase=False, include_lowercase=False,
                          include_digits=True, include_symbols=False)
    new_pw = saved_vault.regenerate_password("github", 20, opts)
    assert len(new_pw) == 20
    assert set(new_pw) <= set(string.digits)
    assert saved_vault.get_password("github") == new_pw


def test_regenerate_with_bad_options_changes_nothing(saved_vault):
    with pytest.raises(ConfigError):
        saved_vault.regenerate_password("github", 20, CharsetOptions(False, False, False, False))
    assert saved_vault.get_password("github") == "p@ss1"
    assert not saved_vault.is_dirty


def test_generate_password_has_no_side_effects(saved_vault):
    pw = saved_vault.generate_password()
    assert len(pw) == 32
    assert not saved_vault.is_dirty


def test_timestamps_are_monotonic(new_vault, monkeypatch):
    frozen = vault_engine.pendulum.datetime(2030, 1, 1, tz="UTC")
    monkeypatch.setattr(vault_engine.pendulum, "now", lambda tz=None: frozen)
    new_vault.add_entry("a", "u", "p")
    new_vault.add_entry("b", "u", "p")
    new_vault.update_entry("a", username="v")
    a, b = new_vault.get_entry("a"), new_vault.get_entry("b")
    assert a.created_at < b.created_at < a.updated_at


def test_operations_require_unlock(saved_vault):
    saved_vault.lock()
    for call in (
        lambda: saved_vault.list_entries(),
        lambda: saved_vault.get_password("github"),
        lambda: saved_vault.add_entry("a", "b", "c"),
        lambda: saved_vault.update_entry("github", username="x"),
        lambda: saved_vault.remove_entry("github"),
        lambda: saved_vault.rename_entry("github", "x"),
        lambda: saved_vault.generate_password(),
        lambda: saved_vault.change_passphrase("new"),
        lambda: saved_vault.save(),
    ):
        with pytest.raises(VaultLockedError):
            call()


# ==============================================================
# Persistence
# ==============================================================
def test_consecutive_saves_use_fresh_nonces(saved_vault, vault_path):
    first = vault_path.read_bytes()
    saved_vault.save()
    second = vault_path.read_bytes()

    nonce1, salt1 = nonce_and_salt(first)
    nonce2, salt2 = nonce_and_salt(second)
    assert nonce1 != nonce2
    assert salt1 == salt2

    for blob in (first, second):
        vault_path.write_bytes(blob)
        with unlock(vault_path, PASSPHRASE) as v:
            assert v.get_password("mail") == "hunter2"


def test_crash_before_rename_leaves_original_intact(saved_vault, vault_path, monkeypatch):
    original = vault_path.read_bytes()
    saved_vault.add_entry("new", "u", "p")

    def crash(src, dst):
        raise OSError(28, "No space left on device", str(dst))

    monkeypatch.setattr(vault_engine.os, "replace", crash)
    with pytest.raises(VaultIOError) as exc:
        saved_vault.save()
    monkeypatch.undo()

    assert exc.value.errno == 28
    assert vault_path.read_bytes() == original
    assert sorted(os.listdir(vault_path.parent)) == [vault_path.name]
    assert saved_vault.is_dirty

    with unlock(vault_path, PASSPHRASE) as v:
        assert [r.name for r in v.list_entries()] == ["github", "mail"]

    # in-memory state survives for a retry
    saved_vault.save()
    with unlock(vault_path, PASSPHRASE) as v:
        assert "new" in [r.name for r in v.list_entries()]


def test_crash_during_write_leaves_original_intact(saved_vault, vault_path, monkeypatch):
    original = vault_path.read_bytes()
    saved_vault.remove_entry("github")

    def crash(fd):
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(vault_engine.os, "fsync", crash)
    with pytest.raises(VaultIOError):
        saved_vault.save()
    monkeypatch.undo()

    assert vault_path.read_bytes() == original
    assert sorted(os.listdir(vault_path.parent)) == [vault_path.name]


def test_save_creates_file_only_readable_by_owner(saved_vault, vault_path):
    if os.name == "nt":
        pytest.skip("POSIX permissions")
    assert vault_path.stat().st_mode & 0o077 == 0


def test_change_passphrase(saved_vault, vault_path):
    _, old_salt = nonce_and_salt(vault_path.read_bytes())
    saved_vault.change_passphrase("battery-staple")
    assert saved_vault.is_dirty

    # the file still opens with the old passphrase until saved
    with unlock(vault_path, PASSPHRASE):
        pass

    saved_vault.save()
    _, new_salt = nonce_and_salt(vault_path.read_bytes())
    assert new_salt != old_salt

    with pytest.raises(AuthenticationFailure):
        unlock(vault_path, PASSPHRASE)
    with unlock(vault_path, "battery-staple") as v:
        assert v.get_password("github") == "p@ss1"


def test_change_passphrase_rejects_empty(saved_vault):
    with pytest.raises(ConfigError):
        saved_vault.change_passphrase("")
    assert not saved_vault.is_dirty


def test_legacy_vault_is_upgraded_on_save(vault_path, v1_records):
    vault_path.write_bytes(build_v1_blob(PASSPHRASE.encode(), v1_records))

    vault = unlock(vault_path, PASSPHRASE, upgrade_params=FAST_KDF)
    assert vault.format_version == 1
    assert vault.is_dirty
    assert [r.name for r in vault.list_entries()] == ["youtube", "bank"]

    vault.save()
    assert vault.format_version == 2
    assert peek_version(vault_path.read_bytes()) == 2
    vault.lock()

    with unlock(vault_path, PASSPHRASE) as v:
        assert not v.is_dirty
        assert v.get_password("bank") == "b4nk!"


# ==============================================================
# Locking
# ==============================================================
def test_lock_wipes_key_and_entries(saved_vault):
    key = saved_vault._key
    entries = saved_vault._entries
    github = entries.get("github")
    password_buf = github.password

    saved_vault.lock()

    assert key == bytearray(len(key))
    assert len(entries) == 0
    assert bytes(password_buf) == b""
    assert not saved_vault.is_unlocked
    saved_vault.lock()


def test_context_manager_locks_on_error(saved_vault, vault_path):
    with pytest.raises(RuntimeError):
        with unlock(vault_path, PASSPHRASE) as v:
            engine = v
            raise RuntimeError("boom")
    assert not engine.is_unlocked


def test_remove_wipes_entry(saved_vault):
    buf = saved_vault._entries.get("github").password
    saved_vault.remove_entry("github")
    assert bytes(buf) == b""
