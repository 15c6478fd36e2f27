"""
Shared pytest fixtures for the passvault test suite.

The production Argon2 parameters cost hundreds of MiB per derivation, so
every test that creates or unlocks a vault uses ``FAST_KDF`` instead.
"""
import json
import os
import struct

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from passvault.utils.crypto_utils import KdfParams
from passvault.utils.vault_engine import VaultEngine

FAST_KDF = KdfParams(time_cost=1, memory_cost=1024, parallelism=1)
PASSPHRASE = "correct-horse"


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "vault.pvlt"


@pytest.fixture
def new_vault(vault_path):
    """An unlocked, empty, unsaved vault at ``vault_path``."""
    engine = VaultEngine.create(vault_path, PASSPHRASE, FAST_KDF)
    yield engine
    engine.lock()


@pytest.fixture
def saved_vault(new_vault):
    """A vault with two entries, already written to disk."""
    new_vault.add_entry("github", "alice", "p@ss1", "")
    new_vault.add_entry("mail", "alice@example.com", "hunter2", "personal inbox")
    new_vault.save()
    return new_vault


def build_v1_blob(passphrase: bytes, records: list, log_n: int = 10) -> bytes:
    """Assemble a format version 1 (scrypt + AES-GCM) container by hand."""
    salt = os.urandom(16)
    nonce = os.urandom(12)
    header = struct.pack(">4sH", b"PVLT", 1) + struct.pack(">BII", log_n, 8, 1) + salt
    key = Scrypt(salt=salt, length=32, n=1 << log_n, r=8, p=1).derive(passphrase)
    plaintext = json.dumps({"passwords": records}).encode("utf-8")
    return header + nonce + AESGCM(key).encrypt(nonce, plaintext, header)


@pytest.fixture
def v1_records():
    return [
        {"app_name": "youtube", "username": "bob", "password": "yt-pass",
         "created_at": 1500000000, "updated_at": 1500000100},
        {"app_name": "bank", "username": "bob@bank", "password": "b4nk!",
         "created_at": 1500000200, "updated_at": 1500000300},
    ]
