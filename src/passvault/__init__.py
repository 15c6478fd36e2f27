"""
passvault - a local, offline password vault.

    from passvault import create, unlock

    with unlock("~/.passwords.pvlt", passphrase) as vault:
        for name, username, updated_at in vault.list_entries():
            ...
"""
from passvault.config.config_vault import VERSION as __version__
from passvault.utils.crypto_utils import KdfParams
from passvault.utils.errors import *
from passvault.utils.password_generator import CharsetOptions, generate
from passvault.utils.vault_engine import EntrySummary, EntryView, VaultEngine, create, unlock
