# config_vault.py
"""
Configuration constants
"""
from pathlib import Path
# ==============================================================
# Vault settings
# ==============================================================
# Software version
VERSION = "2.0.0"

# Default location of the encrypted vault file
VAULT_FILE = Path.home() / ".passwords.pvlt"

# Container marker. DO NOT CHANGE
MAGIC = b"PVLT"

# Length of generated random salt
SALT_LEN = 16

# Argon2id parameters for new vaults and for vaults being migrated.
# Each container stores its own parameters, so changing these only
# affects vaults written from now on.
ARGON_TIME = 6             # Iterations - controls CPU cost
ARGON_MEMORY = 256 * 1024  # 256 MiB - controls RAM cost
ARGON_PARALLELISM = 2
ARGON_HASH_LEN = 32        # bytes - Encryption key size - DO NOT CHANGE

# Upper bounds accepted when reading KDF parameters from a file.
ARGON_MAX_TIME = 16
ARGON_MAX_MEMORY = 1024 * 1024       # 1 GiB
ARGON_MAX_PARALLELISM = 255
SCRYPT_MAX_LOG_N = 22
SCRYPT_MAX_R = 32
SCRYPT_MAX_P = 16
SCRYPT_MAX_MEMORY = 1024 * 1024 * 1024  # 1 GiB

# ChaCha20Poly1305 / AES-GCM nonce length. DO NOT CHANGE
NONCE_LEN = 12


# ==============================================================
# Password generation defaults
# ==============================================================
PASS_DEFAULTS = {
    "length": 32,                   # Default generated password length
    "ambiguous_chars": "lI1oO08",
    "symbols_pool":   "!@#()[]|?$%^*_-+.=",
}

# ==============================================================
# Clipboard security
# ==============================================================
CLIPBOARD_TIMEOUT = 30               # Seconds before auto-clear

# ==============================================================
# Logging
# ==============================================================
LOG_FILE = "error.log"

# ==============================================================
# Display & formatting
# ==============================================================
UTF8 = "utf-8"
DT_FORMAT = "MMM D, YYYY hh:mm:ss A"

# length of visible name when displaying entries
SITE_LEN = 20
ACCOUNT_LEN = 24

# separator
SEP_LG = "=" * 50
SEP_SM = "-" * 50

# ==============================================================
# Optional: local overrides
# Create passvault/config/config_local.py to override any value above, e.g.
#     ARGON_TIME = 7
#     PASS_DEFAULTS["length"] = 24

# ==============================================================
try:
    from passvault.config.config_local import *
except ImportError:
    pass  # No local config - use defaults above
