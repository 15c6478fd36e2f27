import string
import secrets
from dataclasses import dataclass

from passvault.config.config_vault import PASS_DEFAULTS
from .errors import ConfigError


@dataclass(frozen=True)
class CharsetOptions:
    """
    Character classes a generated password may draw from.

    Attributes:
        include_uppercase: A-Z
        include_lowercase: a-z
        include_digits: 0-9
        include_symbols: PASS_DEFAULTS["symbols_pool"]
        avoid_ambiguous: Drop visually ambiguous characters
            (PASS_DEFAULTS["ambiguous_chars"]) from every class.
    """
    include_uppercase: bool = True
    include_lowercase: bool = True
    include_digits: bool = True
    include_symbols: bool = True
    avoid_ambiguous: bool = False

    @classmethod
    def alnum(cls) -> "CharsetOptions":
        """Letters and digits only."""
        return cls(include_symbols=False)

    def alphabet(self) -> str:
        """
        Union of the enabled character classes.

        Raises:
            ConfigError: If every class is disabled, or filtering leaves
                nothing to choose from.
        """
        pools = []
        if self.include_uppercase:
            pools.append(string.ascii_uppercase)
        if self.include_lowercase:
            pools.append(string.ascii_lowercase)
        if self.include_digits:
            pools.append(string.digits)
        if self.include_symbols:
            pools.append(PASS_DEFAULTS["symbols_pool"])

        if not pools:
            raise ConfigError("At least one character class must be enabled")

        chars = "".join(pools)
        if self.avoid_ambiguous:
            exclude = PASS_DEFAULTS["ambiguous_chars"]
            chars = "".join(c for c in chars if c not in exclude)

        # dict.fromkeys keeps order while removing repeats
        chars = "".join(dict.fromkeys(chars))
        if not chars:
            raise ConfigError("Character set is empty")
        return chars


def generate(length: int = PASS_DEFAULTS["length"],
             options: CharsetOptions | None = None) -> str:
    """
    Generate a cryptographically secure random password.

    Each character is drawn independently and uniformly from the union of
    the enabled classes, so the result is exactly `length` characters long.
    A class being enabled does not guarantee it appears.

    Args:
        length: Number of characters, at least 1.
        options: Character classes to use. Defaults to all classes.

    Returns:
        The generated password.

    Raises:
        ConfigError: If `length` is not a positive integer or no character
            class is enabled. Checked before any randomness is drawn.

    Security Notes:
        - Uses the `secrets` module, never `random`.
    """
    if isinstance(length, bool) or not isinstance(length, int) or length < 1:
        raise ConfigError(f"Password length must be a positive integer, got {length!r}")

    alphabet = (options or CharsetOptions()).alphabet()
    return "".join(secrets.choice(alphabet) for _ in range(length))
