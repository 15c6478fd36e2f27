from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional
import base64, binascii
import pendulum

from passvault.config.config_vault import UTF8
from .errors import DuplicateNameError, NotFoundError

ENTRY_FIELDS = frozenset(
    ("name", "username", "password", "notes", "created_at", "updated_at")
)


def _utcnow() -> pendulum.DateTime:
    return pendulum.now("UTC")


@dataclass
class Entry:
    """
    Represents a single vault entry.

    The record is closed: these are the only fields a vault stores, so the
    serialized form stays stable across releases.
    """
    name: str
    username: str = ''
    password: bytearray = field(default_factory=bytearray)
    notes: Optional[str] = None
    created_at: pendulum.DateTime = field(default_factory=_utcnow)
    updated_at: pendulum.DateTime = field(default_factory=_utcnow)

    def __post_init__(self):
        """
        Validate and normalize fields.

        Names are compared case-sensitively and are never stripped; an
        empty name is rejected. Text fields must be encodable as UTF-8.
        """
        check_name(self.name)
        check_text(self.username, "Username")
        if self.notes is not None:
            check_text(self.notes, "Notes")
        if not isinstance(self.password, bytearray):
            self.password = password_buffer(self.password)

    def __repr__(self):
        return (
            f"Entry(name={self.name!r}, "
            f"username={self.username!r}, "
            f"pw=<hidden>, "
            f"created_at={self.created_at}, "
            f"updated_at={self.updated_at})"
        )

    def password_str(self) -> str:
        return self.password.decode(UTF8)

    def wipe(self):
        """
        Overwrite the password buffer in memory.

        Side Effects:
            Zeroes and empties the password bytearray.
        """
        for i in range(len(self.password)):
            self.password[i] = 0
        self.password.clear()

    def __del__(self):
        """
        Best-effort cleanup of sensitive data.

        Intended as a fallback; wipe() should be called explicitly.
        """
        try:
            self.wipe()
        except Exception:
            # no errors in __del__ allowed
            pass

    def to_dict(self) -> dict:
        """
        Serialize entry to a dictionary.

        The password is base64 encoded; timestamps are ISO-8601 strings.
        """
        return {
            "name": self.name,
            "username": self.username,
            "password": _btArr_to_b64(self.password),
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Entry":
        """
        Create an entry from stored data.

        Args:
            data: Dictionary produced by `to_dict`.

        Returns:
            Reconstructed Entry instance.

        Raises:
            TypeError: If data or one of its fields has the wrong type.
            ValueError: If fields are missing or unknown, or a value
                cannot be decoded.
        """
        if not isinstance(data, dict):
            raise TypeError("Entry data must be a dict")

        keys = set(data)
        if keys != ENTRY_FIELDS:
            missing = sorted(ENTRY_FIELDS - keys)
            unknown = sorted(keys - ENTRY_FIELDS)
            raise ValueError(f"Bad entry fields (missing={missing}, unknown={unknown})")

        for key in ("name", "username", "password", "created_at", "updated_at"):
            if not isinstance(data[key], str):
                raise TypeError(f"Entry field {key!r} must be a string")

        return cls(
            name=data["name"],
            username=data["username"],
            password=_b64_to_btArr(data["password"]),
            notes=data["notes"],
            created_at=_parse_timestamp(data["created_at"]),
            updated_at=_parse_timestamp(data["updated_at"]),
        )


class EntryCollection:
    """
    Insertion-ordered mapping of entry name to Entry.

    Enforces case-sensitive name uniqueness. Plain data: no I/O and no
    timestamps are set here, that is the engine's job.
    """

    def __init__(self, entries: Optional[List[Entry]] = None):
        self._entries: Dict[str, Entry] = {}
        for entry in entries or []:
            self.add(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EntryCollection):
            return NotImplemented
        return list(self._entries.items()) == list(other._entries.items())

    def __repr__(self):
        return f"EntryCollection({len(self)} entries)"

    def names(self) -> List[str]:
        return list(self._entries)

    def entries(self) -> List[Entry]:
        return list(self._entries.values())

    def add(self, entry: Entry) -> None:
        if entry.name in self._entries:
            raise DuplicateNameError(entry.name)
        self._entries[entry.name] = entry

    def get(self, name: str) -> Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise NotFoundError(name) from None

    def remove(self, name: str) -> Entry:
        try:
            return self._entries.pop(name)
        except KeyError:
            raise NotFoundError(name) from None

    def rename(self, old: str, new: str) -> Entry:
        """
        Rename an entry in place, keeping its position in the ordering.

        Raises:
            NotFoundError: If `old` does not exist.
            DuplicateNameError: If `new` is already taken.
            TypeError: If `new` is not a string.
            ValueError: If `new` is empty or not encodable as UTF-8.
        """
        entry = self.get(old)
        if new == old:
            return entry
        check_name(new)
        if new in self._entries:
            raise DuplicateNameError(new)

        entry.name = new
        self._entries = {
            (new if name == old else name): value
            for name, value in self._entries.items()
        }
        return entry

    def wipe(self) -> None:
        """Wipe every entry's secrets and drop them all."""
        for entry in self._entries.values():
            entry.wipe()
        self._entries.clear()


def check_text(value: str, what: str) -> None:
    """Raise unless `value` is a string that survives a UTF-8 round trip."""
    if not isinstance(value, str):
        raise TypeError(f"{what} must be a string")
    try:
        value.encode(UTF8)
    except UnicodeEncodeError:
        # lone surrogates, e.g. from undecodable argv bytes
        raise ValueError(f"{what} is not valid UTF-8 text") from None


def check_name(name: str) -> None:
    check_text(name, "Name")
    if not name:
        raise ValueError("Name cannot be empty")


def password_buffer(password: str | bytes | bytearray) -> bytearray:
    """Copy a password into a fresh bytearray, encoding text as UTF-8."""
    if isinstance(password, str):
        check_text(password, "Password")
        return bytearray(password.encode(UTF8))
    if isinstance(password, (bytes, bytearray)):
        return bytearray(password)
    raise TypeError("Password must be str, bytes or bytearray")


def _btArr_to_b64(b: bytearray) -> str:
    """Encode a bytearray as base64."""
    return base64.b64encode(b).decode("ascii")


def _b64_to_btArr(s: str) -> bytearray:
    """Decode base64 string to a bytearray."""
    try:
        return bytearray(base64.b64decode(s.encode("ascii"), validate=True))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


def _parse_timestamp(value: str) -> pendulum.DateTime:
    parsed = pendulum.parse(value)
    if not isinstance(parsed, pendulum.DateTime):
        raise ValueError(f"Not a timestamp: {value!r}")
    return parsed.in_timezone("UTC")
