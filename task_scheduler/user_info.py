# File: user_info.py
"""Extensible property bag for tasks and outcomes.

New typed fields can be attached to tasks and outcomes without a schema
migration. A UserInfoKey pairs a unique string identifier with a value type
and a coding; the UserInfoStorage bag maps identifiers to encoded bytes and
keeps a per-key decode cache that is invalidated on write. Stored tasks and
outcomes hold a FrozenUserInfoStorage.

Example:
    SYMPTOM_SCORE = UserInfoKey("symptom_score", int, const.USER_INFO_ANCHOR_OUTCOME)
    outcome = await scheduler.async_complete_event(
        event, initializer=lambda bag: bag.set(SYMPTOM_SCORE, 7)
    )
    outcome.user_info.get(SYMPTOM_SCORE)  # -> 7
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import asdict, dataclass, field, is_dataclass
import json
import plistlib
from typing import Any
from xml.parsers.expat import ExpatError

from . import const
from .exceptions import ConfigurationError, DecodingError


@dataclass(frozen=True)
class UserStorageCoding:
    """Encode/decode strategy for wrapped property values."""

    name: str
    encode: Callable[[Any], bytes] = field(repr=False)
    decode: Callable[[bytes], Any] = field(repr=False)


def _json_encode(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _plist_encode(value: Any) -> bytes:
    return plistlib.dumps(value, fmt=plistlib.FMT_BINARY, sort_keys=True)


JSON_CODING = UserStorageCoding(const.USER_INFO_CODING_JSON, _json_encode, json.loads)
PROPERTY_LIST_CODING = UserStorageCoding(
    const.USER_INFO_CODING_PROPERTY_LIST, _plist_encode, plistlib.loads
)

CODINGS: dict[str, UserStorageCoding] = {
    JSON_CODING.name: JSON_CODING,
    PROPERTY_LIST_CODING.name: PROPERTY_LIST_CODING,
}


@dataclass(frozen=True)
class UserInfoKey:
    """Typed key into a UserInfoStorage bag.

    Attributes:
        identifier: Unique string identifier (the storage key)
        value_type: Python type of the value (scalar, dict, list or dataclass)
        anchor: const.USER_INFO_ANCHOR_TASK or const.USER_INFO_ANCHOR_OUTCOME
        coding: JSON_CODING (sorted keys) or PROPERTY_LIST_CODING
        default: Value returned when the bag has no entry

    Task keys must use a value type with equality, so an update can tell
    whether a property actually changed.
    """

    identifier: str
    value_type: type
    anchor: str = const.USER_INFO_ANCHOR_TASK
    coding: UserStorageCoding = JSON_CODING
    default: Any = None

    def __post_init__(self) -> None:
        if not self.identifier:
            raise ConfigurationError("UserInfoKey identifier must not be empty")
        if self.anchor not in (
            const.USER_INFO_ANCHOR_TASK,
            const.USER_INFO_ANCHOR_OUTCOME,
        ):
            raise ConfigurationError(f"Unknown user info anchor: {self.anchor}")
        if (
            self.anchor == const.USER_INFO_ANCHOR_TASK
            and getattr(self.value_type, "__eq__", None) is object.__eq__
        ):
            raise ConfigurationError(
                f"Task property '{self.identifier}' requires a value type with equality"
            )

    def to_primitive(self, value: Any) -> Any:
        """Convert a value into a codable primitive."""
        if is_dataclass(value) and not isinstance(value, type):
            return asdict(value)
        if isinstance(value, tuple):
            return list(value)
        return value

    def from_primitive(self, value: Any) -> Any:
        """Rebuild the typed value from a decoded primitive.

        Raises:
            TypeError: If the primitive does not match the value type
        """
        if is_dataclass(self.value_type):
            if not isinstance(value, dict):
                raise TypeError(f"expected mapping for {self.value_type.__name__}")
            return self.value_type(**value)
        if self.value_type is tuple and isinstance(value, list):
            return tuple(value)
        if self.value_type is float and isinstance(value, int):
            return float(value)
        if not isinstance(value, self.value_type):
            raise TypeError(
                f"expected {self.value_type.__name__}, got {type(value).__name__}"
            )
        return value


class UserInfoStorage:
    """Mapping from key identifier to encoded value bytes with a decode cache.

    Two bags are equal when their encoded entries are equal.
    """

    def __init__(self, entries: dict[str, bytes] | None = None) -> None:
        """Initialize the bag from raw encoded entries."""
        self._entries: dict[str, bytes] = dict(entries or {})
        self._cache: dict[tuple[str, type, str], Any] = {}

    @staticmethod
    def _cache_key(key: UserInfoKey) -> tuple[str, type, str]:
        return (key.identifier, key.value_type, key.coding.name)

    def get(self, key: UserInfoKey) -> Any:
        """Decode and return the value for a key, or the key's default.

        Raises:
            DecodingError: If the stored bytes cannot be decoded as the key's type
        """
        cache_key = self._cache_key(key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        raw = self._entries.get(key.identifier)
        if raw is None:
            return key.default

        try:
            wrapped = key.coding.decode(raw)
            value = key.from_primitive(wrapped[const.USER_INFO_VALUE_WRAPPER])
        except (ValueError, TypeError, KeyError, IndexError, ExpatError) as exc:
            const.LOGGER.warning(
                "UserInfoStorage: Failed to decode '%s' with %s coding: %s",
                key.identifier,
                key.coding.name,
                exc,
            )
            raise DecodingError(
                f"Cannot decode property '{key.identifier}': {exc}"
            ) from exc

        self._cache[cache_key] = value
        return value

    def set(self, key: UserInfoKey, value: Any) -> None:
        """Encode and store a value; ``None`` removes the entry.

        Raises:
            ConfigurationError: If the value cannot be encoded with the key's coding
        """
        self._cache = {
            cached: item
            for cached, item in self._cache.items()
            if cached[0] != key.identifier
        }
        if value is None:
            self._entries.pop(key.identifier, None)
            return

        try:
            raw = key.coding.encode(
                {const.USER_INFO_VALUE_WRAPPER: key.to_primitive(value)}
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise ConfigurationError(
                f"Cannot encode property '{key.identifier}': {exc}"
            ) from exc

        self._entries[key.identifier] = raw
        self._cache[self._cache_key(key)] = value

    def contains(self, key: UserInfoKey) -> bool:
        return key.identifier in self._entries

    def raw_value(self, identifier: str) -> bytes | None:
        return self._entries.get(identifier)

    def entries(self) -> dict[str, bytes]:
        """Return a copy of the raw encoded entries."""
        return dict(self._entries)

    def copy(self) -> UserInfoStorage:
        """Return a writable copy of the bag."""
        return UserInfoStorage(self._entries)

    def freeze(self) -> FrozenUserInfoStorage:
        """Return a read-only copy of the bag."""
        return FrozenUserInfoStorage(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UserInfoStorage):
            return NotImplemented
        return self._entries == other._entries

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"UserInfoStorage({sorted(self._entries)})"


class FrozenUserInfoStorage(UserInfoStorage):
    """Read-only bag held by stored task versions and outcomes.

    To change a property, copy() the bag, set the value on the copy and pass
    it to an update.
    """

    def set(self, key: UserInfoKey, value: Any) -> None:
        raise ConfigurationError(
            f"Property '{key.identifier}' belongs to a stored record; "
            "set it on a copy() of the bag"
        )

    def freeze(self) -> FrozenUserInfoStorage:
        return self
