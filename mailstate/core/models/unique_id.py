"""Unique message identifiers and the compact uid-set wire notation."""

from typing import Iterable, List, Sequence

from mailstate.utils.errors import InvalidArgumentError

MAX_UID = 0xFFFFFFFF


class UniqueId:
    """Value object for a message UID within one folder incarnation.

    ``validity`` is the folder's UIDVALIDITY (0 when unknown). Equality and
    hashing cover both fields; ordering compares ``id`` and refuses to compare
    ids from two different known incarnations.
    """

    __slots__ = ("_validity", "_id")

    INVALID: "UniqueId"

    def __init__(self, id: int, validity: int = 0):
        if not 0 < id <= MAX_UID:
            raise InvalidArgumentError(
                f"UID out of range: {id}", details={"id": id}
            )
        if not 0 <= validity <= MAX_UID:
            raise InvalidArgumentError(
                f"UIDVALIDITY out of range: {validity}", details={"validity": validity}
            )
        object.__setattr__(self, "_id", id)
        object.__setattr__(self, "_validity", validity)

    @classmethod
    def _invalid(cls) -> "UniqueId":
        uid = object.__new__(cls)
        object.__setattr__(uid, "_id", 0)
        object.__setattr__(uid, "_validity", 0)
        return uid

    @classmethod
    def parse(cls, token: str, validity: int = 0) -> "UniqueId":
        """Parse a decimal UID token."""
        if not token or not token.isdigit():
            raise InvalidArgumentError(f"Invalid UID token: {token!r}")
        return cls(int(token), validity)

    @property
    def id(self) -> int:
        return self._id

    @property
    def validity(self) -> int:
        return self._validity

    @property
    def is_valid(self) -> bool:
        return self._id != 0

    def with_validity(self, validity: int) -> "UniqueId":
        return UniqueId(self._id, validity)

    def __setattr__(self, key, value):
        raise AttributeError("UniqueId is immutable")

    def _check_comparable(self, other: "UniqueId") -> None:
        if self._validity and other._validity and self._validity != other._validity:
            raise InvalidArgumentError(
                "Cannot compare UIDs from different UIDVALIDITY values",
                details={"left": self._validity, "right": other._validity},
            )

    def __eq__(self, other) -> bool:
        if not isinstance(other, UniqueId):
            return NotImplemented
        return self._id == other._id and self._validity == other._validity

    def __hash__(self) -> int:
        return hash((self._validity, self._id))

    def __lt__(self, other: "UniqueId") -> bool:
        if not isinstance(other, UniqueId):
            return NotImplemented
        self._check_comparable(other)
        return self._id < other._id

    def __le__(self, other: "UniqueId") -> bool:
        if not isinstance(other, UniqueId):
            return NotImplemented
        self._check_comparable(other)
        return self._id <= other._id

    def __gt__(self, other: "UniqueId") -> bool:
        if not isinstance(other, UniqueId):
            return NotImplemented
        self._check_comparable(other)
        return self._id > other._id

    def __ge__(self, other: "UniqueId") -> bool:
        if not isinstance(other, UniqueId):
            return NotImplemented
        self._check_comparable(other)
        return self._id >= other._id

    def __str__(self) -> str:
        return str(self._id)

    def __repr__(self) -> str:
        return f"UniqueId({self._id}, validity={self._validity})"


UniqueId.INVALID = UniqueId._invalid()


def _runs(values: Sequence[int]) -> List[str]:
    """Collapse sorted, de-duplicated ints into ``a`` / ``a:b`` tokens."""
    tokens = []
    start = prev = values[0]
    for value in values[1:]:
        if value == prev + 1:
            prev = value
            continue
        tokens.append(str(start) if start == prev else f"{start}:{prev}")
        start = prev = value
    tokens.append(str(start) if start == prev else f"{start}:{prev}")
    return tokens


def format_uid_set(uids: Iterable[UniqueId]) -> str:
    """Format uids as an IMAP sequence set, e.g. ``1:3,7``."""
    ids = sorted({uid.id for uid in uids if uid.is_valid})
    if not ids:
        raise InvalidArgumentError("Cannot format an empty UID set")
    return ",".join(_runs(ids))


def format_index_set(indexes: Iterable[int]) -> str:
    """Format 0-based message indexes as a 1-based IMAP sequence set."""
    numbers = sorted({index + 1 for index in indexes})
    if not numbers:
        raise InvalidArgumentError("Cannot format an empty index set")
    if numbers[0] < 1:
        raise InvalidArgumentError("Message indexes must not be negative")
    return ",".join(_runs(numbers))


def parse_uid_set(text: str, validity: int = 0) -> List[UniqueId]:
    """Expand an IMAP uid set (``41,43:116``) into UniqueIds, in order given."""
    uids: List[UniqueId] = []
    text = text.strip()
    if not text:
        return uids

    for token in text.split(","):
        try:
            if ":" in token:
                first, _, last = token.partition(":")
                lo, hi = int(first), int(last)
                step = 1 if hi >= lo else -1
                uids.extend(UniqueId(i, validity) for i in range(lo, hi + step, step))
            else:
                uids.append(UniqueId(int(token), validity))
        except InvalidArgumentError:
            raise
        except ValueError as e:
            raise InvalidArgumentError(
                f"Invalid UID set token: {token!r}", details={"uid_set": text}
            ) from e

    return uids
