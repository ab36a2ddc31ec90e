"""Store requests, message selectors and conflict results."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Iterator, Optional, Tuple, Union

from mailstate.core.models.flags import SETTABLE_FLAGS, MessageFlags, normalize_keywords
from mailstate.core.models.unique_id import UniqueId
from mailstate.utils.errors import InvalidArgumentError


class StoreAction(Enum):
    """How a store delta combines with a message's current state."""

    ADD = "add"
    REMOVE = "remove"
    SET = "set"


def _check_unchanged_since(value: Optional[int]) -> None:
    if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
        raise InvalidArgumentError(
            f"unchanged_since must be a non-negative integer: {value!r}",
            details={"unchanged_since": value},
        )


@dataclass(frozen=True)
class StoreRequest:
    """Flags/keywords mutation.

    ``flags``/``keywords`` left as None mean the namespace is not part of the
    request. ADD and REMOVE need at least one settable flag or keyword; SET
    may be empty, which clears the supplied namespaces (both when neither is
    supplied).
    """

    action: StoreAction
    flags: Optional[MessageFlags] = None
    keywords: Optional[FrozenSet[str]] = None
    unchanged_since: Optional[int] = None
    silent: bool = False

    def __post_init__(self):
        if not isinstance(self.action, StoreAction):
            raise InvalidArgumentError(f"Invalid store action: {self.action!r}")
        if self.flags is not None:
            object.__setattr__(self, "flags", MessageFlags(self.flags))
        object.__setattr__(self, "keywords", normalize_keywords(self.keywords))
        _check_unchanged_since(self.unchanged_since)

        if self.action is not StoreAction.SET and self.is_empty:
            raise InvalidArgumentError(
                f"{self.action.name} requires at least one flag or keyword",
                details={"action": self.action.value},
            )

    @property
    def settable_flags(self) -> MessageFlags:
        """The flags a client is allowed to store (server-owned ones dropped)."""
        return (self.flags or MessageFlags.NONE) & SETTABLE_FLAGS

    @property
    def is_empty(self) -> bool:
        return not self.settable_flags and not self.keywords

    @property
    def replaces_flags(self) -> bool:
        """SET touches the flag namespace when flags were given, or nothing was."""
        return self.flags is not None or self.keywords is None

    @property
    def replaces_keywords(self) -> bool:
        return self.keywords is not None or self.flags is None


@dataclass(frozen=True)
class StoreLabelsRequest:
    """Gmail label mutation (X-GM-LABELS)."""

    action: StoreAction
    labels: Optional[FrozenSet[str]] = None
    unchanged_since: Optional[int] = None
    silent: bool = False

    def __post_init__(self):
        if not isinstance(self.action, StoreAction):
            raise InvalidArgumentError(f"Invalid store action: {self.action!r}")
        if isinstance(self.labels, str):
            raise InvalidArgumentError("labels must be an iterable of strings")
        labels = frozenset(self.labels) if self.labels is not None else frozenset()
        if any(not isinstance(label, str) or not label for label in labels):
            raise InvalidArgumentError("labels must be non-empty strings")
        object.__setattr__(self, "labels", labels)
        _check_unchanged_since(self.unchanged_since)

        if self.action is not StoreAction.SET and not labels:
            raise InvalidArgumentError(
                f"{self.action.name} requires at least one label",
                details={"action": self.action.value},
            )


AnyStoreRequest = Union[StoreRequest, StoreLabelsRequest]


class SelectorKind(Enum):
    UIDS = "uids"
    INDEXES = "indexes"
    RANGE = "range"


@dataclass(frozen=True)
class MessageSelector:
    """Which messages a store targets: a uid list, an index list or an index range.

    Indexes are 0-based. A range is inclusive; ``end=None`` runs to the last
    message of the folder.
    """

    kind: SelectorKind
    uids: Tuple[UniqueId, ...] = ()
    indexes: Tuple[int, ...] = ()
    start: int = 0
    end: Optional[int] = None

    @classmethod
    def by_uids(cls, uids: Iterable[UniqueId]) -> "MessageSelector":
        if uids is None:
            raise InvalidArgumentError("uids must not be None")
        uids = tuple(uids)
        for uid in uids:
            if not isinstance(uid, UniqueId) or not uid.is_valid:
                raise InvalidArgumentError(f"Invalid UID in selector: {uid!r}")
        return cls(SelectorKind.UIDS, uids=uids)

    @classmethod
    def by_indexes(cls, indexes: Iterable[int]) -> "MessageSelector":
        if indexes is None:
            raise InvalidArgumentError("indexes must not be None")
        indexes = tuple(indexes)
        for index in indexes:
            if isinstance(index, bool) or not isinstance(index, int) or index < 0:
                raise InvalidArgumentError(f"Invalid message index: {index!r}")
        return cls(SelectorKind.INDEXES, indexes=indexes)

    @classmethod
    def by_range(cls, start: int, end: Optional[int] = None) -> "MessageSelector":
        if start < 0 or (end is not None and end < start):
            raise InvalidArgumentError(
                f"Invalid index range: {start}..{end}", details={"start": start, "end": end}
            )
        return cls(SelectorKind.RANGE, start=start, end=end)

    @property
    def by_uid(self) -> bool:
        return self.kind is SelectorKind.UIDS


@dataclass(frozen=True)
class ConflictSet:
    """Targets a conditional store did not update.

    Holds uids for uid selectors and indexes otherwise. Empty whenever the
    request carried no ``unchanged_since``.
    """

    uids: Tuple[UniqueId, ...] = ()
    indexes: Tuple[int, ...] = ()
    by_uid: bool = True

    @property
    def targets(self) -> Tuple[Union[UniqueId, int], ...]:
        return self.uids if self.by_uid else self.indexes

    def __iter__(self) -> Iterator[Union[UniqueId, int]]:
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)

    def __bool__(self) -> bool:
        return bool(self.targets)

    def __contains__(self, target: object) -> bool:
        return target in self.targets

