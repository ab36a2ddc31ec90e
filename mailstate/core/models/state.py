"""Folder sync state, the per-message cache and resync data."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.unique_id import UniqueId
from mailstate.utils.errors import InvalidArgumentError


class FolderAccess(Enum):
    """How a folder was opened."""

    NONE = "none"
    READ_ONLY = "read_only"
    READ_WRITE = "read_write"


@dataclass
class FolderSyncState:
    """Versioning anchors for one open folder.

    ``highest_modseq`` of 0 means mod-sequences are unsupported or unknown.
    The watermark only moves forward; see ``advance``.
    """

    uid_validity: int = 0
    highest_modseq: int = 0
    quick_resync_enabled: bool = False
    uid_next: Optional[int] = None

    @property
    def supports_modseq(self) -> bool:
        return self.highest_modseq > 0

    def advance(self, modseq: Optional[int]) -> bool:
        """Raise the watermark to ``modseq``; return True if it moved."""
        if modseq is None or modseq <= self.highest_modseq:
            return False
        self.highest_modseq = modseq
        return True

    def next_modseq(self) -> int:
        return self.highest_modseq + 1


@dataclass(frozen=True)
class MessageState:
    """What the session knows about one message.

    ``modseq`` is None when the server never reported one for it.
    """

    index: int
    uid: Optional[UniqueId] = None
    flags: MessageFlags = MessageFlags.NONE
    keywords: FrozenSet[str] = frozenset()
    labels: FrozenSet[str] = frozenset()
    modseq: Optional[int] = None

    def evolve(self, **changes) -> "MessageState":
        return replace(self, **changes)


@dataclass(frozen=True)
class MessageSummary:
    """A changed message reported by the server.

    Servers may return more fields than were asked for; anything not modelled
    here lands in ``extra`` and callers must not assume an exact shape.
    """

    index: int
    uid: Optional[UniqueId] = None
    flags: Optional[MessageFlags] = None
    keywords: Optional[FrozenSet[str]] = None
    labels: Optional[FrozenSet[str]] = None
    modseq: Optional[int] = None
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VanishedSet:
    """UIDs confirmed removed.

    ``earlier`` marks a compacted "removed since" answer that more
    notifications may extend within the same sync pass; otherwise the list is
    authoritative, like a full expunge enumeration.
    """

    uids: Tuple[UniqueId, ...]
    earlier: bool = False


@dataclass(frozen=True)
class ResyncHint:
    """The caller's cached snapshot of a folder."""

    uid_validity: int
    last_known_modseq: int
    known_uids: Tuple[UniqueId, ...] = ()

    def __post_init__(self):
        if self.uid_validity <= 0:
            raise InvalidArgumentError("uid_validity must be positive")
        if self.last_known_modseq < 0:
            raise InvalidArgumentError("last_known_modseq must not be negative")
        if self.known_uids is None:
            raise InvalidArgumentError("known_uids must not be None")
        object.__setattr__(self, "known_uids", tuple(self.known_uids))


@dataclass(frozen=True)
class ResyncResult:
    """Outcome of one quick-resync open."""

    changed: Tuple[MessageSummary, ...] = ()
    vanished: VanishedSet = VanishedSet(())


class MessageCache:
    """Index-ordered message states with a uid lookup."""

    def __init__(self, states: Iterable[MessageState] = ()):
        self._states: List[MessageState] = []
        self._by_uid: Dict[UniqueId, int] = {}
        for state in states:
            self.append(state)

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[MessageState]:
        return iter(self._states)

    def at(self, index: int) -> MessageState:
        return self._states[index]

    def find(self, uid: UniqueId) -> Optional[MessageState]:
        index = self._by_uid.get(uid)
        return None if index is None else self._states[index]

    def append(self, state: MessageState) -> MessageState:
        state = state.evolve(index=len(self._states))
        self._states.append(state)
        if state.uid is not None:
            self._by_uid[state.uid] = state.index
        return state

    def put(self, state: MessageState) -> None:
        """Replace the state at ``state.index``, growing the cache if needed."""
        while len(self._states) <= state.index:
            self._states.append(MessageState(index=len(self._states)))
        previous = self._states[state.index]
        if previous.uid is not None and previous.uid != state.uid:
            self._by_uid.pop(previous.uid, None)
        self._states[state.index] = state
        if state.uid is not None:
            self._by_uid[state.uid] = state.index

    def remove_at(self, index: int) -> MessageState:
        """Drop the message at ``index``; later messages shift down by one."""
        removed = self._states.pop(index)
        self._reindex()
        return removed

    def resize(self, count: int) -> None:
        """Match the server's EXISTS count, padding with unknown messages."""
        if count < len(self._states):
            del self._states[count:]
            self._reindex()
        while len(self._states) < count:
            self._states.append(MessageState(index=len(self._states)))

    def _reindex(self) -> None:
        self._by_uid.clear()
        for i, state in enumerate(self._states):
            if state.index != i:
                state = state.evolve(index=i)
                self._states[i] = state
            if state.uid is not None:
                self._by_uid[state.uid] = i
