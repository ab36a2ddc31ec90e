"""What a folder session needs from the wire, and what the wire reports back.

The sync layer only talks to a ``FolderTransport``. ``IMAPProtocol`` is the
aioimaplib-backed implementation; tests drive the same contract with an
in-memory server.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Protocol, Sequence, Tuple, Union

from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.requests import StoreAction
from mailstate.core.models.state import FolderAccess, MessageSummary, ResyncHint, VanishedSet
from mailstate.core.models.unique_id import UniqueId


@dataclass(frozen=True)
class Expunged:
    """Untagged EXPUNGE; ``index`` is 0-based."""

    index: int


@dataclass(frozen=True)
class Exists:
    """Untagged EXISTS: the folder now holds ``count`` messages."""

    count: int


@dataclass(frozen=True)
class FolderStatus:
    """Folder-level response codes. Fields the server did not send stay None."""

    exists: Optional[int] = None
    uid_validity: Optional[int] = None
    uid_next: Optional[int] = None
    highest_modseq: Optional[int] = None
    no_modseq: bool = False
    read_only: Optional[bool] = None


# MessageSummary doubles as the untagged FETCH notification
Notification = Union[MessageSummary, Expunged, Exists, VanishedSet, FolderStatus]


@dataclass(frozen=True)
class StoreCommand:
    """One conditional store, already validated and resolved to concrete targets.

    ``uids`` is used when ``by_uid`` is set, ``indexes`` (0-based) otherwise.
    ``flags``/``keywords`` of None leave that namespace out of the command.
    ``labels`` is only set for Gmail label stores.
    """

    action: StoreAction
    by_uid: bool = True
    uids: Tuple[UniqueId, ...] = ()
    indexes: Tuple[int, ...] = ()
    flags: Optional[MessageFlags] = None
    keywords: Optional[FrozenSet[str]] = None
    labels: Optional[FrozenSet[str]] = None
    unchanged_since: Optional[int] = None
    silent: bool = False
    # keywords currently cached on the targets; a keyword-only SET strips them
    known_keywords: FrozenSet[str] = frozenset()

    @property
    def is_label_store(self) -> bool:
        return self.labels is not None

    @property
    def targets(self) -> Tuple[Union[UniqueId, int], ...]:
        return self.uids if self.by_uid else self.indexes


@dataclass(frozen=True)
class StoreResponse:
    """Server answer to a StoreCommand.

    ``modified`` lists the targets the server refused because of
    UNCHANGEDSINCE, addressed the same way as the command (uids or 0-based
    indexes). ``notifications`` holds every untagged response that arrived
    before the tagged completion, FETCH echoes included.
    """

    modified: Tuple[Union[UniqueId, int], ...] = ()
    notifications: Tuple[Notification, ...] = ()


@dataclass(frozen=True)
class SelectResponse:
    status: FolderStatus
    access: FolderAccess
    notifications: Tuple[Notification, ...] = ()


@dataclass(frozen=True)
class FetchResponse:
    notifications: Tuple[Notification, ...] = ()


@dataclass(frozen=True)
class CopyResponse:
    """COPYUID data, when the server supplied it, plus trailing notifications."""

    uid_validity: Optional[int] = None
    source: Tuple[UniqueId, ...] = ()
    destination: Tuple[UniqueId, ...] = ()
    notifications: Tuple[Notification, ...] = ()

    @property
    def has_uid_map(self) -> bool:
        return self.uid_validity is not None


class FolderTransport(Protocol):
    """Command/response exchange for a single selected folder."""

    async def capabilities(self) -> FrozenSet[str]: ...

    async def enable(self, capability: str) -> None: ...

    async def select(
        self, folder: str, read_only: bool, hint: Optional[ResyncHint] = None
    ) -> SelectResponse: ...

    async def fetch(
        self, changed_since: Optional[int] = None, vanished: bool = False
    ) -> FetchResponse: ...

    async def store(self, command: StoreCommand) -> StoreResponse: ...

    async def copy(self, uids: Sequence[UniqueId], destination: str) -> CopyResponse: ...

    async def move(self, uids: Sequence[UniqueId], destination: str) -> CopyResponse: ...

    async def poll(self) -> Tuple[Notification, ...]: ...

    async def close(self) -> None: ...
