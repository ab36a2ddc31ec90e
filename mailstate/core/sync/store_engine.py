"""Conditional flag, keyword and label stores against an open folder."""

from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple, Union

from mailstate.core.email.imap.constants import IMAPCapabilities
from mailstate.core.email.imap.transport import StoreCommand, StoreResponse
from mailstate.core.events import FlagsChanged, FolderEvent, HighestModSeqChanged, LabelsChanged
from mailstate.core.models.flags import SETTABLE_FLAGS
from mailstate.core.models.requests import (
    AnyStoreRequest,
    ConflictSet,
    MessageSelector,
    SelectorKind,
    StoreAction,
    StoreLabelsRequest,
    StoreRequest,
)
from mailstate.core.models.state import FolderAccess, MessageState, MessageSummary
from mailstate.core.models.unique_id import UniqueId
from mailstate.utils.errors import (
    InvalidArgumentError,
    MessageNotFoundError,
    ModSeqNotSupportedError,
    NotSupportedError,
    ReadOnlyFolderError,
)
from mailstate.utils.logging import get_logger

if TYPE_CHECKING:
    from mailstate.core.sync.session import FolderSession

logger = get_logger(__name__)

Target = Union[UniqueId, int]


def apply_flags(state: MessageState, request: StoreRequest) -> MessageState:
    """The state a message ends up in once ``request`` applies to it."""
    flags, keywords = state.flags, state.keywords
    delta_flags = request.settable_flags
    delta_keywords = request.keywords or frozenset()

    if request.action is StoreAction.ADD:
        flags, keywords = flags | delta_flags, keywords | delta_keywords
    elif request.action is StoreAction.REMOVE:
        flags, keywords = flags & ~delta_flags, keywords - delta_keywords
    else:
        if request.replaces_flags:
            # server-owned flags such as \Recent survive a replace
            flags = (flags & ~SETTABLE_FLAGS) | delta_flags
        if request.replaces_keywords:
            keywords = delta_keywords

    return state.evolve(flags=flags, keywords=frozenset(keywords))


def apply_labels(state: MessageState, request: StoreLabelsRequest) -> MessageState:
    labels = state.labels
    if request.action is StoreAction.ADD:
        labels = labels | request.labels
    elif request.action is StoreAction.REMOVE:
        labels = labels - request.labels
    else:
        labels = request.labels
    return state.evolve(labels=frozenset(labels))


class ConditionalStoreEngine:
    """Runs one store request as a single exclusive exchange.

    Local state is only touched after the server has answered, so a
    cancelled or failed exchange leaves the folder exactly as it was.
    """

    def __init__(self, folder: "FolderSession"):
        self.folder = folder

    ## Validation

    async def validate(self, selector: MessageSelector, request: AnyStoreRequest) -> None:
        """Checks that need no server round trip, in order of precedence."""
        if selector is None or not isinstance(selector, MessageSelector):
            raise InvalidArgumentError("A message selector is required")
        if request is None or not isinstance(request, (StoreRequest, StoreLabelsRequest)):
            raise InvalidArgumentError("A store request is required")
        if isinstance(request, StoreRequest) and request.action is not StoreAction.SET and request.is_empty:
            raise InvalidArgumentError(f"{request.action.name} requires at least one flag or keyword")

        self.folder.check_open()
        if self.folder.access is not FolderAccess.READ_WRITE:
            raise ReadOnlyFolderError(
                "Cannot store flags in a folder opened read-only",
                details={"folder": self.folder.name},
            )
        if request.unchanged_since is not None and not self.folder.sync_state.supports_modseq:
            raise ModSeqNotSupportedError(
                "The folder does not support mod-sequences",
                details={"folder": self.folder.name, "unchanged_since": request.unchanged_since},
            )
        if isinstance(request, StoreLabelsRequest):
            capabilities = await self.folder.session.capabilities()
            if IMAPCapabilities.GMAIL_EXT not in capabilities:
                raise NotSupportedError(
                    "The server does not support Gmail labels",
                    details={"capability": IMAPCapabilities.GMAIL_EXT},
                )

    def resolve(self, selector: MessageSelector) -> List[MessageState]:
        """Map a selector onto cached messages, in selector order, without duplicates.

        Raises:
            MessageNotFoundError: A uid or index the folder does not know.
        """
        cache = self.folder.cache
        targets: Dict[int, MessageState] = {}

        if selector.kind is SelectorKind.UIDS:
            validity = self.folder.sync_state.uid_validity
            for uid in selector.uids:
                lookup = uid.with_validity(validity) if uid.validity == 0 else uid
                state = cache.find(lookup)
                if state is None:
                    raise MessageNotFoundError(
                        f"UID {uid} is not in {self.folder.name}",
                        details={"uid": uid.id, "folder": self.folder.name},
                    )
                targets.setdefault(state.index, state)
            return list(targets.values())

        if selector.kind is SelectorKind.INDEXES:
            indexes = selector.indexes
        else:
            last = len(cache) - 1 if selector.end is None else selector.end
            indexes = range(selector.start, last + 1)

        for index in indexes:
            if index >= len(cache):
                raise MessageNotFoundError(
                    f"Message index {index} is out of range for {self.folder.name}",
                    details={"index": index, "count": len(cache)},
                )
            targets.setdefault(index, cache.at(index))
        return list(targets.values())

    ## Execution

    async def store(self, selector: MessageSelector, request: AnyStoreRequest) -> ConflictSet:
        await self.validate(selector, request)
        by_uid = selector.by_uid

        async with self.folder.session.exclusive():
            # the folder may have been closed while waiting for the lock
            self.folder.check_open()
            targets = self.resolve(selector)
            if not targets:
                return ConflictSet(by_uid=by_uid)

            conflicted, pending = self._preclassify(targets, request.unchanged_since)
            response = StoreResponse()
            if pending:
                command = self._build_command(request, pending, by_uid)
                response = await self.folder.session.transport.store(command)

            # nothing below awaits the server; the exchange has completed
            events = self._commit(request, pending, conflicted, response, by_uid)

            if request.unchanged_since is None:
                conflict_set = ConflictSet(by_uid=by_uid)
            else:
                conflict_set = self._conflict_set(conflicted, by_uid)

            logger.debug(
                "Store applied",
                extra={
                    "folder": self.folder.name,
                    "action": request.action.value,
                    "targets": len(targets),
                    "conflicts": len(conflict_set),
                },
            )
            await self.folder.events.publish(events)

        return conflict_set

    @staticmethod
    def _key(state: MessageState, by_uid: bool) -> Target:
        return state.uid if by_uid else state.index

    def _preclassify(
        self, targets: List[MessageState], unchanged_since: Optional[int]
    ) -> Tuple[List[MessageState], List[MessageState]]:
        """Split off targets the cache already knows changed after ``unchanged_since``."""
        if unchanged_since is None:
            return [], list(targets)

        conflicted, pending = [], []
        for state in targets:
            if state.modseq is not None and state.modseq > unchanged_since:
                conflicted.append(state)
            else:
                pending.append(state)
        return conflicted, pending

    def _build_command(self, request: AnyStoreRequest, pending: List[MessageState], by_uid: bool) -> StoreCommand:
        keys = [self._key(state, by_uid) for state in pending]
        common = dict(
            action=request.action,
            by_uid=by_uid,
            uids=tuple(keys) if by_uid else (),
            indexes=() if by_uid else tuple(keys),
            unchanged_since=request.unchanged_since,
            silent=request.silent,
        )
        if isinstance(request, StoreLabelsRequest):
            return StoreCommand(labels=request.labels, **common)

        known_keywords: FrozenSet[str] = frozenset()
        if request.action is StoreAction.SET and request.keywords is not None and request.flags is None:
            known_keywords = frozenset().union(*(state.keywords for state in pending))
        return StoreCommand(
            flags=request.flags,
            keywords=request.keywords,
            known_keywords=known_keywords,
            **common,
        )

    def _commit(
        self,
        request: AnyStoreRequest,
        pending: List[MessageState],
        conflicted: List[MessageState],
        response: StoreResponse,
        by_uid: bool,
    ) -> List[FolderEvent]:
        sync_state = self.folder.sync_state
        cache = self.folder.cache
        refused = set(response.modified) if request.unchanged_since is not None else set()
        pending_keys = {self._key(state, by_uid) for state in pending}

        echoes: Dict[Target, MessageSummary] = {}
        unrelated = []
        for notification in response.notifications:
            if isinstance(notification, MessageSummary):
                key = notification.uid if by_uid else notification.index
                if key in pending_keys and key not in refused:
                    echoes[key] = notification
                    continue
            unrelated.append(notification)

        watermark = sync_state.highest_modseq
        # other clients' changes reached the server before this store completed
        events = self.folder.apply_notifications(unrelated, announce_watermark=False)

        for state in pending:
            key = self._key(state, by_uid)
            if key in refused:
                conflicted.append(state)
                continue

            current = self._relocate(state)
            if current is None:
                logger.info(
                    "Stored message was expunged before the store completed",
                    extra={"folder": self.folder.name, "index": state.index},
                )
                continue

            updated = self._updated_state(current, request, echoes.get(key))
            cache.put(updated)

            if not request.silent:
                if isinstance(request, StoreLabelsRequest):
                    events.append(LabelsChanged(updated.index, updated.uid, updated.labels, updated.modseq))
                else:
                    events.append(
                        FlagsChanged(updated.index, updated.uid, updated.flags, updated.keywords, updated.modseq)
                    )

        if sync_state.highest_modseq > watermark:
            events.append(HighestModSeqChanged(sync_state.highest_modseq))
        return events

    def _relocate(self, state: MessageState) -> Optional[MessageState]:
        """The cached entry for a target after notifications may have shifted it."""
        cache = self.folder.cache
        if state.uid is not None:
            return cache.find(state.uid)
        return cache.at(state.index) if state.index < len(cache) else None

    def _updated_state(
        self, current: MessageState, request: AnyStoreRequest, echo: Optional[MessageSummary]
    ) -> MessageState:
        sync_state = self.folder.sync_state

        if isinstance(request, StoreLabelsRequest):
            updated = apply_labels(current, request)
            if echo is not None and echo.labels is not None:
                updated = updated.evolve(labels=echo.labels)
        else:
            updated = apply_flags(current, request)
            if echo is not None and echo.flags is not None:
                updated = updated.evolve(flags=echo.flags, keywords=echo.keywords or frozenset())

        if not sync_state.supports_modseq:
            return updated

        # the server's MODSEQ wins even when targets share it; only a missing one is synthesized
        modseq = echo.modseq if echo is not None else None
        if modseq is None:
            modseq = sync_state.next_modseq()
        sync_state.advance(modseq)
        return updated.evolve(modseq=modseq)

    @staticmethod
    def _conflict_set(conflicted: List[MessageState], by_uid: bool) -> ConflictSet:
        ordered = sorted(conflicted, key=lambda state: state.index)
        if by_uid:
            return ConflictSet(uids=tuple(state.uid for state in ordered), by_uid=True)
        return ConflictSet(indexes=tuple(state.index for state in ordered), by_uid=False)
