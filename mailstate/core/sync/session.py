"""IMAP sessions and the folders they open."""

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Type

from mailstate.core.email.imap.connection import IMAPConnection
from mailstate.core.email.imap.constants import IMAPCapabilities
from mailstate.core.email.imap.protocol import IMAPProtocol
from mailstate.core.email.imap.transport import (
    Exists,
    Expunged,
    FolderStatus,
    FolderTransport,
    Notification,
    SelectResponse,
)
from mailstate.core.events import (
    Callback,
    EventBus,
    FlagsChanged,
    FolderEvent,
    HighestModSeqChanged,
    LabelsChanged,
    ModSeqChanged,
    MessagesVanished,
    UidValidityChanged,
)
from mailstate.core.models.id_map import UniqueIdMap, build_id_map
from mailstate.core.models.requests import AnyStoreRequest, ConflictSet, MessageSelector
from mailstate.core.models.state import (
    FolderAccess,
    FolderSyncState,
    MessageCache,
    MessageState,
    MessageSummary,
    ResyncHint,
    ResyncResult,
    VanishedSet,
)
from mailstate.core.models.unique_id import UniqueId
from mailstate.core.sync.resync import ResyncTracker
from mailstate.core.sync.store_engine import ConditionalStoreEngine
from mailstate.utils.config_manager import ConfigManager, SyncConfig
from mailstate.utils.errors import (
    FolderNotOpenError,
    InvalidArgumentError,
    ReadOnlyFolderError,
)
from mailstate.utils.logging import async_log_call, get_logger, init_logging, log_event

logger = get_logger(__name__)


class FolderSession:
    """One folder of an ImapSession: its sync state, message cache and events.

    Get one from ``ImapSession.get_folder`` and subscribe before opening it so
    that resync events are not missed. Callbacks run inside the session's
    exclusive region: schedule follow-up commands with ``asyncio.create_task``
    rather than awaiting them from the callback.
    """

    def __init__(self, session: "ImapSession", name: str):
        self.session = session
        self.name = name
        self.access = FolderAccess.NONE
        self.sync_state = FolderSyncState()
        self.cache = MessageCache()
        self.events = EventBus()
        self.last_resync: Optional[ResyncResult] = None
        self._store_engine = ConditionalStoreEngine(self)

    def __repr__(self) -> str:
        return f"FolderSession(name={self.name!r}, access={self.access.value})"

    @property
    def is_open(self) -> bool:
        return self.access is not FolderAccess.NONE and self.session.selected_folder is self

    @property
    def count(self) -> int:
        return len(self.cache)

    @property
    def messages(self) -> Tuple[MessageState, ...]:
        return tuple(self.cache)

    def get(self, uid: UniqueId) -> Optional[MessageState]:
        if uid.validity == 0:
            uid = uid.with_validity(self.sync_state.uid_validity)
        return self.cache.find(uid)

    def subscribe(self, event_type: Type[FolderEvent], callback: Callback) -> Callable[[], None]:
        return self.events.subscribe(event_type, callback)

    def check_open(self) -> None:
        if not self.is_open:
            raise FolderNotOpenError(f"Folder {self.name} is not open", details={"folder": self.name})

    ## Lifecycle

    async def open(
        self, access: FolderAccess = FolderAccess.READ_WRITE, hint: Optional[ResyncHint] = None
    ) -> Optional[ResyncResult]:
        """Select this folder, resynchronizing from ``hint`` when given.

        After a resync open, known messages the server reports as unchanged
        start with empty flags and no mod-seq. Merge them with the caller's own
        cache or call ``refresh()`` before relying on their flags, for example
        in ``FlagsChanged`` events from a store the server answers without FLAGS.

        Returns:
            The resync delta, or None for a plain open.

        Raises:
            InvalidStateError: ``hint`` given while quick resync is disabled
            UidValidityMismatchError: ``hint`` is from an older folder incarnation;
                the folder is still open, with nothing carried over
        """
        return await self.session.open_folder(self, access, hint)

    async def close(self) -> None:
        await self.session.close_folder(self)

    def _mark_closed(self) -> None:
        self.access = FolderAccess.NONE

    def _load(
        self, response: SelectResponse, hint: Optional[ResyncHint]
    ) -> Tuple[Optional[ResyncResult], List[FolderEvent]]:
        status = response.status
        self.access = response.access
        self.sync_state = FolderSyncState(
            uid_validity=status.uid_validity or 0,
            highest_modseq=0 if status.no_modseq else (status.highest_modseq or 0),
            quick_resync_enabled=self.session.resync.enabled,
            uid_next=status.uid_next,
        )
        self.cache = MessageCache()
        self.cache.resize(status.exists or 0)
        self.last_resync = None

        if hint is None:
            return None, self.apply_notifications(response.notifications)

        result, others = self.session.resync.consume(self.name, hint, response)
        self._seed(hint, result)
        self.last_resync = result

        events = self._resync_events(hint, result)
        events.extend(self.apply_notifications(others))
        return result, events

    def _seed(self, hint: ResyncHint, result: ResyncResult) -> None:
        """Rebuild the cache from the caller's snapshot plus the resync delta.

        Known-but-unchanged messages start with empty flags and no mod-seq.
        """
        validity = self.sync_state.uid_validity
        vanished = {uid.id for uid in result.vanished.uids}
        surviving = {uid.id for uid in hint.known_uids} - vanished
        surviving.update(summary.uid.id for summary in result.changed)

        ordered = sorted(surviving)
        if len(ordered) == len(self.cache):
            for index, uid_id in enumerate(ordered):
                self.cache.put(MessageState(index=index, uid=UniqueId(uid_id, validity)))
        else:
            logger.debug(
                "Cached UIDs do not cover the folder; positions left unknown",
                extra={"folder": self.name, "known": len(ordered), "exists": len(self.cache)},
            )

        for summary in result.changed:
            if summary.index >= len(self.cache):
                self.cache.resize(summary.index + 1)
            self.cache.put(self._merge(self.cache.at(summary.index), summary))

    def _resync_events(self, hint: ResyncHint, result: ResyncResult) -> List[FolderEvent]:
        events: List[FolderEvent] = []
        for summary in result.changed:
            state = self.cache.at(summary.index)
            events.extend(self._change_events(state, summary))

        if result.vanished.uids:
            events.append(MessagesVanished(result.vanished.uids, result.vanished.earlier))
        if self.sync_state.highest_modseq > hint.last_known_modseq:
            events.append(HighestModSeqChanged(self.sync_state.highest_modseq))
        return events

    ## Notifications

    def _merge(self, state: MessageState, summary: MessageSummary) -> MessageState:
        uid = state.uid
        if summary.uid is not None:
            uid = summary.uid if summary.uid.validity else summary.uid.with_validity(self.sync_state.uid_validity)
        return state.evolve(
            uid=uid,
            flags=summary.flags if summary.flags is not None else state.flags,
            keywords=summary.keywords if summary.keywords is not None else state.keywords,
            labels=summary.labels if summary.labels is not None else state.labels,
            modseq=summary.modseq if summary.modseq is not None else state.modseq,
        )

    @staticmethod
    def _change_events(state: MessageState, summary: MessageSummary) -> List[FolderEvent]:
        events: List[FolderEvent] = []
        if summary.flags is not None:
            events.append(FlagsChanged(state.index, state.uid, state.flags, state.keywords, summary.modseq))
        if summary.labels is not None:
            events.append(LabelsChanged(state.index, state.uid, state.labels, summary.modseq))
        if not events and summary.modseq is not None:
            events.append(ModSeqChanged(state.index, state.uid, summary.modseq))
        return events

    def _locate(self, summary: MessageSummary) -> MessageState:
        if summary.index < len(self.cache):
            state = self.cache.at(summary.index)
            if summary.uid is None or state.uid is None or state.uid.id == summary.uid.id:
                return state
        if summary.uid is not None:
            state = self.get(summary.uid)
            if state is not None:
                return state
        if summary.index >= len(self.cache):
            self.cache.resize(summary.index + 1)
        return self.cache.at(summary.index)

    def _apply_fetch(self, summary: MessageSummary, unsolicited: bool, report: bool) -> List[FolderEvent]:
        if (
            unsolicited
            and summary.modseq is not None
            and self.sync_state.supports_modseq
            and summary.modseq <= self.sync_state.highest_modseq
        ):
            logger.debug(
                "Discarding stale FETCH notification",
                extra={"folder": self.name, "index": summary.index, "modseq": summary.modseq},
            )
            return []

        state = self._merge(self._locate(summary), summary)
        self.cache.put(state)
        if self.sync_state.supports_modseq:
            self.sync_state.advance(summary.modseq)
        return self._change_events(state, summary) if report else []

    def _apply_status(self, status: FolderStatus) -> List[FolderEvent]:
        events: List[FolderEvent] = []
        if status.uid_validity is not None and status.uid_validity != self.sync_state.uid_validity:
            log_event(
                "uid_validity_changed",
                {"folder": self.name, "previous": self.sync_state.uid_validity, "current": status.uid_validity},
            )
            self.sync_state.uid_validity = status.uid_validity
            for state in list(self.cache):
                self.cache.put(state.evolve(uid=None))
            events.append(UidValidityChanged(status.uid_validity))
        if status.highest_modseq is not None and self.sync_state.supports_modseq:
            self.sync_state.advance(status.highest_modseq)
        return events

    def apply_notifications(
        self,
        notifications: Iterable[Notification],
        unsolicited: bool = True,
        report: bool = True,
        announce_watermark: bool = True,
    ) -> List[FolderEvent]:
        """Fold untagged responses into the cache and return the resulting events.

        Must run inside the session's exclusive region; the caller publishes.
        """
        watermark = self.sync_state.highest_modseq
        events: List[FolderEvent] = []
        tracker = self.session.resync

        for notification in notifications:
            if isinstance(notification, MessageSummary):
                events.extend(self._apply_fetch(notification, unsolicited, report))
            elif isinstance(notification, Expunged):
                events.extend(tracker.expunge_events(self.cache, notification.index))
            elif isinstance(notification, VanishedSet):
                events.extend(tracker.vanished_events(self.cache, self._normalize_vanished(notification)))
            elif isinstance(notification, Exists):
                if notification.count > len(self.cache):
                    self.cache.resize(notification.count)
            elif isinstance(notification, FolderStatus):
                events.extend(self._apply_status(notification))

        if announce_watermark and self.sync_state.highest_modseq > watermark:
            events.append(HighestModSeqChanged(self.sync_state.highest_modseq))
        return events

    def _normalize_vanished(self, vanished: VanishedSet) -> VanishedSet:
        validity = self.sync_state.uid_validity
        if all(uid.validity for uid in vanished.uids):
            return vanished
        uids = tuple(uid if uid.validity else uid.with_validity(validity) for uid in vanished.uids)
        return VanishedSet(uids, vanished.earlier)

    async def process_notifications(self, notifications: Iterable[Notification]) -> None:
        """Apply unsolicited responses delivered outside a command (IDLE and the like)."""
        async with self.session.exclusive():
            self.check_open()
            events = self.apply_notifications(list(notifications))
            await self.events.publish(events)

    async def poll(self) -> None:
        """Ask the server for pending changes (NOOP) and apply them."""
        self.check_open()
        async with self.session.exclusive():
            self.check_open()
            notifications = await self.session.transport.poll()
            await self.events.publish(self.apply_notifications(notifications))

    async def refresh(self, changed_since: Optional[int] = None) -> None:
        """Fetch uid, flags and mod-seq state from the server.

        A full listing fills the cache silently; with ``changed_since`` every
        reported change is published like a notification.
        """
        self.check_open()
        vanished = changed_since is not None and self.session.resync.enabled
        async with self.session.exclusive():
            self.check_open()
            response = await self.session.transport.fetch(changed_since, vanished)
            events = self.apply_notifications(
                response.notifications, unsolicited=False, report=changed_since is not None
            )
            await self.events.publish(events)

    ## Mutations

    async def store(self, selector: MessageSelector, request: AnyStoreRequest) -> ConflictSet:
        """Apply a flag, keyword or label store and return the conflicted targets.

        The ConflictSet is empty whenever ``request.unchanged_since`` is None.
        """
        return await self._store_engine.store(selector, request)

    async def copy_to(self, uids: Sequence[UniqueId], destination: str) -> UniqueIdMap:
        """Copy messages; the map is empty when the server does not report new uids."""
        return await self._transfer(uids, destination, move=False)

    async def move_to(self, uids: Sequence[UniqueId], destination: str) -> UniqueIdMap:
        return await self._transfer(uids, destination, move=True)

    async def _transfer(self, uids: Sequence[UniqueId], destination: str, move: bool) -> UniqueIdMap:
        if uids is None:
            raise InvalidArgumentError("uids must not be None")
        if not destination:
            raise InvalidArgumentError("A destination folder is required")
        uids = tuple(uids)
        if any(not isinstance(uid, UniqueId) or not uid.is_valid for uid in uids):
            raise InvalidArgumentError("uids must be valid UniqueIds")

        self.check_open()
        if move and self.access is not FolderAccess.READ_WRITE:
            raise ReadOnlyFolderError("Cannot move messages out of a read-only folder")
        if not uids:
            return UniqueIdMap.EMPTY

        async with self.session.exclusive():
            self.check_open()
            validity = self.sync_state.uid_validity
            uids = tuple(uid if uid.validity else uid.with_validity(validity) for uid in uids)

            transport = self.session.transport
            response = await (transport.move(uids, destination) if move else transport.copy(uids, destination))
            await self.events.publish(self.apply_notifications(response.notifications))

        logger.info(
            "Messages moved" if move else "Messages copied",
            extra={"folder": self.name, "destination": destination, "count": len(uids)},
        )
        if not response.has_uid_map:
            return UniqueIdMap.EMPTY
        return build_id_map(response.source, response.destination)


class ImapSession:
    """A connection-level session: one selected folder at a time.

    All folder exchanges run under one asyncio lock, so a store, a resync
    open and the processing of their notifications never interleave.
    """

    def __init__(
        self,
        transport: FolderTransport,
        config: Optional[SyncConfig] = None,
        connection: Optional[IMAPConnection] = None,
    ):
        self.transport = transport
        self.config = config or SyncConfig()
        self.resync = ResyncTracker()
        self._connection = connection
        self._lock = asyncio.Lock()
        self._folders: Dict[str, FolderSession] = {}
        self._selected: Optional[FolderSession] = None
        self._capabilities: Optional[FrozenSet[str]] = None

    @classmethod
    async def connect(
        cls, config_manager: Optional[ConfigManager] = None, password: Optional[str] = None
    ) -> "ImapSession":
        """Log in using the configured account and return a ready session.

        Quick resync is switched on straight away when both the configuration
        and the server allow it.
        """
        config_manager = config_manager or ConfigManager()
        logging_config = config_manager.config.logging
        init_logging(
            logging_config.log_level,
            file_logging=logging_config.file_logging,
            max_file_size=logging_config.max_file_size,
            backup_count=logging_config.backup_count,
        )
        sync_config = config_manager.config.sync
        connection = IMAPConnection(config_manager, password=password)
        session = cls(IMAPProtocol(connection, sync_config), sync_config, connection)

        if sync_config.enable_quick_resync and IMAPCapabilities.QRESYNC in await session.capabilities():
            await session.enable_quick_resync()
        return session

    @property
    def selected_folder(self) -> Optional[FolderSession]:
        return self._selected

    @asynccontextmanager
    async def exclusive(self):
        async with self._lock:
            yield

    async def capabilities(self) -> FrozenSet[str]:
        if self._capabilities is None:
            self._capabilities = frozenset(await self.transport.capabilities())
        return self._capabilities

    def get_folder(self, name: str) -> FolderSession:
        if not name:
            raise InvalidArgumentError("Folder name must not be empty")
        folder = self._folders.get(name)
        if folder is None:
            folder = self._folders[name] = FolderSession(self, name)
        return folder

    @async_log_call
    async def enable_quick_resync(self) -> None:
        """Turn on QRESYNC for the rest of the session.

        Raises:
            InvalidStateError: A folder has already been opened
            NotSupportedError: The server lacks QRESYNC
        """
        async with self._lock:
            capabilities = await self.capabilities()
            if not self.resync.check_can_enable(capabilities):
                return
            await self.transport.enable(IMAPCapabilities.QRESYNC)
            self.resync.enable()

    async def open_folder(
        self,
        folder: "FolderSession | str",
        access: FolderAccess = FolderAccess.READ_WRITE,
        hint: Optional[ResyncHint] = None,
    ) -> Optional[ResyncResult]:
        if isinstance(folder, str):
            folder = self.get_folder(folder)
        if access is FolderAccess.NONE or not isinstance(access, FolderAccess):
            raise InvalidArgumentError(f"Invalid folder access: {access!r}")
        if hint is not None and not isinstance(hint, ResyncHint):
            raise InvalidArgumentError("hint must be a ResyncHint")

        async with self._lock:
            self.resync.check_open(hint)
            self.resync.folder_opened()

            # a SELECT deselects the current folder even when it fails
            previous, self._selected = self._selected, None
            if previous is not None:
                previous._mark_closed()

            response = await self.transport.select(
                folder.name, read_only=access is FolderAccess.READ_ONLY, hint=hint
            )
            self._selected = folder
            result, events = folder._load(response, hint)

            logger.info(
                "Folder opened",
                extra={
                    "folder": folder.name,
                    "access": folder.access.value,
                    "exists": folder.count,
                    "highest_modseq": folder.sync_state.highest_modseq,
                },
            )
            await folder.events.publish(events)

        return result

    async def close_folder(self, folder: FolderSession) -> None:
        async with self._lock:
            if self._selected is not folder:
                folder._mark_closed()
                return
            try:
                await self.transport.close()
            finally:
                self._selected = None
                folder._mark_closed()
                logger.info("Folder closed", extra={"folder": folder.name})

    async def logout(self) -> None:
        """Close the selected folder and the underlying connection."""
        if self._selected is not None:
            await self.close_folder(self._selected)
        if self._connection is not None:
            await self._connection.close_connection()
