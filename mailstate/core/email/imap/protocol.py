"""IMAP protocol operations - the aioimaplib-backed FolderTransport."""

import asyncio
import time
from typing import Awaitable, FrozenSet, List, Optional, Sequence, Tuple

import aioimaplib

from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.requests import StoreAction
from mailstate.core.models.state import FolderAccess, ResyncHint
from mailstate.core.models.unique_id import UniqueId, format_index_set, format_uid_set
from mailstate.utils.config_manager import SyncConfig
from mailstate.utils.errors import (
    ConnectionLostError,
    FolderNotOpenError,
    IMAPError,
    NetworkTimeoutError,
    NotSupportedError,
)
from mailstate.utils.logging import async_log_call, get_logger

from .connection import IMAPConnection
from .constants import IMAPCapabilities, Timeouts
from .parser import (
    decode_lines,
    format_qresync,
    parse_copyuid,
    parse_modified,
    parse_notifications,
    parse_status,
    quote_mailbox,
    store_steps,
)
from .transport import (
    CopyResponse,
    Exists,
    FetchResponse,
    FolderStatus,
    Notification,
    SelectResponse,
    StoreCommand,
    StoreResponse,
)

logger = get_logger(__name__)


def _batches(items: Sequence, size: int) -> List[Sequence]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class IMAPProtocol:
    """Folder-level IMAP commands over a shared IMAPConnection.

    Implements ``FolderTransport``. Every untagged response that arrives with
    a command is parsed and handed back to the caller; nothing is dropped.
    """

    def __init__(self, connection: IMAPConnection, sync_config: Optional[SyncConfig] = None):
        """Initialise IMAP protocol handler.

        Args:
            connection: IMAPConnection instance for connection management
            sync_config: Batch size and timeouts; taken from the connection's config if omitted
        """
        self.connection = connection
        self.sync_config = sync_config or connection.config_manager.config.sync
        self._selected_folder: Optional[str] = None
        self._uid_validity = 0
        self._generation: Optional[int] = None

    @property
    def selected_folder(self) -> Optional[str]:
        return self._selected_folder

    async def capabilities(self) -> FrozenSet[str]:
        return await self.connection.capabilities()

    async def _execute(self, command: Awaitable, operation: str, timeout: float):
        """Await an aioimaplib call, mapping its failures onto IMAPError."""
        start = time.time()
        try:
            response = await asyncio.wait_for(command, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"IMAP {operation} timed out", details={"operation": operation, "timeout": timeout}
            ) from e
        except aioimaplib.AioImapException as e:
            raise IMAPError(
                f"IMAP error during {operation}: {str(e)}", details={"operation": operation}
            ) from e

        self.connection.check_response(response, operation)
        self.connection.get_stats().record_operation(time.time() - start)
        return decode_lines(response.lines)

    async def _selected_client(self):
        if self._selected_folder is None:
            raise FolderNotOpenError("No folder is selected")

        client = await self.connection.get_client()
        if self.connection.generation != self._generation:
            folder, self._selected_folder = self._selected_folder, None
            raise ConnectionLostError(
                "Connection was re-established; the folder must be reopened",
                details={"folder": folder},
            )
        return client

    @async_log_call
    async def enable(self, capability: str) -> None:
        client = await self.connection.get_client()
        await self._execute(client.enable(capability), f"enable {capability}", Timeouts.IMAP_ENABLE)
        logger.info("IMAP extension enabled", extra={"capability": capability})

    async def select(
        self, folder: str, read_only: bool, hint: Optional[ResyncHint] = None
    ) -> SelectResponse:
        """SELECT (or EXAMINE) a folder, optionally with QRESYNC parameters."""
        client = await self.connection.get_client()

        mailbox = quote_mailbox(folder)
        if hint is not None:
            mailbox = f"{mailbox} {format_qresync(hint)}"

        command = client.examine(mailbox) if read_only else client.select(mailbox)
        lines = await self._execute(command, f"select {folder}", Timeouts.IMAP_SELECT)

        status = parse_status(lines)
        validity = status.uid_validity or 0
        notifications = tuple(
            n for n in parse_notifications(lines, validity) if not isinstance(n, (Exists, FolderStatus))
        )
        access = FolderAccess.READ_ONLY if read_only or status.read_only else FolderAccess.READ_WRITE

        self._selected_folder = folder
        self._uid_validity = validity
        self._generation = self.connection.generation

        logger.debug(
            "Selected IMAP folder",
            extra={
                "folder": folder,
                "exists": status.exists,
                "uid_validity": validity,
                "highest_modseq": status.highest_modseq,
                "qresync": hint is not None,
            },
        )
        return SelectResponse(status=status, access=access, notifications=notifications)

    async def fetch(self, changed_since: Optional[int] = None, vanished: bool = False) -> FetchResponse:
        """UID FETCH 1:* of the state a folder session tracks."""
        client = await self._selected_client()
        capabilities = await self.capabilities()

        items = ["UID", "FLAGS"]
        if IMAPCapabilities.CONDSTORE in capabilities or IMAPCapabilities.QRESYNC in capabilities:
            items.append("MODSEQ")
        if IMAPCapabilities.GMAIL_EXT in capabilities:
            items.append("X-GM-LABELS")

        args = ["1:*", "(" + " ".join(items) + ")"]
        if changed_since is not None:
            modifiers = f"CHANGEDSINCE {changed_since}" + (" VANISHED" if vanished else "")
            args.append(f"({modifiers})")

        lines = await self._execute(client.uid("fetch", *args), "fetch", self.sync_config.command_timeout)
        notifications = parse_notifications(lines, self._uid_validity)
        logger.debug(
            "Fetched message state",
            extra={"folder": self._selected_folder, "count": len(notifications)},
        )
        return FetchResponse(tuple(notifications))

    async def store(self, command: StoreCommand) -> StoreResponse:
        """Send a store in batches, collecting MODIFIED targets and untagged data.

        Only the first step of a multi-step SET carries UNCHANGEDSINCE; later
        steps skip whatever the first one refused.
        """
        client = await self._selected_client()
        steps = store_steps(command)
        modified: List = []
        notifications: List[Notification] = []

        for batch in _batches(command.targets, self.sync_config.store_batch_size):
            pending = list(batch)
            for position, (item, value) in enumerate(steps):
                if not pending:
                    break

                args = [format_uid_set(pending) if command.by_uid else format_index_set(pending)]
                if position == 0 and command.unchanged_since is not None:
                    args.append(f"(UNCHANGEDSINCE {command.unchanged_since})")
                args.extend([item, value])

                call = client.uid("store", *args) if command.by_uid else client.store(*args)
                lines = await self._execute(call, "store", Timeouts.IMAP_STORE)

                refused = parse_modified(lines, self._uid_validity, command.by_uid)
                notifications.extend(parse_notifications(lines, self._uid_validity))
                if refused:
                    modified.extend(refused)
                    pending = [target for target in pending if target not in refused]

        logger.debug(
            "Store completed",
            extra={
                "folder": self._selected_folder,
                "action": command.action.value,
                "targets": len(command.targets),
                "modified": len(modified),
            },
        )
        return StoreResponse(modified=tuple(modified), notifications=tuple(notifications))

    def _copy_response(self, lines: List[str]) -> CopyResponse:
        notifications = tuple(parse_notifications(lines, self._uid_validity))
        copyuid = parse_copyuid(lines)
        if copyuid is None:
            return CopyResponse(notifications=notifications)

        validity, source, destination = copyuid
        return CopyResponse(
            uid_validity=validity,
            source=tuple(uid.with_validity(self._uid_validity) for uid in source),
            destination=tuple(destination),
            notifications=notifications,
        )

    async def copy(self, uids: Sequence[UniqueId], destination: str) -> CopyResponse:
        client = await self._selected_client()
        lines = await self._execute(
            client.uid("copy", format_uid_set(uids), quote_mailbox(destination)),
            f"copy to {destination}",
            Timeouts.IMAP_COPY,
        )
        return self._copy_response(lines)

    async def move(self, uids: Sequence[UniqueId], destination: str) -> CopyResponse:
        """UID MOVE, or COPY + STORE \\Deleted + UID EXPUNGE without the extension."""
        client = await self._selected_client()
        capabilities = await self.capabilities()
        uid_set = format_uid_set(uids)

        if IMAPCapabilities.MOVE in capabilities:
            lines = await self._execute(
                client.uid("move", uid_set, quote_mailbox(destination)),
                f"move to {destination}",
                Timeouts.IMAP_COPY,
            )
            return self._copy_response(lines)

        if IMAPCapabilities.UIDPLUS not in capabilities:
            raise NotSupportedError(
                "Moving messages requires the MOVE or UIDPLUS extension",
                details={"destination": destination},
            )

        copied = await self.copy(uids, destination)
        deleted = StoreCommand(
            action=StoreAction.ADD, uids=tuple(uids), flags=MessageFlags.DELETED, silent=True
        )
        stored = await self.store(deleted)
        lines = await self._execute(client.uid("expunge", uid_set), "uid expunge", Timeouts.IMAP_COPY)

        notifications = copied.notifications + stored.notifications + tuple(
            parse_notifications(lines, self._uid_validity)
        )
        return CopyResponse(
            uid_validity=copied.uid_validity,
            source=copied.source,
            destination=copied.destination,
            notifications=notifications,
        )

    async def poll(self) -> Tuple[Notification, ...]:
        """NOOP, returning whatever the server queued for the selected folder."""
        client = await self._selected_client()
        lines = await self._execute(client.noop(), "noop", Timeouts.IMAP_NOOP)
        return tuple(parse_notifications(lines, self._uid_validity))

    async def close(self) -> None:
        if self._selected_folder is None:
            return
        try:
            client = await self._selected_client()
            await self._execute(client.close(), "close", Timeouts.IMAP_NOOP)
        finally:
            logger.debug("Closed IMAP folder", extra={"folder": self._selected_folder})
            self._selected_folder = None
