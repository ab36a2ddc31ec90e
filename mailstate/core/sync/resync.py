"""Quick-resync bookkeeping and removal notification routing."""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from mailstate.core.email.imap.constants import IMAPCapabilities
from mailstate.core.email.imap.transport import Notification, SelectResponse
from mailstate.core.events import FolderEvent, MessageExpunged, MessagesVanished
from mailstate.core.models.state import MessageCache, MessageSummary, ResyncHint, ResyncResult, VanishedSet
from mailstate.core.models.unique_id import UniqueId
from mailstate.utils.errors import InvalidStateError, NotSupportedError, UidValidityMismatchError
from mailstate.utils.logging import get_logger, log_event

logger = get_logger(__name__)


class ResyncMode(Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"


class ResyncTracker:
    """Session-wide quick-resync switch.

    The mode decides how removals are reported: MessagesVanished (uids) while
    enabled, MessageExpunged (indexes) while disabled. A session never sees
    both styles for the same removal.
    """

    def __init__(self):
        self.mode = ResyncMode.DISABLED
        self._folder_opened = False

    @property
    def enabled(self) -> bool:
        return self.mode is ResyncMode.ENABLED

    def check_can_enable(self, capabilities: FrozenSet[str]) -> bool:
        """Validate an enable request; False means it is already enabled."""
        if self.enabled:
            return False
        if self._folder_opened:
            raise InvalidStateError(
                "Quick resync must be enabled before any folder is opened"
            )
        if IMAPCapabilities.QRESYNC not in capabilities:
            raise NotSupportedError(
                "The server does not support QRESYNC",
                details={"capability": IMAPCapabilities.QRESYNC},
            )
        return True

    def enable(self) -> None:
        self.mode = ResyncMode.ENABLED
        log_event("quick_resync_enabled", "Quick resync enabled")

    def check_open(self, hint: Optional[ResyncHint]) -> None:
        if hint is not None and not self.enabled:
            raise InvalidStateError("Opening with resync data requires quick resync to be enabled")

    def folder_opened(self) -> None:
        self._folder_opened = True

    def consume(
        self, folder: str, hint: ResyncHint, response: SelectResponse
    ) -> Tuple[ResyncResult, List[Notification]]:
        """Split a QRESYNC select into the resync delta and everything else.

        VANISHED (EARLIER) chunks accumulate until the tagged completion;
        the returned result is the whole pass.

        Raises:
            UidValidityMismatchError: The snapshot belongs to an older
                incarnation of the folder. Nothing is reported in that case.
        """
        actual = response.status.uid_validity
        if actual != hint.uid_validity:
            logger.warning(
                "UIDVALIDITY changed since the cached snapshot",
                extra={"folder": folder, "expected": hint.uid_validity, "actual": actual},
            )
            raise UidValidityMismatchError(hint.uid_validity, actual or 0, folder)

        known = {uid.id for uid in hint.known_uids}
        vanished: Dict[int, UniqueId] = {}
        earlier = False
        changed: Dict[int, MessageSummary] = {}
        others: List[Notification] = []

        for notification in response.notifications:
            if isinstance(notification, VanishedSet):
                earlier = earlier or notification.earlier
                for uid in notification.uids:
                    if not known or uid.id in known:
                        vanished.setdefault(uid.id, uid.with_validity(hint.uid_validity))
            elif isinstance(notification, MessageSummary) and notification.uid is not None:
                if notification.modseq is None or notification.modseq > hint.last_known_modseq:
                    changed[notification.uid.id] = notification
            else:
                others.append(notification)

        for uid_id in vanished:
            changed.pop(uid_id, None)

        result = ResyncResult(
            changed=tuple(sorted(changed.values(), key=lambda s: s.index)),
            vanished=VanishedSet(tuple(sorted(vanished.values())), earlier),
        )
        logger.info(
            "Quick resync completed",
            extra={
                "folder": folder,
                "changed": len(result.changed),
                "vanished": len(result.vanished.uids),
            },
        )
        return result, others

    ## Removal routing

    def expunge_events(self, cache: MessageCache, index: int) -> List[FolderEvent]:
        """Apply an EXPUNGE to the cache and report it in the session's style."""
        if index >= len(cache):
            logger.warning("EXPUNGE for unknown message index", extra={"index": index})
            return []

        removed = cache.remove_at(index)
        if not self.enabled:
            return [MessageExpunged(index)]
        if removed.uid is None:
            logger.warning("EXPUNGE for a message with no known UID", extra={"index": index})
            return []
        return [MessagesVanished((removed.uid,), earlier=False)]

    def vanished_events(self, cache: MessageCache, vanished: VanishedSet) -> List[FolderEvent]:
        """Apply a VANISHED set to the cache and report it in the session's style."""
        positions = self._positions(cache, vanished.uids)

        if self.enabled:
            for index in sorted(positions, reverse=True):
                cache.remove_at(index)
            return [MessagesVanished(tuple(vanished.uids), vanished.earlier)] if vanished.uids else []

        events: List[FolderEvent] = []
        for index in sorted(positions, reverse=True):
            cache.remove_at(index)
            events.append(MessageExpunged(index))
        return events

    @staticmethod
    def _positions(cache: MessageCache, uids: Sequence[UniqueId]) -> List[int]:
        positions = []
        for uid in uids:
            state = cache.find(uid)
            if state is not None:
                positions.append(state.index)
        return positions
