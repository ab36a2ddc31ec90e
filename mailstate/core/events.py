"""Folder events and the ordered channel that delivers them."""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Type

from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.unique_id import UniqueId
from mailstate.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FolderEvent:
    """Base class for everything a folder publishes."""

    @property
    def modseq(self) -> Optional[int]:
        return None


@dataclass(frozen=True)
class FlagsChanged(FolderEvent):
    index: int
    uid: Optional[UniqueId]
    flags: MessageFlags
    keywords: FrozenSet[str] = frozenset()
    new_modseq: Optional[int] = None

    @property
    def modseq(self) -> Optional[int]:
        return self.new_modseq


@dataclass(frozen=True)
class LabelsChanged(FolderEvent):
    index: int
    uid: Optional[UniqueId]
    labels: FrozenSet[str]
    new_modseq: Optional[int] = None

    @property
    def modseq(self) -> Optional[int]:
        return self.new_modseq


@dataclass(frozen=True)
class ModSeqChanged(FolderEvent):
    """A message's mod-sequence moved without a flag change we could see."""

    index: int
    uid: Optional[UniqueId]
    new_modseq: int

    @property
    def modseq(self) -> Optional[int]:
        return self.new_modseq


@dataclass(frozen=True)
class MessagesVanished(FolderEvent):
    uids: Tuple[UniqueId, ...]
    earlier: bool


@dataclass(frozen=True)
class MessageExpunged(FolderEvent):
    index: int


@dataclass(frozen=True)
class HighestModSeqChanged(FolderEvent):
    highest_modseq: int


@dataclass(frozen=True)
class UidValidityChanged(FolderEvent):
    uid_validity: int


Callback = Callable[[FolderEvent], object]


def order_by_modseq(events: Iterable[FolderEvent]) -> List[FolderEvent]:
    """Stable sort placing mod-seq bearing events in mod-seq order.

    Events without a mod-seq keep their position relative to the event
    before them, so a HighestModSeqChanged emitted after a batch stays last.
    """
    keyed = []
    last = 0
    for position, event in enumerate(events):
        if event.modseq is not None:
            last = event.modseq
        keyed.append(((last, position), event))
    keyed.sort(key=lambda item: item[0])
    return [event for _, event in keyed]


class EventBus:
    """Callback registry that delivers batches strictly in order.

    Delivery of one batch finishes before the next starts, and within a batch
    events arrive in mod-seq order. Callbacks may be plain functions or
    coroutine functions. A callback that raises is logged and skipped.
    """

    def __init__(self):
        self._subscribers: Dict[Type[FolderEvent], List[Callback]] = {}
        self._delivery_lock = asyncio.Lock()

    def subscribe(self, event_type: Type[FolderEvent], callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for ``event_type`` (and its subclasses).

        Returns a function that removes the subscription.
        """
        self._subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def has_subscribers(self, event_type: Type[FolderEvent]) -> bool:
        return any(
            callbacks and issubclass(event_type, registered)
            for registered, callbacks in self._subscribers.items()
        )

    def _callbacks_for(self, event: FolderEvent) -> List[Callback]:
        callbacks: List[Callback] = []
        for registered, registered_callbacks in self._subscribers.items():
            if isinstance(event, registered):
                callbacks.extend(registered_callbacks)
        return callbacks

    async def publish(self, events: Iterable[FolderEvent]) -> None:
        """Deliver a batch of events produced by one exclusive exchange."""
        batch = order_by_modseq(events)
        if not batch:
            return

        async with self._delivery_lock:
            for event in batch:
                for callback in self._callbacks_for(event):
                    # Subscriber errors never abort the rest of the batch
                    try:
                        result = callback(event)
                        if inspect.isawaitable(result):
                            await result
                    except Exception:
                        logger.exception(
                            "Event subscriber failed",
                            extra={"event": type(event).__name__},
                        )
                logger.debug(
                    "Event delivered",
                    extra={"event": type(event).__name__, "modseq": event.modseq},
                )
