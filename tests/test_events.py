"""
Tests for folder events and the EventBus
"""
import pytest

from mailstate.core.events import (
    EventBus,
    FlagsChanged,
    FolderEvent,
    HighestModSeqChanged,
    MessageExpunged,
    MessagesVanished,
    ModSeqChanged,
    order_by_modseq,
)
from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.unique_id import UniqueId


def flags_changed(index, modseq):
    return FlagsChanged(index, UniqueId(index + 1, 10), MessageFlags.SEEN, frozenset(), modseq)


class TestOrderByModSeq:
    """Tests for delivery ordering within one batch"""

    def test_sorted_by_modseq(self):
        events = [flags_changed(0, 30), flags_changed(1, 10), flags_changed(2, 20)]
        assert [event.modseq for event in order_by_modseq(events)] == [10, 20, 30]

    def test_stable_for_equal_modseq(self):
        first = flags_changed(0, 10)
        second = ModSeqChanged(1, UniqueId(2, 10), 10)
        assert order_by_modseq([first, second]) == [first, second]

    def test_watermark_stays_after_its_batch(self):
        batch = [flags_changed(0, 15), flags_changed(1, 14), HighestModSeqChanged(15)]
        ordered = order_by_modseq(batch)
        assert isinstance(ordered[-1], HighestModSeqChanged)
        assert [event.modseq for event in ordered[:2]] == [14, 15]

    def test_events_without_modseq_keep_order(self):
        batch = [MessageExpunged(2), MessageExpunged(1)]
        assert order_by_modseq(batch) == batch


class TestEventBus:
    """Tests for subscription and delivery"""

    @pytest.mark.asyncio
    async def test_subscriber_receives_matching_events(self):
        bus = EventBus()
        received = []
        bus.subscribe(FlagsChanged, received.append)

        await bus.publish([flags_changed(0, 5), MessageExpunged(0)])

        assert len(received) == 1
        assert isinstance(received[0], FlagsChanged)

    @pytest.mark.asyncio
    async def test_base_class_subscription_sees_everything(self):
        bus = EventBus()
        received = []
        bus.subscribe(FolderEvent, received.append)

        await bus.publish([MessageExpunged(0), MessagesVanished((UniqueId(3, 10),), earlier=False)])

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(FolderEvent, received.append)
        unsubscribe()
        unsubscribe()

        await bus.publish([MessageExpunged(0)])

        assert received == []
        assert not bus.has_subscribers(MessageExpunged)

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self):
        bus = EventBus()
        received = []

        async def on_event(event):
            received.append(event)

        bus.subscribe(HighestModSeqChanged, on_event)
        await bus.publish([HighestModSeqChanged(42)])

        assert received == [HighestModSeqChanged(42)]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(FolderEvent, broken)
        bus.subscribe(FolderEvent, received.append)

        await bus.publish([flags_changed(0, 5), flags_changed(1, 6)])

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_empty_batch_delivers_nothing(self):
        bus = EventBus()
        received = []
        bus.subscribe(FolderEvent, received.append)

        await bus.publish([])

        assert received == []

    def test_has_subscribers(self):
        bus = EventBus()
        bus.subscribe(FolderEvent, lambda event: None)
        assert bus.has_subscribers(FlagsChanged)
