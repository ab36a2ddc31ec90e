"""
Tests for quick resync and removal routing

Tests cover:
- Enabling quick resync and its preconditions
- Opening a folder from a cached snapshot
- VANISHED (EARLIER) accumulation across chunks
- MessagesVanished versus MessageExpunged per session mode
- Stale FETCH notifications
"""
import pytest

from mailstate.core.email.imap.transport import Expunged, FolderStatus, SelectResponse
from mailstate.core.events import (
    FlagsChanged,
    FolderEvent,
    HighestModSeqChanged,
    MessageExpunged,
    MessagesVanished,
)
from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.state import FolderAccess, MessageSummary, ResyncHint, VanishedSet
from mailstate.core.models.unique_id import UniqueId
from mailstate.core.sync.resync import ResyncMode, ResyncTracker
from mailstate.core.sync.session import ImapSession
from mailstate.utils.errors import (
    InvalidArgumentError,
    InvalidStateError,
    NotSupportedError,
    UidValidityMismatchError,
)

from .test_helpers import FakeFolder, FakeTransport


def collect(folder, event_type=FolderEvent):
    events = []
    folder.subscribe(event_type, events.append)
    return events


def snapshot(folder: FakeFolder, last_known_modseq: int, uids=(1, 2, 3)) -> ResyncHint:
    return ResyncHint(folder.uid_validity, last_known_modseq, tuple(folder.uid(uid) for uid in uids))


class TestEnableQuickResync:
    """Tests for switching quick resync on"""

    @pytest.mark.asyncio
    async def test_enable(self, session, transport):
        await session.enable_quick_resync()

        assert session.resync.mode is ResyncMode.ENABLED
        assert "QRESYNC" in transport.enabled

    @pytest.mark.asyncio
    async def test_enable_twice_is_noop(self, session, transport):
        await session.enable_quick_resync()
        await session.enable_quick_resync()

        assert transport.commands.count("ENABLE QRESYNC") == 1

    @pytest.mark.asyncio
    async def test_enable_after_open_rejected(self, session, transport):
        await session.open_folder("INBOX")

        with pytest.raises(InvalidStateError):
            await session.enable_quick_resync()
        assert session.resync.mode is ResyncMode.DISABLED
        assert "QRESYNC" not in transport.enabled

    @pytest.mark.asyncio
    async def test_enable_without_capability(self, inbox):
        transport = FakeTransport({"INBOX": inbox}, capabilities=("IMAP4REV1", "CONDSTORE"))
        session = ImapSession(transport)

        with pytest.raises(NotSupportedError):
            await session.enable_quick_resync()
        assert not session.resync.enabled

    @pytest.mark.asyncio
    async def test_hint_requires_quick_resync(self, session, transport, inbox):
        with pytest.raises(InvalidStateError):
            await session.open_folder("INBOX", hint=snapshot(inbox, 9))
        assert not any(command.startswith("SELECT") for command in transport.commands)
        assert session.selected_folder is None


class TestResyncOpen:
    """Tests for opening a folder from a cached snapshot"""

    @pytest.mark.asyncio
    async def test_reports_changed_and_vanished(self, session, inbox):
        await session.enable_quick_resync()
        inbox.expunge(2)
        folder = session.get_folder("INBOX")
        events = collect(folder)

        result = await folder.open(hint=snapshot(inbox, 9))

        assert [summary.uid for summary in result.changed] == [inbox.uid(3)]
        assert result.vanished.uids == (inbox.uid(2),)
        assert result.vanished.earlier
        assert folder.count == 2
        assert folder.get(UniqueId(3)).flags == MessageFlags.SEEN
        assert folder.get(UniqueId(3)).modseq == 12
        assert folder.get(UniqueId(2)) is None

        assert [type(event) for event in events] == [FlagsChanged, MessagesVanished, HighestModSeqChanged]
        assert events[-1].highest_modseq == inbox.highest_modseq

    @pytest.mark.asyncio
    async def test_unchanged_messages_have_unknown_state(self, session, inbox):
        await session.enable_quick_resync()
        folder = session.get_folder("INBOX")

        await folder.open(hint=snapshot(inbox, 9))

        first = folder.get(UniqueId(1))
        assert first.index == 0
        assert first.flags == MessageFlags.NONE
        assert first.modseq is None

    @pytest.mark.asyncio
    async def test_nothing_changed(self, session, inbox):
        await session.enable_quick_resync()
        folder = session.get_folder("INBOX")
        events = collect(folder)

        result = await folder.open(hint=snapshot(inbox, 12))

        assert result.changed == ()
        assert result.vanished.uids == ()
        assert events == []

    @pytest.mark.asyncio
    async def test_empty_folder(self, session, transport):
        transport.folders["Empty"] = FakeFolder(uid_validity=7)
        await session.enable_quick_resync()

        result = await session.open_folder("Empty", hint=ResyncHint(7, 0, ()))

        assert result.changed == ()
        assert result.vanished.uids == ()
        assert session.get_folder("Empty").count == 0

    @pytest.mark.asyncio
    async def test_uid_validity_mismatch(self, session, inbox):
        await session.enable_quick_resync()
        folder = session.get_folder("INBOX")
        events = collect(folder)

        with pytest.raises(UidValidityMismatchError) as exc_info:
            await folder.open(hint=ResyncHint(999, 9, (UniqueId(1, 999),)))

        assert exc_info.value.expected == 999
        assert exc_info.value.actual == inbox.uid_validity
        assert events == []
        assert folder.get(UniqueId(1)) is None

    @pytest.mark.asyncio
    async def test_vanished_chunks_accumulate(self, session, transport, inbox):
        await session.enable_quick_resync()
        inbox.expunge(1)
        inbox.expunge(2)
        transport.vanished_chunk_size = 1
        folder = session.get_folder("INBOX")
        vanished_events = collect(folder, MessagesVanished)

        result = await folder.open(hint=snapshot(inbox, 12))

        assert result.vanished.uids == (inbox.uid(1), inbox.uid(2))
        assert result.vanished.earlier
        assert len(vanished_events) == 1
        assert vanished_events[0].uids == (inbox.uid(1), inbox.uid(2))
        assert folder.get(UniqueId(3)).index == 0

    @pytest.mark.asyncio
    async def test_read_only_open(self, session, inbox):
        await session.enable_quick_resync()
        folder = session.get_folder("INBOX")

        await folder.open(FolderAccess.READ_ONLY, hint=snapshot(inbox, 12))

        assert folder.access is FolderAccess.READ_ONLY

    @pytest.mark.asyncio
    async def test_invalid_hint_type(self, session):
        await session.enable_quick_resync()
        with pytest.raises(InvalidArgumentError):
            await session.open_folder("INBOX", hint={"uid_validity": 1000})


class TestResyncTracker:
    """Tests for splitting a QRESYNC select response"""

    def _response(self, *notifications, uid_validity=1000):
        status = FolderStatus(exists=3, uid_validity=uid_validity, highest_modseq=20)
        return SelectResponse(status=status, access=FolderAccess.READ_WRITE, notifications=notifications)

    def test_vanished_filtered_to_known_uids(self):
        tracker = ResyncTracker()
        hint = ResyncHint(1000, 10, (UniqueId(1, 1000), UniqueId(2, 1000)))
        response = self._response(VanishedSet((UniqueId(2, 1000), UniqueId(7, 1000)), earlier=True))

        result, others = tracker.consume("INBOX", hint, response)

        assert result.vanished.uids == (UniqueId(2, 1000),)
        assert others == []

    def test_vanished_wins_over_changed(self):
        tracker = ResyncTracker()
        hint = ResyncHint(1000, 10)
        response = self._response(
            MessageSummary(index=2, uid=UniqueId(3, 1000), flags=MessageFlags.SEEN, modseq=15),
            VanishedSet((UniqueId(3, 1000),), earlier=True),
        )

        result, _ = tracker.consume("INBOX", hint, response)

        assert result.changed == ()
        assert result.vanished.uids == (UniqueId(3, 1000),)

    def test_old_modseq_not_reported(self):
        tracker = ResyncTracker()
        hint = ResyncHint(1000, 10)
        response = self._response(
            MessageSummary(index=0, uid=UniqueId(1, 1000), modseq=4),
            MessageSummary(index=1, uid=UniqueId(2, 1000), modseq=11),
        )

        result, _ = tracker.consume("INBOX", hint, response)

        assert [summary.uid.id for summary in result.changed] == [2]

    def test_other_notifications_passed_through(self):
        tracker = ResyncTracker()
        status = FolderStatus(highest_modseq=21)
        result, others = tracker.consume("INBOX", ResyncHint(1000, 10), self._response(status))

        assert others == [status]
        assert result.changed == ()

    def test_open_marks_session(self):
        tracker = ResyncTracker()
        tracker.folder_opened()
        with pytest.raises(InvalidStateError):
            tracker.check_can_enable(frozenset({"QRESYNC"}))


class TestRemovalRouting:
    """Tests for how removals are reported in each mode"""

    @pytest.mark.asyncio
    async def test_expunge_reported_by_index_when_disabled(self, open_inbox):
        expunged = collect(open_inbox, MessageExpunged)
        vanished = collect(open_inbox, MessagesVanished)

        await open_inbox.move_to([UniqueId(2)], "Archive")

        assert [event.index for event in expunged] == [1]
        assert vanished == []
        assert open_inbox.count == 2
        assert open_inbox.get(UniqueId(3)).index == 1

    @pytest.mark.asyncio
    async def test_vanished_reported_by_uid_when_enabled(self, session, inbox):
        await session.enable_quick_resync()
        folder = session.get_folder("INBOX")
        await folder.open()
        await folder.refresh()
        expunged = collect(folder, MessageExpunged)
        vanished = collect(folder, MessagesVanished)

        await folder.move_to([UniqueId(2)], "Archive")

        assert expunged == []
        assert len(vanished) == 1
        assert vanished[0].uids == (inbox.uid(2),)
        assert not vanished[0].earlier
        assert folder.count == 2

    @pytest.mark.asyncio
    async def test_expunge_notification_routed_when_enabled(self, session, transport, inbox):
        await session.enable_quick_resync()
        folder = session.get_folder("INBOX")
        await folder.open()
        await folder.refresh()
        vanished = collect(folder, MessagesVanished)

        await folder.process_notifications([Expunged(0)])

        assert vanished[0].uids == (inbox.uid(1),)
        assert folder.get(UniqueId(2)).index == 0

    @pytest.mark.asyncio
    async def test_vanished_notification_routed_when_disabled(self, open_inbox, inbox):
        expunged = collect(open_inbox, MessageExpunged)
        vanished = collect(open_inbox, MessagesVanished)

        await open_inbox.process_notifications([VanishedSet((inbox.uid(1), inbox.uid(3)))])

        assert [event.index for event in expunged] == [2, 0]
        assert vanished == []
        assert open_inbox.count == 1
        assert open_inbox.get(UniqueId(2)).index == 0


class TestStaleNotifications:
    """Tests for unsolicited FETCH responses older than the watermark"""

    @pytest.mark.asyncio
    async def test_stale_fetch_discarded(self, open_inbox, inbox):
        events = collect(open_inbox)

        await open_inbox.process_notifications(
            [MessageSummary(index=0, uid=inbox.uid(1), flags=MessageFlags.DELETED, modseq=10)]
        )

        assert open_inbox.get(UniqueId(1)).flags == MessageFlags.SEEN | MessageFlags.FLAGGED
        assert events == []

    @pytest.mark.asyncio
    async def test_fresh_fetch_applied(self, open_inbox, inbox):
        events = collect(open_inbox)

        await open_inbox.process_notifications(
            [MessageSummary(index=0, uid=inbox.uid(1), flags=MessageFlags.DELETED, modseq=13)]
        )

        assert open_inbox.get(UniqueId(1)).flags == MessageFlags.DELETED
        assert open_inbox.sync_state.highest_modseq == 13
        assert [type(event) for event in events] == [FlagsChanged, HighestModSeqChanged]

    @pytest.mark.asyncio
    async def test_poll_applies_pending_changes(self, open_inbox, transport, inbox):
        flag_events = collect(open_inbox, FlagsChanged)
        transport.pending.append(inbox.touch(2, MessageFlags.SEEN))

        await open_inbox.poll()

        assert open_inbox.get(UniqueId(2)).flags == MessageFlags.SEEN
        assert flag_events[0].uid == inbox.uid(2)
        assert "NOOP" in transport.commands
