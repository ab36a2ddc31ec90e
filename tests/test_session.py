"""
Tests for ImapSession and FolderSession lifecycle, copy/move and notifications
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aioimaplib
import pytest

from mailstate.core.email.imap.transport import Exists, FolderStatus
from mailstate.core.events import FlagsChanged, HighestModSeqChanged, UidValidityChanged
from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.id_map import UniqueIdMap
from mailstate.core.models.requests import MessageSelector, StoreAction, StoreRequest
from mailstate.core.models.state import FolderAccess
from mailstate.core.models.unique_id import UniqueId
from mailstate.core.sync.session import ImapSession
from mailstate.utils.errors import FolderNotOpenError, InvalidArgumentError, ReadOnlyFolderError

from .test_helpers import FakeFolder, FakeTransport


def collect(folder, event_type):
    events = []
    folder.subscribe(event_type, events.append)
    return events


class TestFolderLifecycle:
    """Tests for opening, switching and closing folders"""

    @pytest.mark.asyncio
    async def test_open_sets_state(self, session, inbox):
        folder = session.get_folder("INBOX")
        result = await folder.open()

        assert result is None
        assert folder.is_open
        assert folder.access is FolderAccess.READ_WRITE
        assert folder.count == 3
        assert folder.sync_state.uid_validity == inbox.uid_validity
        assert folder.sync_state.highest_modseq == 12

    @pytest.mark.asyncio
    async def test_get_folder_returns_same_session(self, session):
        assert session.get_folder("INBOX") is session.get_folder("INBOX")

    def test_empty_folder_name(self, session):
        with pytest.raises(InvalidArgumentError):
            session.get_folder("")

    @pytest.mark.asyncio
    async def test_open_none_access_rejected(self, session):
        with pytest.raises(InvalidArgumentError):
            await session.open_folder("INBOX", FolderAccess.NONE)

    @pytest.mark.asyncio
    async def test_opening_another_folder_closes_the_first(self, open_inbox, session):
        archive = session.get_folder("Archive")
        await archive.open()

        assert archive.is_open
        assert not open_inbox.is_open
        with pytest.raises(FolderNotOpenError):
            await open_inbox.store(
                MessageSelector.by_uids([UniqueId(1)]), StoreRequest(StoreAction.ADD, MessageFlags.SEEN)
            )

    @pytest.mark.asyncio
    async def test_close(self, open_inbox, session, transport):
        await open_inbox.close()

        assert "CLOSE" in transport.commands
        assert not open_inbox.is_open
        assert session.selected_folder is None

    @pytest.mark.asyncio
    async def test_close_twice(self, open_inbox, transport):
        await open_inbox.close()
        await open_inbox.close()

        assert transport.commands.count("CLOSE") == 1

    @pytest.mark.asyncio
    async def test_logout_closes_selected_folder(self, open_inbox, session):
        await session.logout()
        assert not open_inbox.is_open

    @pytest.mark.asyncio
    async def test_folder_without_modseq(self, transport, session):
        transport.folders["Legacy"] = FakeFolder(uid_validity=3, modseq_support=False)
        folder = await _open(session, "Legacy")

        assert not folder.sync_state.supports_modseq


async def _open(session, name):
    folder = session.get_folder(name)
    await folder.open()
    return folder


class TestRefresh:
    """Tests for fetching message state"""

    @pytest.mark.asyncio
    async def test_full_listing_is_silent(self, session, inbox):
        folder = await _open(session, "INBOX")
        events = collect(folder, FlagsChanged)

        await folder.refresh()

        assert events == []
        assert folder.get(UniqueId(1)).flags == MessageFlags.SEEN | MessageFlags.FLAGGED
        assert folder.get(UniqueId(2)).keywords == {"$Work"}
        assert folder.get(UniqueId(3)).modseq == 12

    @pytest.mark.asyncio
    async def test_changed_since_reports_changes(self, open_inbox, transport, inbox):
        events = collect(open_inbox, FlagsChanged)

        await open_inbox.refresh(changed_since=9)

        assert [event.uid for event in events] == [inbox.uid(3)]
        assert transport.commands[-1] == "FETCH CHANGEDSINCE 9"


class TestNotifications:
    """Tests for unsolicited responses"""

    @pytest.mark.asyncio
    async def test_exists_grows_cache(self, open_inbox):
        await open_inbox.process_notifications([Exists(5)])
        assert open_inbox.count == 5

    @pytest.mark.asyncio
    async def test_uid_validity_change(self, open_inbox):
        events = collect(open_inbox, UidValidityChanged)

        await open_inbox.process_notifications([FolderStatus(uid_validity=5555)])

        assert events == [UidValidityChanged(5555)]
        assert open_inbox.sync_state.uid_validity == 5555
        assert all(state.uid is None for state in open_inbox.messages)

    @pytest.mark.asyncio
    async def test_highest_modseq_code(self, open_inbox):
        events = collect(open_inbox, HighestModSeqChanged)

        await open_inbox.process_notifications([FolderStatus(highest_modseq=40)])

        assert events == [HighestModSeqChanged(40)]

    @pytest.mark.asyncio
    async def test_closed_folder_rejects_notifications(self, open_inbox):
        await open_inbox.close()
        with pytest.raises(FolderNotOpenError):
            await open_inbox.process_notifications([Exists(5)])


class TestCopyMove:
    """Tests for copy_to / move_to and the UniqueIdMap they return"""

    @pytest.mark.asyncio
    async def test_copy_returns_uid_map(self, open_inbox, inbox):
        id_map = await open_inbox.copy_to([UniqueId(1), UniqueId(3)], "Archive")

        assert id_map.lookup(inbox.uid(1)) == UniqueId(1, 2000)
        assert id_map.lookup(inbox.uid(3)) == UniqueId(2, 2000)
        assert id_map.lookup(inbox.uid(2)) is None
        assert open_inbox.count == 3

    @pytest.mark.asyncio
    async def test_move_returns_uid_map_and_removes(self, open_inbox, inbox, transport):
        id_map = await open_inbox.move_to([UniqueId(2)], "Archive")

        assert id_map[inbox.uid(2)] == UniqueId(1, 2000)
        assert open_inbox.count == 2
        assert open_inbox.get(UniqueId(2)) is None
        assert len(transport.folders["Archive"].messages) == 1

    @pytest.mark.asyncio
    async def test_no_uidplus_gives_empty_map(self, inbox):
        transport = FakeTransport(
            {"INBOX": inbox, "Archive": FakeFolder(uid_validity=2000)},
            capabilities=("IMAP4REV1", "CONDSTORE", "MOVE"),
        )
        session = ImapSession(transport)
        folder = await _open(session, "INBOX")

        id_map = await folder.copy_to([UniqueId(1)], "Archive")

        assert id_map is UniqueIdMap.EMPTY
        assert len(transport.folders["Archive"].messages) == 1

    @pytest.mark.asyncio
    async def test_empty_uid_list_sends_nothing(self, open_inbox, transport):
        before = list(transport.commands)

        assert await open_inbox.copy_to([], "Archive") is UniqueIdMap.EMPTY
        assert transport.commands == before

    @pytest.mark.asyncio
    async def test_destination_required(self, open_inbox):
        with pytest.raises(InvalidArgumentError):
            await open_inbox.copy_to([UniqueId(1)], "")

    @pytest.mark.asyncio
    async def test_invalid_uid_rejected(self, open_inbox):
        with pytest.raises(InvalidArgumentError):
            await open_inbox.copy_to([UniqueId.INVALID], "Archive")

    @pytest.mark.asyncio
    async def test_move_from_read_only_folder(self, session):
        folder = session.get_folder("INBOX")
        await folder.open(FolderAccess.READ_ONLY)

        with pytest.raises(ReadOnlyFolderError):
            await folder.move_to([UniqueId(1)], "Archive")

    @pytest.mark.asyncio
    async def test_copy_requires_open_folder(self, session):
        with pytest.raises(FolderNotOpenError):
            await session.get_folder("INBOX").copy_to([UniqueId(1)], "Archive")


class TestConnect:
    """Tests for building a session from configuration"""

    @pytest.mark.asyncio
    async def test_connect_enables_quick_resync(self, config_manager, monkeypatch):
        monkeypatch.setattr("mailstate.utils.logging._log_manager", None)
        config_manager.set_config("logging.file_logging", False, persist=False)
        config_manager.set_config("account.imap_server", "imap.example.com", persist=False)
        config_manager.set_config("account.username", "user@example.com", persist=False)

        client = MagicMock()
        client.protocol.capabilities = {"IMAP4rev1", "CONDSTORE", "QRESYNC"}
        client.wait_hello_from_server = AsyncMock()
        client.login = AsyncMock(return_value=SimpleNamespace(result="OK", lines=[b"LOGIN completed"]))
        client.enable = AsyncMock(return_value=SimpleNamespace(result="OK", lines=[b"ENABLED QRESYNC"]))
        monkeypatch.setattr(aioimaplib, "IMAP4_SSL", lambda **kwargs: client)

        session = await ImapSession.connect(config_manager, password="secret")

        assert session.resync.enabled
        client.enable.assert_awaited_once_with("QRESYNC")

    @pytest.mark.asyncio
    async def test_connect_respects_config(self, config_manager, monkeypatch):
        monkeypatch.setattr("mailstate.utils.logging._log_manager", None)
        config_manager.set_config("logging.file_logging", False, persist=False)
        config_manager.set_config("sync.enable_quick_resync", False, persist=False)

        session = await ImapSession.connect(config_manager, password="secret")

        # nothing has touched the network yet
        assert not session.resync.enabled
        assert session._connection is not None
        assert not session._connection.is_connected
