"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Keep config and logs out of the real home directory; must precede mailstate imports
os.environ.setdefault("MAILSTATE_HOME", tempfile.mkdtemp(prefix="mailstate-tests-"))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from mailstate.core.models.flags import MessageFlags  # noqa: E402
from mailstate.core.sync.session import ImapSession  # noqa: E402
from mailstate.utils.config_manager import ConfigManager, SyncConfig  # noqa: E402

from .test_helpers import FakeFolder, FakeTransport  # noqa: E402


@pytest.fixture
def config_manager(tmp_path):
    """A fresh ConfigManager singleton backed by a temporary file"""
    ConfigManager._instance = None
    ConfigManager._initialized = False
    manager = ConfigManager(config_path=tmp_path / "config.json")
    yield manager
    ConfigManager._instance = None
    ConfigManager._initialized = False


@pytest.fixture
def inbox():
    """INBOX with three messages at mod-seqs 5, 9 and 12"""
    folder = FakeFolder(uid_validity=1000)
    folder.add(1, MessageFlags.SEEN | MessageFlags.FLAGGED, modseq=5)
    folder.add(2, MessageFlags.NONE, keywords={"$Work"}, modseq=9)
    folder.add(3, MessageFlags.SEEN, modseq=12)
    return folder


@pytest.fixture
def transport(inbox):
    """Fake server exposing INBOX and an empty Archive"""
    return FakeTransport({"INBOX": inbox, "Archive": FakeFolder(uid_validity=2000)})


@pytest.fixture
def session(transport):
    return ImapSession(transport, SyncConfig())


@pytest_asyncio.fixture
async def open_inbox(session):
    """INBOX opened read-write with its cache filled by a full listing"""
    folder = session.get_folder("INBOX")
    await folder.open()
    await folder.refresh()
    return folder
