from .resync import ResyncMode, ResyncTracker
from .session import FolderSession, ImapSession
from .store_engine import ConditionalStoreEngine

__all__ = ['ConditionalStoreEngine', 'FolderSession', 'ImapSession', 'ResyncMode', 'ResyncTracker']
