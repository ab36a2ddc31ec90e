"""Conditional flag stores and quick resynchronization for IMAP folders."""

from .core.email.imap.connection import IMAPConnection
from .core.email.imap.protocol import IMAPProtocol
from .core.email.imap.transport import FolderTransport
from .core.events import (
    EventBus,
    FlagsChanged,
    FolderEvent,
    HighestModSeqChanged,
    LabelsChanged,
    MessageExpunged,
    MessagesVanished,
    ModSeqChanged,
    UidValidityChanged,
)
from .core.models import (
    ConflictSet,
    FolderAccess,
    MessageFlags,
    MessageSelector,
    MessageState,
    MessageSummary,
    ResyncHint,
    ResyncResult,
    StoreAction,
    StoreLabelsRequest,
    StoreRequest,
    UniqueId,
    UniqueIdMap,
    VanishedSet,
)
from .core.sync import FolderSession, ImapSession, ResyncMode
from .utils.errors import (
    FolderNotOpenError,
    InvalidArgumentError,
    InvalidStateError,
    MailStateError,
    MessageNotFoundError,
    ModSeqNotSupportedError,
    NotSupportedError,
    ReadOnlyFolderError,
    UidValidityMismatchError,
)

__version__ = "0.1.0"

__all__ = [
    'ConflictSet',
    'EventBus',
    'FlagsChanged',
    'FolderAccess',
    'FolderEvent',
    'FolderNotOpenError',
    'FolderSession',
    'FolderTransport',
    'HighestModSeqChanged',
    'IMAPConnection',
    'IMAPProtocol',
    'ImapSession',
    'InvalidArgumentError',
    'InvalidStateError',
    'LabelsChanged',
    'MailStateError',
    'MessageExpunged',
    'MessageFlags',
    'MessageNotFoundError',
    'MessageSelector',
    'MessageState',
    'MessageSummary',
    'MessagesVanished',
    'ModSeqChanged',
    'ModSeqNotSupportedError',
    'NotSupportedError',
    'ReadOnlyFolderError',
    'ResyncHint',
    'ResyncMode',
    'ResyncResult',
    'StoreAction',
    'StoreLabelsRequest',
    'StoreRequest',
    'UidValidityChanged',
    'UidValidityMismatchError',
    'UniqueId',
    'UniqueIdMap',
    'VanishedSet',
]
