from .flags import SETTABLE_FLAGS, MessageFlags
from .id_map import UniqueIdMap, build_id_map
from .requests import (
    ConflictSet,
    MessageSelector,
    StoreAction,
    StoreLabelsRequest,
    StoreRequest,
)
from .state import (
    FolderAccess,
    FolderSyncState,
    MessageState,
    MessageSummary,
    ResyncHint,
    ResyncResult,
    VanishedSet,
)
from .unique_id import UniqueId, format_uid_set, parse_uid_set

__all__ = [
    'ConflictSet',
    'FolderAccess',
    'FolderSyncState',
    'MessageFlags',
    'MessageSelector',
    'MessageState',
    'MessageSummary',
    'ResyncHint',
    'ResyncResult',
    'SETTABLE_FLAGS',
    'StoreAction',
    'StoreLabelsRequest',
    'StoreRequest',
    'UniqueId',
    'UniqueIdMap',
    'VanishedSet',
    'build_id_map',
    'format_uid_set',
    'parse_uid_set',
]
