from .Host_Bridge import CallbackHostBridge, HostBridge
from .Sync_Client import ListSyncEngine, SyncState, SyncStatus
from .Sync_Merge import add_timestamps, filter_deleted_lists, merge_lists

__all__ = [
    "ListSyncEngine", "SyncState", "SyncStatus",
    "HostBridge", "CallbackHostBridge",
    "merge_lists", "filter_deleted_lists", "add_timestamps",
]
