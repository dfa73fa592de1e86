# listbook/Widgets/sync_status.py
#
# Imports
from typing import Callable, List, Optional, Tuple
#
# 3rd-party Libraries
from loguru import logger
from textual.message import Message
from textual.widgets import Button
#
# Local Imports
from ..Sync.Sync_Client import ListSyncEngine, SyncState
#
########################################################################################################################
#
# SyncStatusButton

def describe_sync_state(state: SyncState) -> Tuple[str, str, str]:
    """Returns (label, tooltip, css_class) for a sync state snapshot."""
    if state.auth_error:
        return "⚠ Sync", "Sync failed: session expired. Press to retry.", "-error"
    if state.is_syncing:
        return "⟳ Syncing", "Syncing...", "-syncing"
    if state.has_pending_changes:
        return "☁ Sync", "Unsynced changes. Press to sync now.", "-dirty"
    if state.last_synced_at is not None:
        local_time = state.last_synced_at.astimezone().strftime("%H:%M:%S")
        return "☁ Synced", f"Last synced: {local_time}", "-synced"
    return "☁ Sync", "Press to sync", "-idle"


def should_display(state: SyncState) -> bool:
    # Hidden when signed out, but shown on auth error so the user can retry
    return not (state.is_authenticated is False and not state.auth_error)


class SyncStatusButton(Button):
    """Shows the sync state and forces a sync when pressed."""

    STATE_CLASSES = ("-error", "-syncing", "-dirty", "-synced", "-idle")

    class SyncCompleted(Message):
        """Posted after a forced sync succeeds, carrying the visible merged records."""
        def __init__(self, records: List[dict]) -> None:
            super().__init__()
            self.records = records

    def __init__(self, engine: ListSyncEngine, **kwargs) -> None:
        super().__init__("☁ Sync", **kwargs)
        self.engine = engine
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def on_mount(self) -> None:
        self._unsubscribe = self.engine.subscribe(self._apply_state)
        await self.engine.check_auth()
        self._apply_state(self.engine.get_state())

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _apply_state(self, state: SyncState) -> None:
        label, tooltip, css_class = describe_sync_state(state)
        self.label = label
        self.tooltip = tooltip
        self.disabled = state.is_syncing
        self.display = should_display(state)
        self.remove_class(*self.STATE_CLASSES)
        self.add_class(css_class)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        if self.engine.get_state().is_syncing:
            return
        self.run_worker(self._force_sync(), exclusive=True, group="sync")

    async def _force_sync(self) -> None:
        records = await self.engine.force_sync()
        if records is None:
            logger.debug("Forced sync returned no records.")
            return
        self.post_message(self.SyncCompleted(records))

#
# End of sync_status.py
########################################################################################################################
