# Sync_Client.py
# Description: Background sync engine for the record collection.
#
# The engine keeps the local collection converging with the remote copy:
#   - local mutations are pushed after a debounce window (full collection, one POST)
#   - a periodic timer retries while changes are undelivered
#   - pulls merge the remote snapshot into the local one, last write wins per record
#   - bearer-token 401s are refreshed once through the host bridge, then retried
#   - subscribers receive a `SyncState` snapshot on every change
#
# All methods must be called from the event loop the engine's timers run on.
#
# Imports
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from listbook.config import get_sync_settings
from listbook.Constants import (
    MIN_SYNC_BUSY_SECONDS,
    SOFT_DELETE_RETENTION_DAYS,
    SYNC_DEBOUNCE_SECONDS,
    SYNC_RETRY_INTERVAL_SECONDS,
    TOKEN_REFRESH_TIMEOUT_SECONDS,
)
from listbook.DB.List_Store import ListStore
from listbook.DB.Local_Storage_DB import StorageError
from listbook.Sync.Host_Bridge import HostBridge
from listbook.Sync.Sync_Merge import filter_deleted_lists, merge_lists, partition_expired_tombstones
from listbook.sync_api.client import ListSyncAPIClient
from listbook.sync_api.exceptions import AuthenticationError, SyncAPIError
#
########################################################################################################################
#
# Classes:

Record = Dict[str, Any]
T = TypeVar("T")


class SyncStatus(str, Enum):
    IDLE = "idle"
    DEBOUNCE_PENDING = "debounce_pending"
    SYNCING = "syncing"
    AUTH_ERROR = "auth_error"


@dataclass(frozen=True)
class SyncState:
    """Snapshot handed to subscribers."""
    status: SyncStatus
    is_syncing: bool
    last_synced_at: Optional[datetime]
    is_authenticated: Optional[bool]
    has_pending_changes: bool
    auth_error: bool


StateListener = Callable[[SyncState], None]


class ListSyncEngine:
    """
    Debounced push, pull-and-merge and retry for one record collection.

    Args:
        store: Local persistence for the collection.
        api_client: Transport for the sync endpoint.
        host_bridge: Host hooks for bearer tokens and refresh; defaults to a no-op bridge (session mode).
        debounce_seconds: Quiet period after the last `push` before sending.
        retry_interval_seconds: Period of the retry timer while changes are pending.
        min_busy_seconds: Minimum time `SYNCING` stays visible per send.
        token_refresh_timeout_seconds: How long to wait for the host to answer a refresh request.
        tombstone_retention: Age after which tombstones are garbage collected locally.
    """

    def __init__(self,
                 store: ListStore,
                 api_client: ListSyncAPIClient,
                 host_bridge: Optional[HostBridge] = None,
                 *,
                 debounce_seconds: float = SYNC_DEBOUNCE_SECONDS,
                 retry_interval_seconds: float = SYNC_RETRY_INTERVAL_SECONDS,
                 min_busy_seconds: float = MIN_SYNC_BUSY_SECONDS,
                 token_refresh_timeout_seconds: float = TOKEN_REFRESH_TIMEOUT_SECONDS,
                 tombstone_retention: timedelta = timedelta(days=SOFT_DELETE_RETENTION_DAYS)):
        self.store = store
        self.api_client = api_client
        self.host_bridge = host_bridge or HostBridge()
        self.debounce_seconds = debounce_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self.min_busy_seconds = min_busy_seconds
        self.token_refresh_timeout_seconds = token_refresh_timeout_seconds
        self.tombstone_retention = tombstone_retention

        # None = unknown (not probed yet)
        self._is_authenticated: Optional[bool] = None
        self._is_syncing = False
        self._pulls_in_flight = 0
        self._last_synced_at: Optional[datetime] = None
        self._has_pending_changes = False
        self._auth_error = False
        # Single slot: a newer queued payload replaces an older one
        self._queued_payload: Optional[List[Record]] = None

        self._debounce_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_result: Optional[asyncio.Future] = None

        self._listeners: List[StateListener] = []
        self._last_notified_status: Optional[SyncStatus] = None

    @classmethod
    def from_settings(cls,
                      settings: Optional[Dict[str, Any]],
                      store: ListStore,
                      host_bridge: Optional[HostBridge] = None,
                      *,
                      transport=None) -> "ListSyncEngine":
        """Builds an engine and its HTTP client from the `[sync]` config section."""
        settings = settings if settings is not None else get_sync_settings()
        client = ListSyncAPIClient(
            session_base_url=settings.get("session_base_url", ""),
            api_base_url=settings.get("api_base_url", ""),
            timeout=settings.get("request_timeout_seconds", 30.0),
            transport=transport,
        )
        return cls(
            store,
            client,
            host_bridge,
            debounce_seconds=settings.get("debounce_seconds", SYNC_DEBOUNCE_SECONDS),
            retry_interval_seconds=settings.get("retry_interval_seconds", SYNC_RETRY_INTERVAL_SECONDS),
            min_busy_seconds=settings.get("min_busy_seconds", MIN_SYNC_BUSY_SECONDS),
            token_refresh_timeout_seconds=settings.get("token_refresh_timeout_seconds", TOKEN_REFRESH_TIMEOUT_SECONDS),
            tombstone_retention=timedelta(days=settings.get("tombstone_retention_days", SOFT_DELETE_RETENTION_DAYS)),
        )

    # --- Observer channel ---

    def get_state(self) -> SyncState:
        return SyncState(
            status=self._status(),
            is_syncing=self._is_syncing or self._pulls_in_flight > 0,
            last_synced_at=self._last_synced_at,
            is_authenticated=self._is_authenticated,
            has_pending_changes=self._has_pending_changes,
            auth_error=self._auth_error,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Registers `listener`, calls it once with the current state, and returns an unsubscribe function."""
        self._listeners.append(listener)
        self._call_listener(listener, self.get_state())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _status(self) -> SyncStatus:
        if self._auth_error:
            return SyncStatus.AUTH_ERROR
        if self._is_syncing or self._pulls_in_flight > 0:
            return SyncStatus.SYNCING
        if self._debounce_task is not None and not self._debounce_task.done():
            return SyncStatus.DEBOUNCE_PENDING
        return SyncStatus.IDLE

    def _notify(self) -> None:
        state = self.get_state()
        if state.status != self._last_notified_status:
            logger.debug(f"Sync status: {self._last_notified_status} -> {state.status}")
            self._last_notified_status = state.status
        for listener in list(self._listeners):
            self._call_listener(listener, state)

    @staticmethod
    def _call_listener(listener: StateListener, state: SyncState) -> None:
        try:
            listener(state)
        except Exception as e:
            logger.exception(f"Sync state listener {listener!r} raised: {e}")

    # --- Authentication ---

    def _access_token(self) -> Optional[str]:
        return self.host_bridge.get_access_token() or None

    def _api_base_url(self) -> Optional[str]:
        return self.host_bridge.get_api_base_url() or None

    def is_bearer_mode(self) -> bool:
        return self._access_token() is not None

    async def check_auth(self) -> bool:
        """
        Bearer mode counts as authenticated whenever the host has a token. In
        session mode the endpoint is probed once and the answer cached until
        `reset_auth_cache()`.
        """
        if self.is_bearer_mode():
            self._is_authenticated = True
            return True
        if self._is_authenticated is not None:
            return self._is_authenticated

        try:
            await self.api_client.get_lists()
            self._is_authenticated = True
        except SyncAPIError as e:
            logger.info(f"Session auth probe failed, treating as signed out: {e}")
            self._is_authenticated = False
        logger.debug(f"Session auth probe result: {self._is_authenticated}")
        return self._is_authenticated

    def reset_auth_cache(self) -> None:
        """Forget the cached session probe (call on login/logout)."""
        self._is_authenticated = None

    def reset_auth(self) -> None:
        """Leave the auth-error state after a successful re-login and resume periodic retry."""
        logger.info("Auth error cleared; resuming sync.")
        self._auth_error = False
        self._is_authenticated = True
        self._notify()
        self._start_periodic_sync()

    def _handle_auth_failure(self) -> None:
        logger.error("Authentication failed and the token could not be refreshed; sync paused until re-login.")
        self._is_authenticated = False
        self._auth_error = True
        self._queued_payload = None
        self._cancel_timer(self._periodic_task)
        self._periodic_task = None
        self._cancel_timer(self._debounce_task)
        self._debounce_task = None
        self._notify()
        try:
            self.host_bridge.on_auth_failure()
        except Exception as e:
            logger.warning(f"Host on_auth_failure hook raised: {e}")

    # --- Token refresh ---

    async def _refresh_token(self) -> bool:
        # Concurrent 401s share one refresh
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._run_token_refresh())
        return await asyncio.shield(self._refresh_task)

    async def _run_token_refresh(self) -> bool:
        self._refresh_result = asyncio.get_running_loop().create_future()
        try:
            try:
                requested = self.host_bridge.request_token_refresh()
            except Exception as e:
                logger.warning(f"Host token refresh request raised: {e}")
                return False
            if not requested:
                logger.info("Host has no token refresh channel; refresh failed.")
                return False
            try:
                success = await asyncio.wait_for(self._refresh_result, timeout=self.token_refresh_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Token refresh timed out after {self.token_refresh_timeout_seconds}s.")
                return False
            logger.info(f"Token refresh {'succeeded' if success else 'failed'}.")
            return bool(success)
        finally:
            self._refresh_result = None

    def complete_token_refresh(self, success: bool) -> None:
        """Called by the host with the result of a refresh it was asked to perform."""
        future = self._refresh_result
        if future is None or future.done():
            logger.debug("complete_token_refresh called with no refresh in flight; ignoring.")
            return
        future.set_result(bool(success))

    async def _call_with_refresh(self, operation: Callable[[Optional[str], Optional[str]], Awaitable[T]]) -> T:
        """
        Runs `operation(token, api_base_url)`. A 401 in bearer mode triggers one
        refresh and one retry; a failed refresh or a second 401 enters the
        auth-error state. Session-mode 401s propagate as ordinary failures.
        """
        token = self._access_token()
        try:
            return await operation(token, self._api_base_url())
        except AuthenticationError:
            if token is None:
                raise
            logger.warning("401 received in bearer mode, attempting token refresh...")
            if not await self._refresh_token():
                self._handle_auth_failure()
                raise

        try:
            return await operation(self._access_token(), self._api_base_url())
        except AuthenticationError:
            self._handle_auth_failure()
            raise

    # --- Timers ---

    @staticmethod
    def _cancel_timer(task: Optional[asyncio.Task]) -> None:
        # A timer may cancel itself from inside its own callback (e.g. auth failure
        # during a periodic tick); it then just stops at its next check.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _start_periodic_sync(self) -> None:
        if self._periodic_task is not None and not self._periodic_task.done():
            return
        self._periodic_task = asyncio.create_task(self._periodic_loop())

    async def _periodic_loop(self) -> None:
        while self._periodic_task is asyncio.current_task():
            await asyncio.sleep(self.retry_interval_seconds)
            if self._periodic_task is not asyncio.current_task():
                break
            await self._periodic_tick()

    async def _periodic_tick(self) -> None:
        if not self._has_pending_changes or self._is_syncing or self._auth_error:
            return
        try:
            records = self.store.load_lists()
        except StorageError as e:
            logger.error(f"Periodic sync could not read the local store: {e}")
            return
        if not records:
            self._has_pending_changes = False
            self._notify()
            return
        logger.debug("Periodic retry: pushing undelivered changes.")
        await self._sync_now(records)

    async def _debounce_then_sync(self, records: List[Record]) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._debounce_task = None
        self._notify()
        await self._sync_now(records)

    # --- Outbound path ---

    def push(self, records: Sequence[Record]) -> None:
        """Marks the collection dirty and (re)starts the debounce window."""
        self._has_pending_changes = True
        if self._auth_error:
            logger.debug("Auth error active; change kept pending, no sync scheduled.")
            self._notify()
            return
        self._start_periodic_sync()
        self._cancel_timer(self._debounce_task)
        self._debounce_task = asyncio.create_task(self._debounce_then_sync(list(records)))
        self._notify()

    async def flush_pending_sync(self) -> bool:
        """Sends pending changes now (no pull). Returns True if a push succeeded."""
        if not self._has_pending_changes:
            return False
        self._cancel_timer(self._debounce_task)
        self._debounce_task = None

        try:
            records = self.store.load_lists()
        except StorageError as e:
            logger.error(f"Flush could not read the local store: {e}")
            self._notify()
            return False
        if not records:
            self._has_pending_changes = False
            self._notify()
            return False
        return await self._sync_now(records)

    async def _pad_busy(self, started: float) -> None:
        remaining = self.min_busy_seconds - (asyncio.get_running_loop().time() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _post(self, records: List[Record]) -> None:
        await self._call_with_refresh(
            lambda token, base_url: self.api_client.post_lists(records, token=token, api_base_url=base_url)
        )

    async def _sync_now(self, records: List[Record], *, allow_queue: bool = True) -> bool:
        if self._auth_error:
            return False
        if not await self.check_auth():
            logger.debug("Not authenticated; push skipped, changes stay pending.")
            return False
        if self._is_syncing:
            if allow_queue:
                self._queued_payload = list(records)
                logger.debug("Push in flight; payload queued for replay.")
            return False

        started = asyncio.get_running_loop().time()
        self._is_syncing = True
        self._notify()
        succeeded = False
        try:
            while True:
                try:
                    await self._post(records)
                    succeeded = True
                    self._last_synced_at = datetime.now(timezone.utc)
                    # Stay dirty if something newer is waiting to go out
                    if self._queued_payload is None and self._debounce_idle():
                        self._has_pending_changes = False
                    logger.info(f"Pushed {len(records)} record(s).")
                except SyncAPIError as e:
                    succeeded = False
                    logger.warning(f"List sync push failed, changes stay pending: {e}")

                if self._queued_payload is None or self._auth_error:
                    self._queued_payload = None
                    break
                records, self._queued_payload = self._queued_payload, None
                logger.debug("Replaying queued push.")
        finally:
            await self._pad_busy(started)
            self._is_syncing = False
            self._notify()
        return succeeded

    def _debounce_idle(self) -> bool:
        return self._debounce_task is None or self._debounce_task.done()

    # --- Inbound path ---

    async def pull(self, local_records: Sequence[Record]) -> List[Record]:
        """
        Fetches the remote collection and merges it into `local_records`.
        Any failure returns the local records unchanged; this never raises.
        """
        local = list(local_records)
        if self._auth_error or not await self.check_auth():
            logger.debug("Pull skipped: not authenticated.")
            return local

        self._pulls_in_flight += 1
        self._notify()
        try:
            remote = await self._call_with_refresh(
                lambda token, base_url: self.api_client.get_lists(token=token, api_base_url=base_url)
            )
        except SyncAPIError as e:
            logger.warning(f"Pull failed, keeping local lists: {e}")
            return local
        finally:
            self._pulls_in_flight -= 1
            self._notify()

        merged = merge_lists(local, remote)
        logger.info(f"Pulled {len(remote)} remote record(s); merged collection has {len(merged)}.")
        return merged

    async def force_sync(self) -> Optional[List[Record]]:
        """
        User-triggered push-then-pull, bypassing the debounce. Clears an auth
        error first (counts as an explicit retry). Returns the merged visible
        records, or None when not authenticated, busy, or on failure.
        """
        if self._auth_error:
            self.reset_auth()
        if not await self.check_auth():
            return None
        if self._is_syncing:
            logger.debug("Force sync ignored: a push is already in flight.")
            return None

        self._cancel_timer(self._debounce_task)
        self._debounce_task = None

        started = asyncio.get_running_loop().time()
        self._is_syncing = True
        self._notify()
        result: Optional[List[Record]] = None
        try:
            local = self.store.load_lists()
            await self._post(local)
            remote = await self._call_with_refresh(
                lambda token, base_url: self.api_client.get_lists(token=token, api_base_url=base_url)
            )
            # Re-read so edits made while the requests were in flight are not lost
            merged = merge_lists(self.store.load_lists(), remote)
            self.store.save_lists(merged)
            self._last_synced_at = datetime.now(timezone.utc)
            self._has_pending_changes = False
            result = filter_deleted_lists(merged)
            logger.success(f"Force sync complete: {len(result)} visible record(s).")
        except SyncAPIError as e:
            logger.warning(f"Force sync failed: {e}")
        except StorageError as e:
            logger.error(f"Force sync could not access the local store: {e}")
        finally:
            await self._pad_busy(started)
            self._is_syncing = False
            self._notify()

        if self._queued_payload is not None and not self._auth_error:
            queued, self._queued_payload = self._queued_payload, None
            self._has_pending_changes = True
            await self._sync_now(queued)
        return result

    # --- Maintenance ---

    def cleanup_deleted_lists(self, now: Optional[datetime] = None) -> int:
        """
        Removes tombstones older than the retention window from the local store.
        Skipped while changes are pending or a push is in flight, so a deletion
        is never collected before it has been delivered.

        Returns:
            Number of tombstones removed.
        """
        if self._has_pending_changes or self._is_syncing:
            logger.debug("Tombstone cleanup skipped: changes pending or push in flight.")
            return 0
        try:
            records = self.store.load_lists()
            kept, removed = partition_expired_tombstones(records, self.tombstone_retention, now)
            if removed:
                self.store.save_lists(kept)
        except StorageError as e:
            logger.error(f"Tombstone cleanup could not access the local store: {e}")
            return 0
        if removed:
            logger.info(f"Removed {removed} expired tombstone(s) from the local store.")
        return removed

    async def aclose(self) -> None:
        """Cancels timers and closes the HTTP client."""
        tasks = [t for t in (self._debounce_task, self._periodic_task, self._refresh_task)
                 if t is not None and not t.done() and t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._debounce_task = None
        self._periodic_task = None
        self._refresh_task = None
        await self.api_client.close()
        logger.debug("Sync engine closed.")

#
# End of Sync_Client.py
########################################################################################################################
