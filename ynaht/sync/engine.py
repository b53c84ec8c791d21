"""Sync engine: debounced pushes, offline queue and last-write-wins pulls."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ..config import settings
from ..engine.actions import LoadState
from ..engine.models import AppState
from ..engine.store import SessionStore
from ..engine.timeutil import ensure_aware, now_local
from .client import RemoteClient, SyncError
from .local import LocalStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0


@dataclass
class SyncState:
    """Sync status shown to the user."""
    is_loading: bool = False
    is_syncing: bool = False
    is_online: bool = True
    last_synced_at: Optional[str] = None
    error: Optional[str] = None
    has_unsynced_changes: bool = False

    @property
    def indicator(self) -> str:
        """
        Status badge to display.

        Returns:
            "loading", "offline", "syncing", "error", "pending" or "synced"
        """
        if self.is_loading:
            return "loading"
        if not self.is_online:
            return "offline"
        if self.is_syncing:
            return "syncing"
        if self.error:
            return "error"
        if self.has_unsynced_changes:
            return "pending"
        return "synced"


def _parse_server_time(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"Unreadable server timestamp: {value}")
        return None


class SyncEngine:
    """Keeps one AppState blob in sync with the remote per-user store."""

    def __init__(
        self,
        client: RemoteClient,
        local: LocalStore,
        user_id: Optional[str] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        is_online: bool = True,
        clock: Callable[[], datetime] = now_local,
    ):
        """
        Initialize sync engine.

        Args:
            client: Remote endpoint client
            local: Local store holding the user id and offline queue
            user_id: User id to sync as (read or created from local store if omitted)
            debounce_seconds: Window in which repeated saves collapse into one
            is_online: Initial connectivity
            clock: Source of wall-clock time for queue timestamps
        """
        self.client = client
        self.local = local
        self.user_id = user_id or local.get_user_id()
        self.debounce_seconds = debounce_seconds
        self._clock = clock

        self.state = SyncState(
            is_online=is_online,
            has_unsynced_changes=local.get_offline_queue() is not None,
        )

        # Single-slot pending write plus its scheduled callback
        self._pending: Optional[AppState] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._waiter: Optional[asyncio.Future] = None
        self._tasks: set[asyncio.Task] = set()

        # Pushes go out one at a time; each save takes the next generation
        self._generation = 0
        self._lock: Optional[asyncio.Lock] = None

    # Pull

    async def fetch_data(self) -> Optional[AppState]:
        """
        Fetch the remote state, preferring a newer offline-queued write.

        Returns:
            AppState to load, or None to keep fresh local state
        """
        self.state.is_loading = True
        self.state.error = None

        try:
            result = await self.client.fetch(self.user_id)
        except SyncError as e:
            logger.warning(f"Fetch failed, falling back to offline queue: {e}")
            self.state.is_loading = False
            self.state.error = str(e)
            queued = self.local.get_offline_queue()
            return AppState.from_blob(queued.data) if queued else None

        self.state.is_loading = False
        self.state.last_synced_at = result.get("lastSyncedAt")

        remote = result.get("data")
        if remote is not None and not isinstance(remote, dict):
            logger.warning(f"Ignoring non-object remote data: {type(remote).__name__}")
            remote = None
        queued = self.local.get_offline_queue()

        if queued:
            meta = (remote or {}).get("_meta")
            updated_at = meta.get("lastUpdatedAt") if isinstance(meta, dict) else None
            server_time = _parse_server_time(updated_at)
            if server_time is None or queued.timestamp > server_time:
                logger.info("Offline changes are newer than remote, using them")
                return AppState.from_blob(queued.data)

        if remote:
            clean = {k: v for k, v in remote.items() if k != "_meta"}
            logger.info(f"Fetched remote state for {self.user_id}")
            return AppState.from_blob(clean)

        return None

    # Push

    def schedule_save(self, state: AppState) -> asyncio.Future:
        """
        Request a debounced save of state.

        A request inside the debounce window replaces the pending state and
        restarts the window. Must be called from a running event loop.

        Returns:
            Future resolving to True when the eventual write succeeds
        """
        loop = asyncio.get_running_loop()

        self._pending = state
        if self._handle:
            self._handle.cancel()
        if self._waiter is None:
            self._waiter = loop.create_future()

        self._handle = loop.call_later(self.debounce_seconds, self._fire)
        return self._waiter

    async def save_data(self, state: AppState, immediate: bool = False) -> bool:
        """
        Save state remotely.

        Args:
            state: State to push
            immediate: Skip debouncing and send now

        Returns:
            True if the write reached the server
        """
        if not immediate:
            return await self.schedule_save(state)

        _, waiter = self._take_pending()
        result = await self._perform_save(state.to_blob())
        if waiter and not waiter.done():
            waiter.set_result(result)
        return result

    async def flush(self) -> bool:
        """Send the pending debounced save now, if there is one."""
        state, waiter = self._take_pending()
        if state is None:
            return True
        result = await self._perform_save(state.to_blob())
        if waiter and not waiter.done():
            waiter.set_result(result)
        return result

    def _take_pending(self) -> tuple[Optional[AppState], Optional[asyncio.Future]]:
        """Disarm the debounce timer and empty the pending slot."""
        if self._handle:
            self._handle.cancel()
            self._handle = None
        state, waiter = self._pending, self._waiter
        self._pending = None
        self._waiter = None
        return state, waiter

    def _fire(self):
        state, waiter = self._take_pending()
        if state is None:
            return
        task = asyncio.ensure_future(self._send(state, waiter))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, state: AppState, waiter: Optional[asyncio.Future]):
        result = await self._perform_save(state.to_blob())
        if waiter and not waiter.done():
            waiter.set_result(result)

    async def _perform_save(
        self, data: dict, queued_at: Optional[datetime] = None
    ) -> bool:
        self._generation += 1
        generation = self._generation

        if not self.state.is_online:
            self.local.save_to_offline_queue(data, queued_at or self._clock())
            self.state.has_unsynced_changes = True
            return False

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            if generation != self._generation:
                logger.debug("Skipping save superseded by a newer write")
                return False

            self.state.is_syncing = True
            self.state.error = None

            try:
                result = await self.client.save(self.user_id, data)
            except SyncError as e:
                self.state.is_syncing = False
                # A newer write owns the queue and status now
                if generation != self._generation:
                    logger.warning(f"Superseded save failed, dropped: {e}")
                    return False
                logger.error(f"Save failed, queued for retry: {e}")
                self.local.save_to_offline_queue(data, queued_at or self._clock())
                self.state.error = str(e)
                self.state.has_unsynced_changes = True
                return False

            self.state.is_syncing = False
            self.state.last_synced_at = result.get("lastSyncedAt")
            if generation == self._generation:
                self.local.clear_offline_queue()
                self.state.has_unsynced_changes = False
            logger.info(f"Synced state at {self.state.last_synced_at}")
            return True

    # Reconciliation

    async def sync_offline_queue(self) -> bool:
        """Try once to send the queued offline write."""
        queued = self.local.get_offline_queue()
        if queued is None or not self.state.is_online:
            return False
        logger.info(f"Flushing offline write from {queued.timestamp.isoformat()}")
        return await self._perform_save(queued.data, queued_at=queued.timestamp)

    async def set_online(self, is_online: bool) -> bool:
        """
        Record a connectivity change.

        Coming back online with a queued write triggers one flush attempt.

        Returns:
            True if a queued write was flushed successfully
        """
        was_online = self.state.is_online
        self.state.is_online = is_online
        logger.info(f"Connectivity changed: {'online' if is_online else 'offline'}")

        if is_online and not was_online and self.state.has_unsynced_changes:
            return await self.sync_offline_queue()
        return False

    async def force_sync(self, state: AppState) -> bool:
        """Manual "sync now": push the current state without debouncing."""
        return await self.save_data(state, immediate=True)

    async def link_device(self, user_id: str) -> Optional[AppState]:
        """
        Switch this device to another user id and fetch that user's state.

        The caller replaces its local state with the result via LoadState.
        """
        _, waiter = self._take_pending()
        if waiter and not waiter.done():
            waiter.set_result(False)

        self.local.set_user_id(user_id)
        self.local.clear_offline_queue()
        self.user_id = user_id
        self.state.has_unsynced_changes = False
        logger.info(f"Linked device to user {user_id}")

        return await self.fetch_data()

    async def close(self):
        """Drop any pending save and close the client."""
        _, waiter = self._take_pending()
        if waiter and not waiter.done():
            waiter.cancel()
        await self.client.disconnect()


def bind_store(
    store: SessionStore, sync: SyncEngine, local: Optional[LocalStore] = None
) -> Callable[[], None]:
    """
    Persist and push every new state of a store.

    Dispatches must happen inside the running event loop so pushes can be
    scheduled.

    Returns:
        Function that detaches the binding
    """

    def on_change(state: AppState):
        if local is not None:
            local.save_app_state(state)
        sync.schedule_save(state)

    return store.subscribe(on_change)


async def load_initial_state(
    store: SessionStore, sync: SyncEngine, local: Optional[LocalStore] = None
) -> AppState:
    """
    Load local state, then replace it with remote state when there is any.

    Returns:
        The store's state after loading
    """
    if local is not None:
        saved = local.load_app_state()
        if saved is not None:
            store.dispatch(LoadState(saved))

    remote = await sync.fetch_data()
    if remote is not None:
        store.dispatch(LoadState(remote))

    return store.get_state()


def create_sync_engine(local: Optional[LocalStore] = None) -> SyncEngine:
    """Build a sync engine from application settings."""
    local = local or LocalStore(settings.local_store_path)
    client = RemoteClient(
        settings.sync_api_url, timeout=settings.sync_timeout_seconds
    )
    return SyncEngine(client, local, debounce_seconds=settings.sync_debounce_seconds)
