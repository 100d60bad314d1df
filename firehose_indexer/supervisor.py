"""
Process Supervisor

Top-level lifecycle of the indexer:

    STARTING -> RUNNING <-> RECOVERING -> DRAINING -> STOPPED

- STARTING: open store, load cursor, wire client -> router
- RUNNING: events flow; stats + cursor checkpoint every stats_interval
- RECOVERING: client reported a disconnect; back to RUNNING on reconnect
- DRAINING: shutdown signal; current event finishes, final cursor saved
- STOPPED: run() returns the exit code

RULE: Only startup misconfiguration is fatal (exit 1). Once running, no
single event or disconnect stops the process.
"""

import asyncio
import logging
import signal
from enum import Enum
from typing import Callable, List, Optional

from .cache import TTLCache
from .config import IndexerConfig
from .cursor_store import CursorStore
from .derived import DerivedStateMaintainer
from .errors import ConfigError, StoreError
from .firehose import ConnectionState, FirehoseClient
from .handlers import EventRouter
from .stats import IndexerStats
from .storage import IndexStore, open_store

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    RECOVERING = "recovering"
    DRAINING = "draining"
    STOPPED = "stopped"


def default_client_factory(config: IndexerConfig) -> FirehoseClient:
    return FirehoseClient(
        url=config.firehose_url,
        queue_size=config.queue_size,
        reconnect_delay=config.reconnect_delay,
        max_reconnect_delay=config.max_reconnect_delay,
        max_reconnect_attempts=config.max_reconnect_attempts,
    )


class IndexerSupervisor:
    """
    Wires cursor store, firehose client, router and maintainer together and
    owns the periodic tasks.
    """

    def __init__(
        self,
        config: IndexerConfig,
        store_factory: Callable[[str], IndexStore] = open_store,
        client_factory: Callable[[IndexerConfig], FirehoseClient] = default_client_factory,
    ):
        self.config = config
        self._store_factory = store_factory
        self._client_factory = client_factory

        self.state = SupervisorState.STARTING
        self.cursor_store = CursorStore(config.cursor_file)
        self.store: Optional[IndexStore] = None
        self.cache: Optional[TTLCache] = None
        self.stats: Optional[IndexerStats] = None
        self.maintainer: Optional[DerivedStateMaintainer] = None
        self.router: Optional[EventRouter] = None
        self.client: Optional[FirehoseClient] = None

        self._shutdown_event = asyncio.Event()
        self._signals_installed: List[int] = []

    def start(self) -> Optional[int]:
        """
        Build all components.

        Returns:
            Cursor to resume from (None = live)

        Raises:
            ConfigError: If configuration is invalid
            StoreError: If the store cannot be opened
        """
        if not self.config.database_url:
            raise ConfigError("DATABASE_URL environment variable is required")

        self.store = self._store_factory(self.config.database_url)
        if self.config.create_schema:
            self.store.create_schema()

        start_cursor = self.cursor_store.load()

        self.cache = TTLCache(default_ttl=self.config.cache_ttl)
        self.stats = IndexerStats()
        self.maintainer = DerivedStateMaintainer(self.store)
        self.router = EventRouter(self.store, self.maintainer, self.stats, self.cache)

        self.client = self._client_factory(self.config)
        self.client.on_event(self.router.handle)
        self.client.on_lifecycle(self._on_connection_state)
        self.client.on_frame_dropped(self.stats.record_dropped)
        return start_cursor

    async def run(self) -> int:
        """
        Run until shutdown is requested or the client gives up.

        Returns:
            Process exit code (0 normal, 1 fatal)
        """
        logger.info("[Indexer] Starting firehose indexer")
        try:
            start_cursor = self.start()
        except (ConfigError, StoreError) as e:
            logger.error(f"[Indexer] Fatal startup error: {e}")
            if self.store is not None:
                self.store.close()
            self.state = SupervisorState.STOPPED
            return 1

        self._install_signal_handlers()
        self.state = SupervisorState.RUNNING

        client_task = asyncio.create_task(self.client.connect(start_cursor))
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        periodic = [asyncio.create_task(self._stats_loop())]
        if self.config.hot_recalc_interval > 0:
            periodic.append(asyncio.create_task(self._hot_recalc_loop()))

        exit_code = 0
        try:
            done, _ = await asyncio.wait(
                {client_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if client_task in done and client_task.exception() is not None:
                e = client_task.exception()
                logger.error(f"[Indexer] Firehose client stopped: {type(e).__name__}: {e}")
                exit_code = 1
        finally:
            self.state = SupervisorState.DRAINING
            logger.info("[Indexer] Draining")
            await self.client.stop()
            if not client_task.done():
                await asyncio.gather(client_task, return_exceptions=True)

            for task in periodic + [shutdown_task]:
                task.cancel()
            await asyncio.gather(*periodic, shutdown_task, return_exceptions=True)

            self._remove_signal_handlers()
            self._shutdown()

        return exit_code

    def request_shutdown(self) -> None:
        """Signal-safe: ask run() to drain and stop."""
        if not self._shutdown_event.is_set():
            logger.info("[Indexer] Shutdown requested")
            self._shutdown_event.set()

    def checkpoint(self) -> bool:
        """Persist the client's current cursor."""
        if self.client is None:
            return False
        return self.cursor_store.save(self.client.get_cursor())

    def log_stats(self) -> None:
        """Periodic tick: stats line, cursor checkpoint, cache purge."""
        logger.info(self.stats.format_line())
        self.checkpoint()
        purged = self.cache.purge_expired()
        if purged:
            logger.debug(f"[Indexer] Purged {purged} expired cache entries")

    def _on_connection_state(self, state: ConnectionState) -> None:
        if self.state in (SupervisorState.DRAINING, SupervisorState.STOPPED):
            return
        if state is ConnectionState.DISCONNECTED:
            self.state = SupervisorState.RECOVERING
        elif state is ConnectionState.CONNECTED:
            self.state = SupervisorState.RUNNING

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.stats_interval)
            self.log_stats()

    async def _hot_recalc_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.hot_recalc_interval)
            try:
                self.maintainer.recalculate_hot_scores()
            except StoreError as e:
                logger.error(f"[Indexer] Hot score recalculation failed: {e}")

    def _shutdown(self) -> None:
        saved = self.checkpoint()
        cursor = self.client.get_cursor()
        if saved:
            logger.info(f"[Indexer] Final cursor saved: {cursor}")
        logger.info(self.stats.format_line())

        self.store.close()
        self.cache.clear()
        self.state = SupervisorState.STOPPED
        logger.info("[Indexer] Stopped")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
                self._signals_installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops and non-main threads
                pass

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()
