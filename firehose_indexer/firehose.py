"""
Firehose Client

Owns the Jetstream websocket subscription and delivers decoded events to one
registered handler, strictly in the order received.

Delivery model:
    reader task --(bounded asyncio.Queue)--> delivery worker --> handler

RULES:
- A full queue blocks the reader (backpressure, never drop-oldest)
- The cursor advances only after the handler returns for an event
- Reconnect resumes from the last delivered cursor, after the queue drains
- Malformed frames are dropped with a warning, reported to the drop listener,
  and never advance the cursor
- Handler exceptions are not caught here
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import urlencode

import websockets

from .errors import FirehoseConnectionError, FrameDecodeError
from .events import StreamEvent, decode_frame
from .records import INDEXED_COLLECTIONS

logger = logging.getLogger(__name__)

JETSTREAM_URL = "wss://jetstream1.us-east.bsky.network/subscribe"

EventHandler = Callable[[StreamEvent], Awaitable[object]]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


def build_url(base_url: str, collections: Iterable[str], cursor: Optional[int] = None) -> str:
    """Subscription URL with one wantedCollections parameter per collection, plus cursor if known."""
    params = [("wantedCollections", collection) for collection in collections]
    if cursor is not None:
        params.append(("cursor", str(cursor)))
    if not params:
        return base_url
    return f"{base_url}?{urlencode(params)}"


class FirehoseClient:
    """
    Resumable Jetstream subscription.

    Usage:
        client = FirehoseClient()
        client.on_event(router.handle)
        await client.connect(start_cursor=cursor_store.load())
    """

    def __init__(
        self,
        url: str = JETSTREAM_URL,
        collections: Iterable[str] = INDEXED_COLLECTIONS,
        queue_size: int = 1000,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        max_reconnect_attempts: Optional[int] = None,
        connect: Optional[Callable] = None,
    ):
        """
        Args:
            url: Jetstream subscribe endpoint
            collections: Collection NSIDs to request
            queue_size: Events buffered between reader and handler
            reconnect_delay: Base backoff delay in seconds
            max_reconnect_delay: Backoff cap in seconds
            max_reconnect_attempts: Consecutive failed attempts before giving up
                (None = retry forever)
            connect: Websocket connect factory (defaults to websockets.connect)
        """
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.url = url
        self.collections = tuple(collections)
        self.queue_size = queue_size
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self._connect = connect or websockets.connect

        self._handler: Optional[EventHandler] = None
        self._lifecycle: Optional[Callable[[ConnectionState], None]] = None
        self._drop_listener: Optional[Callable[[], None]] = None
        self._state = ConnectionState.CLOSED

        self._start_cursor: Optional[int] = None
        self._cursor: Optional[int] = None

        self._running = False
        self._ws = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        # Stats
        self.frames_received = 0
        self.frames_dropped = 0
        self.events_delivered = 0
        self.reconnects = 0

    # =========================================================================
    # Registration
    # =========================================================================

    def on_event(self, handler: EventHandler) -> None:
        """Register the single event handler. A second registration replaces the first."""
        if self._handler is not None:
            logger.warning("[Firehose] Replacing previously registered event handler")
        self._handler = handler

    def on_lifecycle(self, listener: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connection state changes."""
        self._lifecycle = listener

    def on_frame_dropped(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked once per malformed frame that is dropped."""
        self._drop_listener = listener

    def get_cursor(self) -> Optional[int]:
        """Sequence number of the most recently delivered event."""
        return self._cursor

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._lifecycle is None:
            return
        try:
            self._lifecycle(state)
        except Exception:
            logger.exception(f"[Firehose] Lifecycle listener failed on {state.value}")

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def connect(self, start_cursor: Optional[int] = None) -> None:
        """
        Subscribe and deliver events until stop() is called.

        Args:
            start_cursor: Replay from this sequence number (None = live)

        Raises:
            FirehoseConnectionError: If max_reconnect_attempts is exhausted
        """
        if self._handler is None:
            raise RuntimeError("No event handler registered")

        self._start_cursor = start_cursor
        self._running = True
        self._stop_event = asyncio.Event()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._worker = asyncio.create_task(self._deliver())
        attempt = 0

        try:
            while self._running:
                resume_from = self._cursor if self._cursor is not None else self._start_cursor
                url = build_url(self.url, self.collections, resume_from)
                self._set_state(ConnectionState.CONNECTING)

                try:
                    async with self._connect(
                        url,
                        ping_interval=30,
                        ping_timeout=60,
                        close_timeout=10,
                    ) as ws:
                        self._ws = ws
                        if not self._running:
                            # stop() arrived during the handshake
                            break
                        attempt = 0  # Reset on successful connect
                        self._set_state(ConnectionState.CONNECTED)
                        logger.info(f"[Firehose] Connected (cursor={resume_from})")
                        await self._read_until_closed(ws)
                except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                    logger.warning(f"[Firehose] Connection error: {type(e).__name__}: {e}")
                finally:
                    self._ws = None

                if not self._running:
                    break

                self._set_state(ConnectionState.DISCONNECTED)
                await self._drain()

                if self.max_reconnect_attempts is not None and attempt >= self.max_reconnect_attempts:
                    raise FirehoseConnectionError(
                        f"Giving up after {attempt} failed reconnect attempts"
                    )

                delay = min(self.reconnect_delay * 2 ** attempt, self.max_reconnect_delay)
                attempt += 1
                self.reconnects += 1
                logger.info(
                    f"[Firehose] Reconnecting in {delay:.1f}s "
                    f"(attempt {attempt}, cursor={self._cursor or self._start_cursor})"
                )
                await self._sleep(delay)
        finally:
            self._running = False
            try:
                await self._shutdown_worker()
            finally:
                self._set_state(ConnectionState.CLOSED)

    async def stop(self) -> None:
        """
        Stop the read loop.

        The event currently in the handler finishes. Queued events are
        discarded without advancing the cursor.
        """
        if not self._running:
            return
        logger.info("[Firehose] Stopping")
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._ws is not None:
            await self._ws.close()

    async def _read_until_closed(self, ws) -> None:
        """
        Run the reader until the socket closes or stop() is called.

        Re-raises a crashed delivery worker's exception, then any read error.
        """
        reader = asyncio.create_task(self._read(ws))
        stopper = asyncio.create_task(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, self._worker, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (reader, stopper):
                if not task.done():
                    task.cancel()
            await asyncio.gather(reader, stopper, return_exceptions=True)

        if self._worker in done:
            self._worker.result()
        if reader in done:
            reader.result()

    async def _read(self, ws) -> None:
        async for message in ws:
            if not self._running:
                break
            self.frames_received += 1

            try:
                event = decode_frame(message)
            except FrameDecodeError as e:
                self.frames_dropped += 1
                logger.warning(f"[Firehose] Dropping malformed frame: {e}")
                if self._drop_listener is not None:
                    self._drop_listener()
                continue

            if event is None:
                logger.debug("[Firehose] Skipping non-commit frame")
                continue

            # Blocks while the queue is full
            await self._queue.put(event)

    async def _deliver(self) -> None:
        """Single consumer: await the handler for each event in order."""
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                if not self._running:
                    continue
                await self._handler(event)
                self._cursor = event.seq
                self.events_delivered += 1
            finally:
                self._queue.task_done()

    async def _drain(self) -> None:
        """Wait until every queued event has been handled, so the resume cursor is exact."""
        joiner = asyncio.create_task(self._queue.join())
        done, _ = await asyncio.wait({joiner, self._worker}, return_when=asyncio.FIRST_COMPLETED)
        if joiner not in done:
            joiner.cancel()
            await asyncio.gather(joiner, return_exceptions=True)
            self._worker.result()

    async def _sleep(self, delay: float) -> None:
        """Backoff sleep that returns early when stop() is called."""
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _shutdown_worker(self) -> None:
        if self._worker is None:
            return

        if not self._worker.done():
            discarded = 0
            while not self._queue.empty():
                self._queue.get_nowait()
                self._queue.task_done()
                discarded += 1
            if discarded:
                logger.info(f"[Firehose] Discarded {discarded} undelivered events")
            self._queue.put_nowait(None)

        worker, self._worker = self._worker, None
        await worker
