"""Session registry for the streamable HTTP MCP server."""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.types import Receive, Scope, Send

from ..core.constants import EVICTION_INTERVAL_SECONDS, FALLBACK_SESSION_ID, SESSION_CAPACITY
from ..core.exceptions import SessionEvictedError, SessionHandshakeError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Session:
    """One MCP server connected to one transport, addressable by id."""
    id: str
    server: Server
    transport: StreamableHTTPServerTransport
    created_at: float = field(default_factory=time.time)
    evicted: bool = False
    cancel_scope: anyio.CancelScope | None = field(default=None, repr=False)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Forward an HTTP request to the transport. Raises SessionEvictedError once evicted."""
        if self.evicted:
            raise SessionEvictedError(self.id)
        await self.transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        """Terminate the transport and stop the server task."""
        self.evicted = True
        try:
            await self.transport.terminate()
        finally:
            if self.cancel_scope is not None:
                self.cancel_scope.cancel()


class SessionRegistry:
    """
    Maps session ids to live sessions.

    Each id goes absent -> live -> evicted. A live session is reused as is;
    anything else gets a fresh server/transport pair and exactly one
    handshake. When more than `capacity` sessions are live at an eviction
    check, every session is evicted. Checks run every `eviction_interval`
    seconds while the registry is running.
    """

    def __init__(
        self,
        server_factory: Callable[[], Server],
        capacity: int = SESSION_CAPACITY,
        eviction_interval: float = EVICTION_INTERVAL_SECONDS,
        json_response: bool = False,
        fallback_id: str = FALLBACK_SESSION_ID,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.server_factory = server_factory
        self.capacity = capacity
        self.eviction_interval = eviction_interval
        self.json_response = json_response
        self.fallback_id = fallback_id
        self._clock = clock

        self._sessions: dict[str, Session] = {}
        self._lock = anyio.Lock()
        self._task_group: TaskGroup | None = None
        self._last_eviction_check = clock()

        # Observability counters
        self.handshakes = 0
        self.evictions = 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @asynccontextmanager
    async def run(self):
        """Own the task group that session servers and the eviction loop run in."""
        if self._task_group is not None:
            raise RuntimeError("SessionRegistry is already running")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            self._last_eviction_check = self._clock()
            tg.start_soon(self._eviction_loop)
            logger.info("Session registry started")
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None
                logger.info("Session registry stopped")

    async def close_all(self) -> int:
        """Close every session. Returns the number closed."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            await session.close()
        return len(sessions)

    # ========================================================================
    # Resolution
    # ========================================================================

    async def resolve(self, session_id: str) -> Session:
        """Return the live session for an id, creating and connecting it if needed."""
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        async with self._lock:
            # Another request may have created it while we waited
            session = self._sessions.get(session_id)
            if session is not None:
                return session

            session = await self._start_session(session_id)
            self._sessions[session_id] = session

        logger.info(f"Session created: {session_id} ({len(self._sessions)} live)")
        return session

    async def _start_session(self, session_id: str) -> Session:
        """Build a server/transport pair and perform the one-time handshake. Caller must hold lock."""
        if self._task_group is None:
            raise SessionHandshakeError(session_id, "session registry is not running")

        try:
            server = self.server_factory()
            transport = StreamableHTTPServerTransport(
                mcp_session_id=None if session_id == self.fallback_id else session_id,
                is_json_response_enabled=self.json_response,
                event_store=None,
            )
            session = Session(id=session_id, server=server, transport=transport)
            await self._task_group.start(self._run_session, session)
        except Exception as e:
            logger.error(f"Handshake failed for session {session_id}: {e}", exc_info=True)
            raise SessionHandshakeError(session_id, str(e)) from e

        self.handshakes += 1
        return session

    async def _run_session(self, session: Session, *, task_status: TaskStatus = anyio.TASK_STATUS_IGNORED):
        """Connect the server to the transport streams and serve until closed."""
        with anyio.CancelScope() as scope:
            session.cancel_scope = scope
            async with session.transport.connect() as (read_stream, write_stream):
                task_status.started()
                try:
                    # Sessions may be recreated after eviction without a new
                    # initialize request, so the server starts initialized.
                    await session.server.run(
                        read_stream,
                        write_stream,
                        session.server.create_initialization_options(),
                        stateless=True,
                    )
                except Exception as e:
                    logger.error(f"Session {session.id} crashed: {e}", exc_info=True)

        self._forget(session)

    def _forget(self, session: Session):
        """Drop a finished session, unless its id already maps to a newer one."""
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
            logger.info(f"Session ended: {session.id}")

    # ========================================================================
    # Eviction
    # ========================================================================

    async def maybe_evict(self) -> int:
        """Run an eviction check if `eviction_interval` has passed on the clock."""
        now = self._clock()
        if now - self._last_eviction_check < self.eviction_interval:
            return 0
        return await self.evict_over_capacity()

    async def evict_over_capacity(self) -> int:
        """Evict every session if more than `capacity` are live. Returns count evicted."""
        self._last_eviction_check = self._clock()

        async with self._lock:
            if len(self._sessions) <= self.capacity:
                return 0
            sessions = list(self._sessions.values())
            self._sessions.clear()
            for session in sessions:
                session.evicted = True

        for session in sessions:
            await session.close()

        self.evictions += len(sessions)
        logger.info(f"Evicted {len(sessions)} sessions (capacity {self.capacity})")
        return len(sessions)

    async def _eviction_loop(self):
        while True:
            await anyio.sleep(self.eviction_interval)
            try:
                await self.maybe_evict()
            except Exception as e:
                logger.error(f"Eviction check failed: {e}", exc_info=True)

    # ========================================================================
    # Introspection
    # ========================================================================

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def count(self) -> int:
        """Return number of live sessions."""
        return len(self._sessions)
