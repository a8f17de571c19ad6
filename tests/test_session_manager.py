"""
Tests for session resolution, reuse and eviction.
"""

import anyio
import pytest

from context_echo.core import SessionEvictedError, SessionHandshakeError
from context_echo.mcp_http import SessionRegistry
from context_echo.server import create_mcp_server

pytestmark = pytest.mark.anyio


@pytest.fixture
def make_registry(service, clock):
    def factory(**kwargs):
        kwargs.setdefault("capacity", 2)
        kwargs.setdefault("eviction_interval", 60)
        return SessionRegistry(lambda: create_mcp_server(service), clock=clock, **kwargs)
    return factory


class TestResolve:

    async def test_concurrent_first_resolves_share_one_session(self, make_registry):
        registry = make_registry()
        results = []

        async def resolve():
            results.append(await registry.resolve("abc"))

        async with registry.run():
            async with anyio.create_task_group() as tg:
                for _ in range(10):
                    tg.start_soon(resolve)

            assert len(results) == 10
            assert all(s is results[0] for s in results)
            assert registry.handshakes == 1
            assert registry.count() == 1

    async def test_live_session_is_reused(self, make_registry):
        registry = make_registry()
        async with registry.run():
            first = await registry.resolve("abc")
            second = await registry.resolve("abc")
            assert first is second
            assert registry.handshakes == 1

    async def test_distinct_ids_get_distinct_sessions(self, make_registry):
        registry = make_registry()
        async with registry.run():
            a = await registry.resolve("a")
            b = await registry.resolve("b")
            assert a is not b
            assert a.server is not b.server
            assert a.transport is not b.transport
            assert registry.handshakes == 2

    async def test_fallback_session_has_no_transport_id(self, make_registry):
        registry = make_registry()
        async with registry.run():
            fallback = await registry.resolve(registry.fallback_id)
            named = await registry.resolve("abc")
            assert fallback.transport.mcp_session_id is None
            assert named.transport.mcp_session_id == "abc"

    async def test_handshake_failure_stores_nothing(self, clock):
        def broken_factory():
            raise RuntimeError("no server today")

        registry = SessionRegistry(broken_factory, clock=clock)
        async with registry.run():
            with pytest.raises(SessionHandshakeError) as exc_info:
                await registry.resolve("abc")
            assert exc_info.value.session_id == "abc"
            assert registry.count() == 0
            assert registry.handshakes == 0

    async def test_resolve_requires_running_registry(self, make_registry):
        registry = make_registry()
        with pytest.raises(SessionHandshakeError):
            await registry.resolve("abc")

    async def test_leaving_run_closes_sessions(self, make_registry):
        registry = make_registry()
        async with registry.run():
            session = await registry.resolve("abc")
        assert session.evicted
        assert registry.count() == 0


class TestEviction:

    async def test_over_capacity_clears_everything(self, make_registry, clock):
        registry = make_registry(capacity=2)
        async with registry.run():
            old = [await registry.resolve(sid) for sid in ("a", "b", "c")]

            clock.advance(60)
            assert await registry.maybe_evict() == 3
            assert registry.count() == 0
            assert all(s.evicted for s in old)

            fresh = await registry.resolve("a")
            assert fresh is not old[0]
            assert not fresh.evicted
            assert registry.handshakes == 4

    async def test_check_waits_for_interval(self, make_registry, clock):
        registry = make_registry(capacity=1)
        async with registry.run():
            await registry.resolve("a")
            await registry.resolve("b")

            clock.advance(30)
            assert await registry.maybe_evict() == 0
            assert registry.count() == 2

            clock.advance(30)
            assert await registry.maybe_evict() == 2

    async def test_at_capacity_is_kept(self, make_registry, clock):
        registry = make_registry(capacity=2)
        async with registry.run():
            await registry.resolve("a")
            await registry.resolve("b")

            clock.advance(60)
            assert await registry.maybe_evict() == 0
            assert registry.count() == 2

    async def test_stale_session_fails_cleanly(self, make_registry, clock):
        registry = make_registry(capacity=0)
        async with registry.run():
            stale = await registry.resolve("a")
            clock.advance(60)
            await registry.maybe_evict()

            async def receive():
                return {"type": "http.request", "body": b"", "more_body": False}

            async def send(message):
                raise AssertionError("stale session must not write a response")

            scope = {"type": "http", "method": "POST", "path": "/mcp", "headers": [], "query_string": b""}
            with pytest.raises(SessionEvictedError):
                await stale.handle_request(scope, receive, send)

            # Other sessions keep working
            assert await registry.resolve("b") is registry.get("b")

    async def test_background_loop_evicts_once_clock_allows(self, make_registry, clock):
        registry = make_registry(capacity=1, eviction_interval=0.01)
        async with registry.run():
            await registry.resolve("a")
            await registry.resolve("b")

            # The loop wakes several times but the clock has not moved
            await anyio.sleep(0.1)
            assert registry.count() == 2

            clock.advance(1)
            with anyio.fail_after(5):
                while registry.evictions < 2:
                    await anyio.sleep(0.01)
            assert registry.count() == 0
