"""Unit tests for CDPConnection and CDPSession over a fake transport.

Tests command round-trips, session routing, idempotent session creation,
detach, and disconnect handling without requiring a real browser.
"""

import asyncio
import gc

import pytest

from cdpbrowser.connection import CDPConnection, ROOT_SESSION_ID
from cdpbrowser.events import ConnectionEvents, SessionEvents
from cdpbrowser.exceptions import (
    CommandFailedError,
    ConnectionClosedError,
    CDPTimeoutError,
    SessionClosedError,
)

PAGE_INFO = {"targetId": "PAGE-1", "type": "page", "url": "https://example.com/"}


@pytest.mark.unit
@pytest.mark.asyncio
class TestCommandExecution:
    """Root session request/response."""

    async def test_root_send_round_trip(self, transport):
        transport.handle("Browser.getVersion", lambda params, msg: {"product": "Chrome/120"})
        conn = CDPConnection(transport)

        result = await conn.root_session.send("Browser.getVersion")

        assert result == {"product": "Chrome/120"}
        sent = transport.commands("Browser.getVersion")[0]
        assert "sessionId" not in sent
        assert sent["params"] == {}

    async def test_message_ids_are_unique(self, transport):
        conn = CDPConnection(transport)

        await asyncio.gather(
            conn.root_session.send("A.one"),
            conn.root_session.send("A.two"),
        )

        ids = [m["id"] for m in transport.sent]
        assert len(set(ids)) == 2

    async def test_protocol_error_reaches_caller_only(self, transport):
        def fail(params, msg):
            raise transport.Failure("No target with given id found", code=-32602)

        transport.handle("Target.closeTarget", fail)
        conn = CDPConnection(transport)

        results = await asyncio.gather(
            conn.root_session.send("Target.closeTarget", {"targetId": "missing"}),
            conn.root_session.send("Browser.getVersion"),
            return_exceptions=True,
        )

        assert isinstance(results[0], CommandFailedError)
        assert results[0].error_code == -32602
        assert results[0].method == "Target.closeTarget"
        assert results[1] == {}

    async def test_command_timeout(self, transport):
        transport.handle("Runtime.evaluate", lambda params, msg: transport.NO_REPLY)
        conn = CDPConnection(transport)

        with pytest.raises(CDPTimeoutError, match="timed out"):
            await conn.root_session.send("Runtime.evaluate", timeout=0.05)

        assert conn.root_session._callbacks == {}

    async def test_connection_level_send(self, transport):
        conn = CDPConnection(transport)
        assert await conn.send(conn.root_session, "Browser.getVersion") == {}


@pytest.mark.unit
@pytest.mark.asyncio
class TestSessionRouting:
    """Inbound frames reach the session named by their routing key."""

    async def test_create_session_attaches_flat(self, transport):
        conn = CDPConnection(transport)

        session = await conn.create_session(PAGE_INFO)

        attach = transport.commands("Target.attachToTarget")[0]
        assert attach["params"] == {"targetId": "PAGE-1", "flatten": True}
        assert session.session_id == "SESSION-PAGE-1"
        assert session.target_id == "PAGE-1"
        assert conn.session("SESSION-PAGE-1") is session

    async def test_create_session_is_idempotent(self, transport):
        conn = CDPConnection(transport)

        first, second = await asyncio.gather(
            conn.create_session(PAGE_INFO), conn.create_session(PAGE_INFO)
        )
        third = await conn.create_session(PAGE_INFO)

        assert first is second is third
        assert len(transport.commands("Target.attachToTarget")) == 1

    async def test_session_commands_carry_session_id(self, transport):
        conn = CDPConnection(transport)
        session = await conn.create_session(PAGE_INFO)

        await session.send("Page.enable")

        sent = transport.commands("Page.enable")[0]
        assert sent["sessionId"] == "SESSION-PAGE-1"

    async def test_events_routed_by_session_id(self, transport):
        conn = CDPConnection(transport)
        session = await conn.create_session(PAGE_INFO)
        root_events, session_events = [], []
        conn.root_session.subscribe("Page.loadEventFired", root_events.append)
        session.subscribe("Page.loadEventFired", session_events.append)

        transport.emit_event("Page.loadEventFired", {"timestamp": 1}, session_id="SESSION-PAGE-1")
        transport.emit_event("Page.loadEventFired", {"timestamp": 2})

        assert session_events == [{"timestamp": 1}]
        assert root_events == [{"timestamp": 2}]

    async def test_unknown_session_frames_dropped(self, transport):
        conn = CDPConnection(transport)
        root_events = []
        conn.root_session.subscribe("Page.loadEventFired", root_events.append)

        transport.emit_event("Page.loadEventFired", {}, session_id="SESSION-UNKNOWN")

        assert root_events == []

    async def test_child_session_attached_from_page_session(self, transport):
        """Out-of-process frames attach through their parent page session."""
        conn = CDPConnection(transport)
        await conn.create_session(PAGE_INFO)

        transport.emit_event(
            "Target.attachedToTarget",
            {
                "sessionId": "SESSION-OOPIF",
                "targetInfo": {"targetId": "FRAME-1", "type": "iframe", "url": "https://other.test/"},
                "waitingForDebugger": False,
            },
            session_id="SESSION-PAGE-1",
        )

        child = conn.session("SESSION-OOPIF")
        assert child is not None
        assert child.target_id == "FRAME-1"
        assert await conn.create_session({"targetId": "FRAME-1", "type": "iframe"}) is child
        assert len(transport.commands("Target.attachToTarget")) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestDetach:
    """Detached sessions become permanently unusable."""

    async def test_detach_closes_session(self, transport):
        conn = CDPConnection(transport)
        session = await conn.create_session(PAGE_INFO)
        disconnected = []
        session.subscribe(SessionEvents.DISCONNECTED, lambda: disconnected.append(True))

        await session.detach()

        assert session.closed
        assert disconnected == [True]
        assert conn.session("SESSION-PAGE-1") is None
        with pytest.raises(SessionClosedError):
            await session.send("Page.enable")
        with pytest.raises(SessionClosedError):
            await session.detach()

    async def test_detached_event_rejects_pending_commands(self, transport):
        transport.handle("Page.navigate", lambda params, msg: transport.NO_REPLY)
        conn = CDPConnection(transport)
        session = await conn.create_session(PAGE_INFO)

        pending = asyncio.ensure_future(session.send("Page.navigate", {"url": "https://x.test"}))
        await asyncio.sleep(0.01)
        transport.emit_event("Target.detachedFromTarget", {"sessionId": "SESSION-PAGE-1"})

        with pytest.raises(SessionClosedError, match="Page.navigate"):
            await pending

    async def test_reattach_after_detach_opens_new_session(self, transport):
        conn = CDPConnection(transport)
        first = await conn.create_session(PAGE_INFO)
        transport.emit_event("Target.detachedFromTarget", {"sessionId": first.session_id})

        second = await conn.create_session(PAGE_INFO)

        assert second is not first
        assert not second.closed

    async def test_root_session_cannot_detach(self, transport):
        conn = CDPConnection(transport)
        assert conn.root_session.session_id == ROOT_SESSION_ID
        with pytest.raises(SessionClosedError):
            await conn.root_session.detach()


@pytest.mark.unit
@pytest.mark.asyncio
class TestEventWaiters:
    """wait_for_event resolves on the next occurrence or fails on close."""

    async def test_wait_for_event_resolves(self, transport):
        conn = CDPConnection(transport)
        waiter = conn.root_session.wait_for_event("Tracing.tracingComplete")

        transport.emit_event("Tracing.tracingComplete", {"stream": "S"})

        assert await waiter == {"stream": "S"}
        await asyncio.sleep(0)
        assert conn.root_session.listener_count("Tracing.tracingComplete") == 0

    async def test_wait_for_event_fails_on_disconnect(self, transport):
        conn = CDPConnection(transport)
        waiter = conn.root_session.wait_for_event("Tracing.tracingComplete")

        transport.disconnect()

        with pytest.raises(SessionClosedError):
            await waiter


@pytest.mark.unit
@pytest.mark.asyncio
class TestDisconnect:
    """Transport loss settles everything exactly once."""

    async def test_disconnect_fails_pending_sends(self, transport):
        transport.handle("Runtime.evaluate", lambda params, msg: transport.NO_REPLY)
        conn = CDPConnection(transport)
        session = await conn.create_session(PAGE_INFO)

        root_pending = asyncio.ensure_future(conn.root_session.send("Runtime.evaluate"))
        page_pending = asyncio.ensure_future(session.send("Runtime.evaluate"))
        await asyncio.sleep(0.01)
        transport.disconnect()

        with pytest.raises(ConnectionClosedError):
            await root_pending
        with pytest.raises(ConnectionClosedError):
            await page_pending
        assert session.closed
        assert conn.closed

    async def test_session_closed_during_failing_send_leaves_no_stray_error(self, transport):
        conn = CDPConnection(transport)
        session = await conn.create_session(PAGE_INFO)
        gate = asyncio.Event()

        async def stalled_send(message):
            await gate.wait()
            raise ConnectionClosedError("Fake transport closed")

        transport.send = stalled_send
        loop = asyncio.get_running_loop()
        loop_errors = []
        loop.set_exception_handler(lambda _, context: loop_errors.append(context))
        try:
            sender = asyncio.ensure_future(session.send("Page.enable"))
            await asyncio.sleep(0)
            transport.emit_event("Target.detachedFromTarget", {"sessionId": session.session_id})
            gate.set()

            with pytest.raises(ConnectionClosedError, match="Fake transport closed"):
                await sender
            del sender
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert session.closed
        assert loop_errors == []

    async def test_disconnect_broadcast_once(self, transport):
        conn = CDPConnection(transport)
        notifications = []
        conn.subscribe(ConnectionEvents.DISCONNECTED, lambda: notifications.append(True))

        transport.disconnect()
        conn._on_close()
        await conn.close()

        assert notifications == [True]

    async def test_send_after_close_fails(self, transport):
        conn = CDPConnection(transport)
        await conn.close()

        assert transport.closed
        with pytest.raises(ConnectionClosedError):
            await conn.root_session.send("Browser.getVersion")

    async def test_close_emits_disconnected(self, transport):
        conn = CDPConnection(transport)
        disconnected = asyncio.get_running_loop().create_future()
        conn.once(ConnectionEvents.DISCONNECTED, lambda: disconnected.set_result(True))

        await conn.close()

        assert await asyncio.wait_for(disconnected, timeout=1.0)
