"""Session multiplexing over a single browser transport.

Provides CDPConnection, which owns the transport and routes every inbound
message to the session it addresses, and CDPSession, the per-target
request/response channel with its own event stream.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from .events import ConnectionEvents, EventEmitter, SessionEvents
from .exceptions import (
    CommandFailedError,
    ConnectionClosedError,
    CDPTimeoutError,
    SessionClosedError,
)
from .logging_setup import log_with_context
from .transport import ConnectionTransport

logger = logging.getLogger(__name__)
protocol_logger = logging.getLogger("cdpbrowser.protocol")

ROOT_SESSION_ID = ""


class CDPSession(EventEmitter):
    """Logical channel bound to one protocol target.

    Protocol events addressed to the session are emitted by name with the
    event params as the single argument. Once closed, every send fails.

    Usage:
        session = await connection.create_session(target_info)
        await session.send("Page.enable")
        session.subscribe("Page.loadEventFired", on_load)
    """

    def __init__(
        self,
        connection: "CDPConnection",
        session_id: str,
        target_type: str,
        target_id: Optional[str] = None,
    ):
        super().__init__()
        self._connection = connection
        self._session_id = session_id
        self._target_type = target_type
        self._target_id = target_id
        self._callbacks: Dict[int, Tuple[asyncio.Future, str]] = {}
        self._event_waiters: List[asyncio.Future] = []
        self._closed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def target_id(self) -> Optional[str]:
        return self._target_id

    @property
    def is_root(self) -> bool:
        return self._session_id == ROOT_SESSION_ID

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(
        self,
        method: str,
        params: Optional[dict] = None,
        *,
        timeout: Optional[float] = None,
    ) -> dict:
        """Send command on this session and wait for its response.

        Args:
            method: Protocol method name (e.g., "Target.createTarget")
            params: Method parameters (default: empty dict)
            timeout: Command timeout in seconds (default: connection timeout, 0 = none)

        Returns:
            Command result dict (contents of "result" field in response)

        Raises:
            SessionClosedError: If the session is detached or closed
            ConnectionClosedError: If the connection drops before the response
            CDPTimeoutError: If command times out
            CommandFailedError: If the browser returns error response
        """
        if self._closed:
            raise SessionClosedError(
                f"Protocol error ({method}): Session closed. "
                "Most likely the target has been closed."
            )

        future = asyncio.get_running_loop().create_future()
        message_id = self._connection._next_message_id()
        self._callbacks[message_id] = (future, method)

        cmd_timeout = timeout if timeout is not None else self._connection.timeout
        try:
            await self._connection._raw_send(self._session_id, message_id, method, params)
            if not cmd_timeout:
                return await future
            return await asyncio.wait_for(future, timeout=cmd_timeout)
        except asyncio.TimeoutError:
            raise CDPTimeoutError(
                "Command timed out", operation=method, timeout=cmd_timeout
            ) from None
        finally:
            self._callbacks.pop(message_id, None)
            if future.done() and not future.cancelled():
                future.exception()

    def wait_for_event(self, event_name: str) -> asyncio.Future:
        """Future resolved with the params of the next matching event.

        The future fails with SessionClosedError if the session closes first.
        Cancelling it removes the subscription.
        """
        future = asyncio.get_running_loop().create_future()
        if self._closed:
            future.set_exception(SessionClosedError(f"Session closed while waiting for {event_name}"))
            return future

        def on_event(params: dict) -> None:
            if not future.done():
                future.set_result(params)

        def cleanup(_: asyncio.Future) -> None:
            if on_event in self._event_handlers.get(event_name, []):
                self.unsubscribe(event_name, on_event)
            if future in self._event_waiters:
                self._event_waiters.remove(future)

        self.subscribe(event_name, on_event)
        self._event_waiters.append(future)
        future.add_done_callback(cleanup)
        return future

    async def detach(self) -> None:
        """Detach from the target; the session becomes permanently unusable."""
        if self.is_root:
            raise SessionClosedError("Root session cannot be detached")
        if self._closed:
            raise SessionClosedError(
                f"Session already detached. Most likely the {self._target_type} "
                "has been closed."
            )
        await self._connection.root_session.send(
            "Target.detachFromTarget", {"sessionId": self._session_id}
        )
        self._connection._remove_session(self._session_id)

    def _on_message(self, message: dict) -> None:
        if "id" in message:
            entry = self._callbacks.pop(message["id"], None)
            if entry is None:
                return
            future, method = entry
            if future.done():
                return
            if "error" in message:
                future.set_exception(CommandFailedError.from_response(method, message["error"]))
            else:
                future.set_result(message.get("result", {}))
        elif "method" in message:
            self.emit(message["method"], message.get("params", {}))

    def _on_closed(self, reason: str = "Target closed") -> None:
        if self._closed:
            return
        self._closed = True
        for future, method in self._callbacks.values():
            if not future.done():
                future.set_exception(
                    SessionClosedError(f"Protocol error ({method}): {reason}.")
                )
        self._callbacks.clear()
        for future in list(self._event_waiters):
            if not future.done():
                future.set_exception(SessionClosedError(f"Session closed: {reason}"))
        self._event_waiters.clear()
        self.emit(SessionEvents.DISCONNECTED)

    def __repr__(self):
        return f"CDPSession(id={self._session_id!r}, target_type={self._target_type!r})"


class CDPConnection(EventEmitter):
    """Demultiplexes one transport into a root session and per-target sessions.

    Handles:
    - Message id allocation and framing with the routing key (sessionId)
    - Routing inbound messages to the addressed session
    - Idempotent session creation per target id
    - Single disconnect broadcast, failing every pending command

    Attributes:
        root_session: Session bound to no specific target
        timeout: Default command timeout in seconds (0 or None disables it)
    """

    def __init__(self, transport: ConnectionTransport, *, timeout: Optional[float] = None):
        super().__init__()
        self._transport = transport
        self._transport.on_message = self._on_message
        self._transport.on_close = self._on_close
        self.timeout = timeout

        self._last_id = 0
        self._sessions: Dict[str, CDPSession] = {}
        self._sessions_by_target: Dict[str, CDPSession] = {}
        self._pending_attach: Dict[str, "asyncio.Task[CDPSession]"] = {}
        self._closed = False

        self.root_session = CDPSession(self, ROOT_SESSION_ID, "browser")
        self._sessions[ROOT_SESSION_ID] = self.root_session

    @property
    def closed(self) -> bool:
        return self._closed

    def session(self, session_id: str) -> Optional[CDPSession]:
        return self._sessions.get(session_id)

    async def send(
        self, session: CDPSession, method: str, params: Optional[dict] = None
    ) -> dict:
        return await session.send(method, params)

    async def create_session(self, target_info: Dict[str, Any]) -> CDPSession:
        """Attach to a target, reusing the live session if one exists.

        Concurrent calls for the same target share a single attach round-trip.
        """
        target_id = target_info["targetId"]
        existing = self._sessions_by_target.get(target_id)
        if existing is not None and not existing.closed:
            return existing

        task = self._pending_attach.get(target_id)
        if task is None:
            task = asyncio.ensure_future(self._attach(target_info))
            self._pending_attach[target_id] = task
            task.add_done_callback(lambda _: self._pending_attach.pop(target_id, None))
        return await asyncio.shield(task)

    async def close(self) -> None:
        if not self._closed:
            await self._transport.close()
        self._on_close()

    async def _attach(self, target_info: Dict[str, Any]) -> CDPSession:
        result = await self.root_session.send(
            "Target.attachToTarget", {"targetId": target_info["targetId"], "flatten": True}
        )
        session_id = result["sessionId"]
        session = self._sessions.get(session_id)
        if session is None:
            session = self._register_session(session_id, target_info)
        return session

    def _register_session(self, session_id: str, target_info: Dict[str, Any]) -> CDPSession:
        target_id = target_info.get("targetId")
        session = CDPSession(self, session_id, target_info.get("type", "other"), target_id)
        self._sessions[session_id] = session
        if target_id:
            self._sessions_by_target[target_id] = session
        log_with_context(
            logger, logging.DEBUG, "Session attached",
            session_id=session_id, target_id=target_id,
        )
        return session

    def _remove_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.target_id and self._sessions_by_target.get(session.target_id) is session:
            del self._sessions_by_target[session.target_id]
        session._on_closed()
        logger.debug(f"Session detached: {session_id}")

    def _next_message_id(self) -> int:
        self._last_id += 1
        return self._last_id

    async def _raw_send(
        self, session_id: str, message_id: int, method: str, params: Optional[dict]
    ) -> None:
        if self._closed:
            raise ConnectionClosedError(
                f"Protocol error ({method}): connection not active"
            )
        message: Dict[str, Any] = {"id": message_id, "method": method, "params": params or {}}
        if session_id:
            message["sessionId"] = session_id
        protocol_logger.debug(f"SEND ► {message}")
        await self._transport.send(message)

    def _on_message(self, message: Dict[str, Any]) -> None:
        protocol_logger.debug(f"◀ RECV {message}")
        method = message.get("method")
        params = message.get("params", {})

        if method == "Target.attachedToTarget":
            session_id = params["sessionId"]
            if session_id not in self._sessions:
                self._register_session(session_id, params.get("targetInfo", {}))
        elif method == "Target.detachedFromTarget":
            self._remove_session(params["sessionId"])

        session_id = message.get("sessionId")
        if session_id:
            session = self._sessions.get(session_id)
            if session is None:
                logger.debug(f"Dropping message for unknown session {session_id}: {method or message.get('id')}")
                return
        else:
            session = self.root_session
        session._on_message(message)

    def _on_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._transport.on_message = None
        self._transport.on_close = None
        for session in list(self._sessions.values()):
            session._on_closed("Browser has disconnected")
        self._sessions.clear()
        self._sessions_by_target.clear()
        logger.info("Connection closed")
        self.emit(ConnectionEvents.DISCONNECTED)
