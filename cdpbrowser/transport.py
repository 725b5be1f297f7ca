"""Transports carrying protocol messages to and from the browser.

Provides the ConnectionTransport boundary, a WebSocket implementation and a
slow-motion wrapper. Transports exchange plain dict messages; framing and
serialization stay inside the transport.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

try:
    import websockets
    from websockets.exceptions import ConnectionClosed
except ImportError:
    raise ImportError(
        "websockets library not found. Install with: pip3 install websockets"
    )

from .exceptions import (
    ConnectionClosedError,
    ConnectionFailedError,
    ContractViolationError,
)

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Dict[str, Any]], None]
CloseCallback = Callable[[], None]


class ConnectionTransport:
    """Bidirectional message channel to the browser process.

    The owner sets on_message and on_close. Inbound messages must be
    delivered in arrival order; on_close must fire once the channel is gone.
    """

    on_message: Optional[MessageCallback] = None
    on_close: Optional[CloseCallback] = None

    async def send(self, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class WebSocketTransport(ConnectionTransport):
    """JSON messages over a browser-level DevTools WebSocket.

    Usage:
        transport = await WebSocketTransport.create(ws_url)
        browser = await Browser.connect(transport)

    Attributes:
        ws_url: WebSocket debugger URL
        max_size: Maximum WebSocket message size in bytes (for large payloads)
    """

    def __init__(self, ws_url: str, *, max_size: int = 2_097_152):
        if not ws_url.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid WebSocket URL: {ws_url}")

        self.ws_url = ws_url
        self.max_size = max_size
        self.on_message = None
        self.on_close = None

        self._ws: Any = None
        self._receive_task: Optional[asyncio.Task] = None
        self._is_connected = False
        self._close_notified = False

    @classmethod
    async def create(
        cls, ws_url: str, *, max_size: int = 2_097_152
    ) -> "WebSocketTransport":
        transport = cls(ws_url, max_size=max_size)
        await transport.connect()
        return transport

    @property
    def is_connected(self) -> bool:
        """Check if WebSocket connection is active."""
        if not self._is_connected or self._ws is None:
            return False
        try:
            return self._ws.state.name == "OPEN"
        except AttributeError:
            return not getattr(self._ws, "closed", True)

    async def connect(self) -> None:
        """Establish WebSocket connection and start receive loop.

        Raises:
            ConnectionFailedError: If WebSocket connection fails
        """
        try:
            logger.info(f"Connecting to {self.ws_url}")
            self._ws = await websockets.connect(self.ws_url, max_size=self.max_size)
        except Exception as e:
            raise ConnectionFailedError(
                f"Failed to connect to {self.ws_url}: {e}",
                details={"url": self.ws_url, "error": str(e)},
            ) from e
        self._is_connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("WebSocket transport established")

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.is_connected:
            raise ConnectionClosedError("Cannot send message: transport not active")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise ConnectionClosedError(f"Connection closed: {e}") from e

    async def close(self) -> None:
        """Close WebSocket connection gracefully."""
        logger.info("Closing WebSocket transport")
        self._is_connected = False

        if self._receive_task and not self._receive_task.done():
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            try:
                if getattr(self._ws, "state", None) is None or self._ws.state.name != "CLOSED":
                    await self._ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")

        self._notify_closed()

    def _notify_closed(self) -> None:
        if self._close_notified:
            return
        self._close_notified = True
        self._is_connected = False
        if self.on_close is not None:
            self.on_close()

    async def _receive_loop(self) -> None:
        """Background task decoding frames and handing them to on_message.

        Malformed frames and handler errors are logged and skipped; a
        contract violation tears the transport down.
        """
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.error(f"Malformed CDP message: {e}")
                    continue
                try:
                    if self.on_message is not None:
                        self.on_message(message)
                except ContractViolationError:
                    raise
                except Exception as e:
                    logger.error(f"Error processing message: {e}", exc_info=True)
        except ConnectionClosed as e:
            logger.warning(f"WebSocket connection closed: {e}")
        except ContractViolationError:
            logger.critical("Protocol state contract violated, dropping connection", exc_info=True)
        except Exception as e:
            logger.error(f"Receive loop error: {e}", exc_info=True)
        finally:
            self._notify_closed()


class SlowMoTransport(ConnectionTransport):
    """Delays every outbound message by a fixed number of seconds."""

    @staticmethod
    def wrap(transport: ConnectionTransport, delay: Optional[float]) -> ConnectionTransport:
        return SlowMoTransport(transport, delay) if delay else transport

    def __init__(self, transport: ConnectionTransport, delay: float):
        self.delay = delay
        self._delegate = transport
        self.on_message = None
        self.on_close = None
        transport.on_message = self._on_message
        transport.on_close = self._on_close

    def _on_message(self, message: Dict[str, Any]) -> None:
        if self.on_message is not None:
            self.on_message(message)

    def _on_close(self) -> None:
        if self.on_close is not None:
            self.on_close()

    async def send(self, message: Dict[str, Any]) -> None:
        await asyncio.sleep(self.delay)
        await self._delegate.send(message)

    async def close(self) -> None:
        await self._delegate.close()
