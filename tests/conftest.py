"""
Pytest configuration and shared fixtures.

FakeTransport stands in for a browser process: it answers protocol commands
the way the browser does, announcing targets before answering
Target.createTarget and keeping a cookie jar per context.
"""

import asyncio
import base64
from typing import Any, Callable, Dict, List, Optional

import pytest

from cdpbrowser.exceptions import ConnectionClosedError

NO_REPLY = object()
DEFAULT_CONTEXT_ID = "DEFAULT-CONTEXT"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without a browser process")


class ProtocolFailure(Exception):
    """Raised by a fake handler to answer with a protocol error."""

    def __init__(self, message: str, code: int = -32000):
        super().__init__(message)
        self.message = message
        self.code = code


class FakeTransport:
    """In-memory transport with browser-like default command handlers."""

    NO_REPLY = NO_REPLY
    Failure = ProtocolFailure

    def __init__(self):
        self.on_message = None
        self.on_close = None
        self.sent: List[dict] = []
        self.closed = False
        self.close_calls = 0
        self.handlers: Dict[str, Callable[[dict, dict], Any]] = {}
        self.targets: Dict[str, dict] = {}
        self.cookie_jars: Dict[str, List[dict]] = {}
        self.stream_chunks: List[bytes] = [b"trace-data"]
        self._context_seq = 0
        self._target_seq = 0
        self._install_defaults()

    # -- transport interface -------------------------------------------------

    async def send(self, message: dict) -> None:
        if self.closed:
            raise ConnectionClosedError("Fake transport closed")
        self.sent.append(message)
        asyncio.get_running_loop().call_soon(self._respond, message)

    async def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        asyncio.get_running_loop().call_soon(self._fire_close)

    # -- test helpers ----------------------------------------------------------

    def handle(self, method: str, handler: Callable[[dict, dict], Any]) -> None:
        self.handlers[method] = handler

    def deliver(self, message: dict) -> None:
        if self.closed or self.on_message is None:
            return
        self.on_message(message)

    def emit_event(self, method: str, params: dict, session_id: Optional[str] = None) -> None:
        message = {"method": method, "params": params}
        if session_id:
            message["sessionId"] = session_id
        self.deliver(message)

    def emit_later(self, method: str, params: dict, session_id: Optional[str] = None) -> None:
        asyncio.get_running_loop().call_soon(self.emit_event, method, params, session_id)

    def announce(
        self,
        target_id: str,
        target_type: str = "page",
        url: str = "https://example.com/",
        context_id: Optional[str] = DEFAULT_CONTEXT_ID,
        **extra,
    ) -> dict:
        info = {
            "targetId": target_id,
            "type": target_type,
            "title": "",
            "url": url,
            "attached": False,
            **extra,
        }
        if context_id is not None:
            info["browserContextId"] = context_id
        self.targets[target_id] = info
        self.emit_event("Target.targetCreated", {"targetInfo": dict(info)})
        return info

    def change(self, target_id: str, **fields) -> None:
        self.targets[target_id].update(fields)
        self.emit_event("Target.targetInfoChanged", {"targetInfo": dict(self.targets[target_id])})

    def destroy(self, target_id: str) -> None:
        self.targets.pop(target_id, None)
        self.emit_event("Target.targetDestroyed", {"targetId": target_id})

    def disconnect(self) -> None:
        """Simulate the browser process going away."""
        self.closed = True
        if self.on_close is not None:
            self.on_close()

    def commands(self, method: str) -> List[dict]:
        return [m for m in self.sent if m["method"] == method]

    # -- internals -------------------------------------------------------------

    def _fire_close(self) -> None:
        if self.on_close is not None:
            self.on_close()

    def _respond(self, message: dict) -> None:
        if self.closed:
            return
        handler = self.handlers.get(message["method"], lambda params, msg: {})
        reply: Dict[str, Any] = {"id": message["id"]}
        try:
            result = handler(message.get("params", {}), message)
        except ProtocolFailure as e:
            reply["error"] = {"code": e.code, "message": e.message}
        else:
            if result is NO_REPLY:
                return
            reply["result"] = result
        if "sessionId" in message:
            reply["sessionId"] = message["sessionId"]
        self.deliver(reply)

    def _install_defaults(self) -> None:
        self.handle("Target.createBrowserContext", self._create_context)
        self.handle("Target.disposeBrowserContext", self._dispose_context)
        self.handle("Target.createTarget", self._create_target)
        self.handle("Target.closeTarget", self._close_target)
        self.handle("Target.attachToTarget", self._attach)
        self.handle("Target.detachFromTarget", self._detach)
        self.handle("Storage.getCookies", self._get_cookies)
        self.handle("Storage.setCookies", self._set_cookies)
        self.handle("Storage.clearCookies", self._clear_cookies)
        self.handle("Tracing.end", self._end_tracing)
        self.handle("IO.read", self._read_stream)

    def _create_context(self, params, message):
        self._context_seq += 1
        return {"browserContextId": f"CONTEXT-{self._context_seq}"}

    def _dispose_context(self, params, message):
        context_id = params["browserContextId"]
        for target_id, info in list(self.targets.items()):
            if info.get("browserContextId") == context_id:
                self.targets.pop(target_id)
                self.emit_later("Target.targetDestroyed", {"targetId": target_id})
        return {}

    def _create_target(self, params, message):
        self._target_seq += 1
        target_id = f"PAGE-{self._target_seq}"
        self.announce(
            target_id,
            url=params.get("url", "about:blank"),
            context_id=params.get("browserContextId", DEFAULT_CONTEXT_ID),
        )
        return {"targetId": target_id}

    def _close_target(self, params, message):
        target_id = params["targetId"]
        if target_id in self.targets:
            self.targets.pop(target_id)
            self.emit_later("Target.targetDestroyed", {"targetId": target_id})
        return {"success": True}

    def _attach(self, params, message):
        target_id = params["targetId"]
        session_id = f"SESSION-{target_id}"
        self.emit_event(
            "Target.attachedToTarget",
            {
                "sessionId": session_id,
                "targetInfo": dict(self.targets.get(target_id, {"targetId": target_id, "type": "page"})),
                "waitingForDebugger": False,
            },
        )
        return {"sessionId": session_id}

    def _detach(self, params, message):
        self.emit_event("Target.detachedFromTarget", {"sessionId": params["sessionId"]})
        return {}

    def _get_cookies(self, params, message):
        jar = self.cookie_jars.get(params.get("browserContextId", ""), [])
        return {"cookies": [{**c, "size": 2, "priority": "Medium"} for c in jar]}

    def _set_cookies(self, params, message):
        jar = self.cookie_jars.setdefault(params.get("browserContextId", ""), [])
        for cookie in params["cookies"]:
            stored = dict(cookie)
            url = stored.pop("url", None)
            if url:
                stored["domain"] = url.split("/")[2]
                stored["path"] = "/"
            stored.setdefault("expires", -1)
            stored.setdefault("httpOnly", False)
            stored.setdefault("secure", False)
            stored.setdefault("session", True)
            jar.append(stored)
        return {}

    def _clear_cookies(self, params, message):
        self.cookie_jars.pop(params.get("browserContextId", ""), None)
        return {}

    def _end_tracing(self, params, message):
        self.emit_later("Tracing.tracingComplete", {"stream": "TRACE-STREAM"}, message.get("sessionId"))
        return {}

    def _read_stream(self, params, message):
        chunk = self.stream_chunks.pop(0) if self.stream_chunks else b""
        return {
            "data": base64.b64encode(chunk).decode("ascii"),
            "base64Encoded": True,
            "eof": not self.stream_chunks,
        }


@pytest.fixture
def transport():
    """Fresh fake browser transport."""
    return FakeTransport()
