"""Browser facade over a multiplexed protocol connection.

Browser composes the connection, the target tracker and the context set
into the caller-facing API: contexts, pages, target enumeration and
waiting, tracing and shutdown.

Usage:
    transport = await WebSocketTransport.create(ws_url)
    browser = await Browser.connect(transport)
    context = await browser.new_context()
    page = await context.new_page()
    await browser.close()
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .config import Configuration
from .connection import CDPConnection, CDPSession
from .context import BrowserContext, ContextOptions, validate_options
from .events import BrowserEvents, ConnectionEvents, EventEmitter
from .exceptions import (
    ConnectionClosedError,
    CDPTimeoutError,
    InvalidArgumentError,
    TargetClosedError,
)
from .page import Page, Worker, create_page, create_worker
from .protocol_stream import read_protocol_stream
from .target import Target, TargetType
from .tracker import TargetTracker
from .transport import ConnectionTransport, SlowMoTransport

logger = logging.getLogger(__name__)

DEFAULT_TRACING_CATEGORIES = [
    "-*",
    "devtools.timeline",
    "v8.execute",
    "disabled-by-default-devtools.timeline",
    "disabled-by-default-devtools.timeline.frame",
    "toplevel",
    "blink.console",
    "blink.user_timing",
    "latencyInfo",
    "disabled-by-default-devtools.timeline.stack",
    "disabled-by-default-v8.cpu_profiler",
    "disabled-by-default-v8.cpu_profiler.hires",
]
SCREENSHOT_TRACING_CATEGORY = "disabled-by-default-devtools.screenshot"

PageFactory = Callable[[Target, CDPSession], Awaitable[Any]]


class Browser(EventEmitter):
    """Caller-facing browser bound to one connection.

    Emits BrowserEvents.TARGET_CREATED / TARGET_CHANGED / TARGET_DESTROYED
    for usable targets only, and BrowserEvents.DISCONNECTED once.

    Attributes:
        default_context: The non-closable default context
        config: Configuration in effect
    """

    @classmethod
    async def connect(
        cls,
        transport: ConnectionTransport,
        *,
        config: Optional[Configuration] = None,
        page_factory: Optional[PageFactory] = None,
        worker_factory: Optional[PageFactory] = None,
    ) -> "Browser":
        """Wrap transport, build the browser and enable target discovery.

        Target notifications are only sent by the browser after discovery
        is enabled, which happens once every handler is in place.
        """
        config = config or Configuration()
        connection = CDPConnection(
            SlowMoTransport.wrap(transport, config.slow_mo),
            timeout=config.command_timeout,
        )
        browser = cls(
            connection,
            config=config,
            page_factory=page_factory,
            worker_factory=worker_factory,
        )
        await connection.root_session.send("Target.setDiscoverTargets", {"discover": True})
        logger.info("Browser connected, target discovery enabled")
        return browser

    def __init__(
        self,
        connection: CDPConnection,
        *,
        config: Optional[Configuration] = None,
        page_factory: Optional[PageFactory] = None,
        worker_factory: Optional[PageFactory] = None,
    ):
        super().__init__()
        self.config = config or Configuration()
        self._connection = connection
        self._client = connection.root_session
        self._page_factory = page_factory or create_page
        self._worker_factory = worker_factory or create_worker

        self.default_context = BrowserContext(self, None)
        self._contexts: Dict[str, BrowserContext] = {}
        self._tracker = TargetTracker(self, connection)

        self._tracing_client: Optional[CDPSession] = None
        self._tracing_path: Optional[Union[str, Path]] = None

        self._connection.subscribe(ConnectionEvents.DISCONNECTED, self._on_disconnected)
        self._tracker.listen(self._client)

    @property
    def connection(self) -> CDPConnection:
        return self._connection

    def is_connected(self) -> bool:
        return not self._connection.closed

    def contexts(self) -> List[BrowserContext]:
        return list(self._contexts.values())

    async def new_context(self, options: Optional[ContextOptions] = None) -> BrowserContext:
        """Provision an isolated context and apply its options."""
        options = options or ContextOptions()
        validate_options(options)
        result = await self._client.send("Target.createBrowserContext")
        context_id = result["browserContextId"]
        context = BrowserContext(self, context_id, options)
        self._contexts[context_id] = context
        await context._initialize()
        logger.debug(f"Context created: {context_id}")
        return context

    async def new_page(self, options: Optional[ContextOptions] = None) -> Page:
        """Page in a fresh context; closing the page closes that context."""
        context = await self.new_context(options)
        page = await context.new_page()
        page._owned_context = context
        return page

    def targets(self, context: Optional[BrowserContext] = None) -> List[Target]:
        targets = self._all_targets()
        if context is None:
            return targets
        return [t for t in targets if t.context is context]

    def browser_target(self) -> Optional[Target]:
        for target in self._tracker.snapshot():
            if target.type == TargetType.BROWSER:
                return target
        return None

    async def service_worker(self, target: Target) -> Optional[Worker]:
        return await target.worker()

    def page_target(self, page: Page) -> Target:
        return page.target

    async def wait_for_target(
        self,
        predicate: Callable[[Target], bool],
        *,
        timeout: Optional[float] = None,
    ) -> Target:
        """Wait for a usable target satisfying predicate.

        Args:
            predicate: Called with each candidate target
            timeout: Seconds to wait (default: config.wait_for_target_timeout, 0 = forever)

        Raises:
            CDPTimeoutError: If no target matched in time
            ConnectionClosedError: If the browser disconnects while waiting
        """
        if timeout is None:
            timeout = self.config.wait_for_target_timeout
        for target in self._all_targets():
            if predicate(target):
                return target
        if self._connection.closed:
            raise ConnectionClosedError("Browser disconnected while waiting for target")

        future = asyncio.get_running_loop().create_future()

        def check(target: Target) -> None:
            if not future.done() and predicate(target):
                future.set_result(target)

        def on_disconnected() -> None:
            if not future.done():
                future.set_exception(
                    ConnectionClosedError("Browser disconnected while waiting for target")
                )

        self.subscribe(BrowserEvents.TARGET_CREATED, check)
        self.subscribe(BrowserEvents.TARGET_CHANGED, check)
        self.subscribe(BrowserEvents.DISCONNECTED, on_disconnected)
        try:
            if not timeout:
                return await future
            try:
                return await asyncio.wait_for(future, timeout=timeout)
            except asyncio.TimeoutError:
                raise CDPTimeoutError(
                    "Waiting for target failed", operation="wait_for_target", timeout=timeout
                ) from None
        finally:
            self.unsubscribe(BrowserEvents.TARGET_CREATED, check)
            self.unsubscribe(BrowserEvents.TARGET_CHANGED, check)
            self.unsubscribe(BrowserEvents.DISCONNECTED, on_disconnected)

    async def start_tracing(
        self,
        page: Optional[Page] = None,
        *,
        path: Optional[Union[str, Path]] = None,
        screenshots: bool = False,
        categories: Optional[List[str]] = None,
    ) -> None:
        """Start recording a trace on page's session, or browser-wide.

        Raises:
            InvalidArgumentError: If a trace is already being recorded
        """
        if self._tracing_client is not None:
            raise InvalidArgumentError("Cannot start recording trace while already recording trace.")
        client = page.session if page is not None else self._client

        categories = list(categories if categories is not None else DEFAULT_TRACING_CATEGORIES)
        if screenshots:
            categories.append(SCREENSHOT_TRACING_CATEGORY)

        self._tracing_client = client
        self._tracing_path = path
        try:
            await client.send(
                "Tracing.start",
                {"transferMode": "ReturnAsStream", "categories": ",".join(categories)},
            )
        except Exception:
            self._tracing_client = None
            self._tracing_path = None
            raise

    async def stop_tracing(self) -> bytes:
        """Stop recording and return the trace data.

        Both the Tracing.end acknowledgment and the Tracing.tracingComplete
        notification are awaited before the stream is drained.

        Raises:
            InvalidArgumentError: If tracing was not started
        """
        client = self._tracing_client
        if client is None:
            raise InvalidArgumentError("Tracing was not started.")
        path = self._tracing_path
        self._tracing_client = None
        self._tracing_path = None

        completed = client.wait_for_event("Tracing.tracingComplete")
        try:
            await client.send("Tracing.end")
        except BaseException:
            completed.cancel()
            raise
        event = await completed
        return await read_protocol_stream(client, event["stream"], path)

    async def close(self) -> None:
        """Close every context, then the connection, and wait for the disconnect."""
        if self._connection.closed:
            return
        disconnected = asyncio.get_running_loop().create_future()

        def on_disconnected() -> None:
            if not disconnected.done():
                disconnected.set_result(None)

        self._connection.once(ConnectionEvents.DISCONNECTED, on_disconnected)
        try:
            await asyncio.gather(*(context.close() for context in self.contexts()))
        finally:
            await self._connection.close()
        await disconnected

    def _all_targets(self) -> List[Target]:
        return self._tracker.usable()

    def _context_for(self, context_id: Optional[str]) -> BrowserContext:
        if context_id and context_id in self._contexts:
            return self._contexts[context_id]
        return self.default_context

    async def _page_for_created_target(self, target_id: str) -> Page:
        target = self._tracker.get(target_id)
        if target is None or not await target.initialized():
            raise TargetClosedError("Failed to create target for page", target_id=target_id)
        return await target.page()

    async def _close_page(self, page: Page) -> None:
        await self._client.send("Target.closeTarget", {"targetId": page.target.target_id})

    def _context_closed(self, context: BrowserContext) -> None:
        self._contexts.pop(context.context_id, None)
        context._did_close()
        for target in self._tracker.snapshot():
            if target.context is context:
                target._did_close()
        logger.debug(f"Context closed: {context.context_id}")

    def _on_disconnected(self) -> None:
        self._tracker.discard_pending()
        for context in [self.default_context, *self.contexts()]:
            context._did_close()
        logger.info("Browser disconnected")
        self.emit(BrowserEvents.DISCONNECTED)

    def __repr__(self):
        return f"Browser(connected={self.is_connected()}, contexts={len(self._contexts)})"


async def connect(transport: ConnectionTransport, **kwargs) -> Browser:
    return await Browser.connect(transport, **kwargs)
