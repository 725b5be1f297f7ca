"""Default page and worker wrappers.

The browser materializes a wrapper at most once per target through a
factory coroutine ``factory(target, session)``; create_page and
create_worker are the factories used unless the caller supplies its own.
"""

import logging
from typing import TYPE_CHECKING, Optional

from .connection import CDPSession
from .events import EventEmitter, PageEvents

if TYPE_CHECKING:
    from .context import BrowserContext
    from .target import Target

logger = logging.getLogger(__name__)


class Page(EventEmitter):
    """Page wrapper bound to a target session.

    Emits PageEvents.CLOSE once, when the target is destroyed or its
    context goes away.
    """

    def __init__(self, target: "Target", session: CDPSession):
        super().__init__()
        self._target = target
        self._session = session
        self._closed = False
        self._owned_context: Optional["BrowserContext"] = None

    @property
    def target(self) -> "Target":
        return self._target

    @property
    def session(self) -> CDPSession:
        return self._session

    @property
    def context(self) -> "BrowserContext":
        return self._target.context

    @property
    def url(self) -> str:
        return self._target.url

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close the page target; a page created by Browser.new_page also closes its context."""
        if not self._closed:
            await self._target._browser._close_page(self)
        if self._owned_context is not None:
            await self._owned_context.close()

    def _did_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.emit(PageEvents.CLOSE, self)

    def __repr__(self):
        return f"Page(target_id={self._target.target_id!r}, url={self.url!r})"


class Worker:
    """Service or shared worker bound to a target session."""

    def __init__(self, target: "Target", session: CDPSession):
        self._target = target
        self._session = session
        self._closed = False

    @property
    def target(self) -> "Target":
        return self._target

    @property
    def session(self) -> CDPSession:
        return self._session

    @property
    def url(self) -> str:
        return self._target.url

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _did_close(self) -> None:
        self._closed = True

    def __repr__(self):
        return f"Worker(target_id={self._target.target_id!r}, url={self.url!r})"


async def create_page(target: "Target", session: CDPSession) -> Page:
    """Build the page wrapper and apply the context's geolocation override."""
    page = Page(target, session)
    geolocation = target.context.options.geolocation
    if geolocation is not None:
        await session.send("Emulation.setGeolocationOverride", geolocation.to_params())
    return page


async def create_worker(target: "Target", session: CDPSession) -> Worker:
    return Worker(target, session)
