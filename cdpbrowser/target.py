"""Protocol targets tracked by the browser.

A Target is announced by the browser, becomes usable once ready (or is
discarded), and lazily materializes a page or worker wrapper on demand.
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from .exceptions import TargetClosedError

if TYPE_CHECKING:
    from .browser import Browser
    from .connection import CDPSession
    from .context import BrowserContext
    from .page import Page, Worker

logger = logging.getLogger(__name__)


class TargetType(str, Enum):
    PAGE = "page"
    BACKGROUND_PAGE = "background_page"
    SERVICE_WORKER = "service_worker"
    SHARED_WORKER = "shared_worker"
    WORKER = "worker"
    IFRAME = "iframe"
    BROWSER = "browser"
    OTHER = "other"

    @classmethod
    def from_protocol(cls, value: Optional[str]) -> "TargetType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


PAGE_TYPES = (TargetType.PAGE, TargetType.BACKGROUND_PAGE)
WORKER_TYPES = (TargetType.SERVICE_WORKER, TargetType.SHARED_WORKER)


class Target:
    """
    Represents a debuggable browser target (page, worker, iframe, browser).

    The initialization outcome resolves exactly once: True when the target
    becomes usable, False when it is discarded before that.

    Attributes:
        target_id: Unique target ID
        type: Target kind
        url: Target URL
        title: Page title or worker name
        context: BrowserContext the target belongs to
    """

    def __init__(
        self,
        browser: "Browser",
        target_info: Dict[str, Any],
        context: "BrowserContext",
        session_factory: Callable[[], Awaitable["CDPSession"]],
    ):
        self._browser = browser
        self._target_info = dict(target_info)
        self._context = context
        self._session_factory = session_factory

        self._initialized: asyncio.Future = asyncio.get_running_loop().create_future()
        self._closed = False
        self._page_task: Optional[asyncio.Task] = None
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def target_id(self) -> str:
        return self._target_info["targetId"]

    @property
    def type(self) -> TargetType:
        return TargetType.from_protocol(self._target_info.get("type"))

    @property
    def url(self) -> str:
        return self._target_info.get("url", "")

    @property
    def title(self) -> str:
        return self._target_info.get("title", "")

    @property
    def context(self) -> "BrowserContext":
        return self._context

    @property
    def target_info(self) -> Dict[str, Any]:
        return dict(self._target_info)

    @property
    def is_initialized(self) -> bool:
        return self._initialized.done() and self._initialized.result()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def is_ready(self) -> bool:
        """Pages are not usable until the browser reports their URL."""
        return self.type != TargetType.PAGE or self.url != ""

    def opener(self) -> Optional["Target"]:
        opener_id = self._target_info.get("openerId")
        if not opener_id:
            return None
        return self._browser._tracker.get(opener_id)

    async def initialized(self) -> bool:
        """Wait for the initialization outcome."""
        return await asyncio.shield(self._initialized)

    async def session(self) -> "CDPSession":
        """Session attached to this target, created on first access."""
        if self._closed:
            raise TargetClosedError("Target closed", target_id=self.target_id)
        return await self._session_factory()

    async def page(self) -> Optional["Page"]:
        """Page wrapper for page targets, None for other kinds.

        The wrapper is created at most once; later calls return the same instance.
        """
        if self.type not in PAGE_TYPES:
            return None
        if self._page_task is None:
            if self._closed:
                raise TargetClosedError("Target closed", target_id=self.target_id)
            self._page_task = asyncio.ensure_future(
                self._materialize(self._browser._page_factory)
            )
        return await asyncio.shield(self._page_task)

    async def worker(self) -> Optional["Worker"]:
        """Worker wrapper for service and shared workers, None for other kinds."""
        if self.type not in WORKER_TYPES:
            return None
        if self._worker_task is None:
            if self._closed:
                raise TargetClosedError("Target closed", target_id=self.target_id)
            self._worker_task = asyncio.ensure_future(
                self._materialize(self._browser._worker_factory)
            )
        return await asyncio.shield(self._worker_task)

    def materialized_page(self) -> Optional["Page"]:
        return _task_value(self._page_task)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.target_id,
            "type": self.type.value,
            "title": self.title,
            "url": self.url,
            "browserContextId": self._context.context_id,
        }

    async def _materialize(self, factory):
        session = await self.session()
        wrapper = await factory(self, session)
        if self._closed:
            wrapper._did_close()
        return wrapper

    def _resolve_initialized(self, usable: bool) -> None:
        if not self._initialized.done():
            self._initialized.set_result(usable)

    def _update_info(self, target_info: Dict[str, Any]) -> None:
        self._target_info = dict(target_info)

    def _did_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._resolve_initialized(False)
        for wrapper in (_task_value(self._page_task), _task_value(self._worker_task)):
            if wrapper is not None:
                wrapper._did_close()

    def __repr__(self):
        return f"Target(id={self.target_id!r}, type={self.type.value!r}, url={self.url!r})"


def _task_value(task: Optional[asyncio.Task]):
    if task is None or not task.done() or task.cancelled() or task.exception() is not None:
        return None
    return task.result()
