"""Browser contexts: isolation boundaries grouping targets.

The default context always exists and cannot be closed; on-demand contexts
are provisioned with Target.createBrowserContext and disposed on close().
Cookies and permissions live in the browser and are never cached here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .events import ContextEvents, EventEmitter
from .exceptions import InvalidArgumentError
from .target import TargetType

if TYPE_CHECKING:
    from .browser import Browser
    from .page import Page

logger = logging.getLogger(__name__)

# Caller-facing permission names → Browser.PermissionType
WEB_PERMISSION_TO_PROTOCOL: Dict[str, str] = {
    "geolocation": "geolocation",
    "midi": "midi",
    "notifications": "notifications",
    "camera": "videoCapture",
    "microphone": "audioCapture",
    "background-sync": "backgroundSync",
    "ambient-light-sensor": "sensors",
    "accelerometer": "sensors",
    "gyroscope": "sensors",
    "magnetometer": "sensors",
    "accessibility-events": "accessibilityEvents",
    "clipboard-read": "clipboardReadWrite",
    "clipboard-write": "clipboardSanitizedWrite",
    "payment-handler": "paymentHandler",
    # chrome-specific
    "midi-sysex": "midiSysex",
}

TRANSPORT_ONLY_COOKIE_FIELDS = ("size", "priority")


@dataclass
class Geolocation:
    latitude: float
    longitude: float
    accuracy: float = 0.0

    def validate(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise InvalidArgumentError(
                f"Invalid latitude \"{self.latitude}\": precondition -90 <= LATITUDE <= 90 failed."
            )
        if not -180 <= self.longitude <= 180:
            raise InvalidArgumentError(
                f"Invalid longitude \"{self.longitude}\": precondition -180 <= LONGITUDE <= 180 failed."
            )
        if self.accuracy < 0:
            raise InvalidArgumentError(
                f"Invalid accuracy \"{self.accuracy}\": precondition 0 <= ACCURACY failed."
            )

    def to_params(self) -> Dict[str, float]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
        }


@dataclass
class ContextOptions:
    """Options applied to a context right after it is provisioned.

    Attributes:
        permissions: origin → permission names granted on creation
        geolocation: geolocation override for every page of the context
    """

    permissions: Dict[str, List[str]] = field(default_factory=dict)
    geolocation: Optional[Geolocation] = None


def validate_options(options: ContextOptions) -> None:
    if options.geolocation is not None:
        options.geolocation.validate()
    for names in options.permissions.values():
        _permissions_to_protocol(names)


def _permissions_to_protocol(names: List[str]) -> List[str]:
    protocol_permissions = []
    for name in names:
        protocol_permission = WEB_PERMISSION_TO_PROTOCOL.get(name)
        if protocol_permission is None:
            raise InvalidArgumentError(f"Unknown permission: {name}")
        protocol_permissions.append(protocol_permission)
    return protocol_permissions


def _normalize_cookie(cookie: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {"sameSite": "None", **cookie}
    for name in TRANSPORT_ONLY_COOKIE_FIELDS:
        normalized.pop(name, None)
    return normalized


def _rewrite_cookies(cookies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rewritten = []
    for cookie in cookies:
        if not cookie.get("name"):
            raise InvalidArgumentError("Cookie should have a name")
        if "value" not in cookie:
            raise InvalidArgumentError(f"Cookie {cookie['name']} should have a value")
        url = cookie.get("url")
        if url:
            if cookie.get("domain") or cookie.get("path"):
                raise InvalidArgumentError("Cookie should have either url or domain/path, not both")
            if url == "about:blank" or url.startswith("data:"):
                raise InvalidArgumentError(f"Blank page can not have cookie \"{cookie['name']}\"")
        elif not (cookie.get("domain") and cookie.get("path")):
            raise InvalidArgumentError("Cookie should have a url or a domain/path pair")
        rewritten.append(dict(cookie))
    return rewritten


class BrowserContext(EventEmitter):
    """Isolation boundary grouping targets that share cookies and permissions.

    Pages are derived from the browser's target table on every call; the
    context keeps no list of its own.

    Attributes:
        context_id: Protocol browserContextId, None for the default context
        options: Options the context was created with
    """

    def __init__(
        self,
        browser: "Browser",
        context_id: Optional[str],
        options: Optional[ContextOptions] = None,
    ):
        super().__init__()
        self._browser = browser
        self._context_id = context_id
        self._options = options or ContextOptions()
        self._closed = False

    @property
    def context_id(self) -> Optional[str]:
        return self._context_id

    @property
    def options(self) -> ContextOptions:
        return self._options

    @property
    def is_default(self) -> bool:
        return self._context_id is None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def browser(self) -> "Browser":
        return self._browser

    async def pages(self) -> List["Page"]:
        """Materialized pages of every usable page target in this context.

        Pages whose materialization fails are left out instead of failing
        the whole call.
        """
        if self._closed:
            return []
        targets = [
            t for t in self._browser._all_targets()
            if t.context is self and t.type == TargetType.PAGE
        ]
        results = await asyncio.gather(*(t.page() for t in targets), return_exceptions=True)
        pages = []
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.debug(f"Skipping page of {target!r}: {result}")
                continue
            if result is not None:
                pages.append(result)
        return pages

    def existing_pages(self) -> List["Page"]:
        pages = []
        for target in self._browser._tracker.snapshot():
            if target.context is not self:
                continue
            page = target.materialized_page()
            if page is not None:
                pages.append(page)
        return pages

    async def new_page(self) -> "Page":
        """Create a page target in this context and wait until it is usable."""
        result = await self._browser._client.send(
            "Target.createTarget", {"url": "about:blank", **self._context_params()}
        )
        return await self._browser._page_for_created_target(result["targetId"])

    async def close(self) -> None:
        """Dispose the context; its pages are notified and its targets orphaned.

        Raises:
            InvalidArgumentError: On the default context
        """
        if self._context_id is None:
            raise InvalidArgumentError("Non-incognito profiles cannot be closed!")
        if self._closed:
            return
        await self._browser._client.send(
            "Target.disposeBrowserContext", {"browserContextId": self._context_id}
        )
        self._browser._context_closed(self)

    async def cookies(self) -> List[Dict[str, Any]]:
        result = await self._browser._client.send("Storage.getCookies", self._context_params())
        return [_normalize_cookie(c) for c in result.get("cookies", [])]

    async def set_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        await self._browser._client.send(
            "Storage.setCookies",
            {"cookies": _rewrite_cookies(cookies), **self._context_params()},
        )

    async def clear_cookies(self) -> None:
        await self._browser._client.send("Storage.clearCookies", self._context_params())

    async def set_permissions(self, origin: str, permissions: List[str]) -> None:
        """Grant permissions to origin.

        Raises:
            InvalidArgumentError: If any name is unknown; nothing is granted then
        """
        protocol_permissions = _permissions_to_protocol(permissions)
        await self._browser._client.send(
            "Browser.grantPermissions",
            {"origin": origin, "permissions": protocol_permissions, **self._context_params()},
        )

    async def clear_permissions(self) -> None:
        await self._browser._client.send("Browser.resetPermissions", self._context_params())

    async def set_geolocation(self, geolocation: Optional[Geolocation]) -> None:
        """Override geolocation on every page of the context (None clears it).

        Every page is attempted. If any fail, the first failure in page order
        is raised after all attempts settle and the rest are logged.
        """
        if geolocation is not None:
            geolocation.validate()
        self._options.geolocation = geolocation
        params = geolocation.to_params() if geolocation is not None else {}

        pages = await self.pages()
        results = await asyncio.gather(
            *(page.session.send("Emulation.setGeolocationOverride", params) for page in pages),
            return_exceptions=True,
        )
        errors = [(page, r) for page, r in zip(pages, results) if isinstance(r, Exception)]
        for page, error in errors[1:]:
            logger.warning(f"Geolocation override failed for {page!r}: {error}")
        if errors:
            raise errors[0][1]

    async def _initialize(self) -> None:
        for origin, names in self._options.permissions.items():
            await self.set_permissions(origin, names)
        if self._options.geolocation is not None:
            await self.set_geolocation(self._options.geolocation)

    def _context_params(self) -> Dict[str, str]:
        return {"browserContextId": self._context_id} if self._context_id else {}

    def _did_close(self) -> None:
        if self._closed:
            return
        for page in self.existing_pages():
            page._did_close()
        self._closed = True
        self.emit(ContextEvents.CLOSE, self)

    def __repr__(self):
        return f"BrowserContext(id={self._context_id!r})"
