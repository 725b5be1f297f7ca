"""Browser, context and target lifecycle over the Chrome DevTools Protocol.

This package provides:
- CDPConnection / CDPSession: one transport demultiplexed into per-target sessions
- TargetTracker: asynchronous target lifecycle (announced, usable, discarded)
- BrowserContext: isolation boundaries with cookies, permissions, geolocation
- Browser: contexts, pages, target waiting, tracing and shutdown
"""

from .browser import Browser, connect
from .config import Configuration
from .connection import CDPConnection, CDPSession
from .context import BrowserContext, ContextOptions, Geolocation
from .events import BrowserEvents, ContextEvents, PageEvents
from .exceptions import (
    CDPError,
    CDPConnectionError,
    ConnectionFailedError,
    ConnectionClosedError,
    SessionClosedError,
    CDPCommandError,
    CommandFailedError,
    CDPTimeoutError,
    ContractViolationError,
    InvalidArgumentError,
    TargetClosedError,
)
from .page import Page, Worker
from .target import Target, TargetType
from .transport import ConnectionTransport, SlowMoTransport, WebSocketTransport

__version__ = "0.2.0"

__all__ = [
    "Browser",
    "BrowserContext",
    "BrowserEvents",
    "CDPCommandError",
    "CDPConnection",
    "CDPConnectionError",
    "CDPError",
    "CDPSession",
    "CDPTimeoutError",
    "CommandFailedError",
    "Configuration",
    "ConnectionClosedError",
    "ConnectionFailedError",
    "ConnectionTransport",
    "ContextEvents",
    "ContextOptions",
    "ContractViolationError",
    "Geolocation",
    "InvalidArgumentError",
    "Page",
    "PageEvents",
    "SessionClosedError",
    "SlowMoTransport",
    "Target",
    "TargetClosedError",
    "TargetType",
    "WebSocketTransport",
    "Worker",
    "connect",
]
