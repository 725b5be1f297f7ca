"""Target lifecycle tracking.

TargetTracker consumes the root session's Target.* notifications and keeps
the authoritative target-id → Target table. Each target moves through
announced → initializing → usable | discarded, and consumers only hear
about it (created / changed / destroyed) once it has become usable.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .connection import CDPConnection, CDPSession
from .events import BrowserEvents
from .exceptions import ContractViolationError
from .target import Target

if TYPE_CHECKING:
    from .browser import Browser

logger = logging.getLogger(__name__)

OBSERVABLE_FIELDS = ("url", "title")


class TargetTracker:
    """Authoritative table of targets for one browser connection.

    Handlers run synchronously in notification order, so a destroy that
    follows a create on the root session always sees the created target.
    """

    def __init__(self, browser: "Browser", connection: CDPConnection):
        self._browser = browser
        self._connection = connection
        self._targets: Dict[str, Target] = {}

    def listen(self, session: CDPSession) -> None:
        session.subscribe("Target.targetCreated", self._on_target_created)
        session.subscribe("Target.targetDestroyed", self._on_target_destroyed)
        session.subscribe("Target.targetInfoChanged", self._on_target_info_changed)

    def get(self, target_id: str) -> Optional[Target]:
        return self._targets.get(target_id)

    def snapshot(self) -> List[Target]:
        return list(self._targets.values())

    def usable(self) -> List[Target]:
        return [t for t in self.snapshot() if t.is_initialized and not t.is_closed]

    def discard_pending(self) -> None:
        """Settle every outstanding initialization as discarded."""
        for target in self.snapshot():
            target._resolve_initialized(False)

    def _on_target_created(self, params: Dict[str, Any]) -> None:
        target_info = params["targetInfo"]
        target_id = target_info["targetId"]
        if target_id in self._targets:
            raise ContractViolationError(
                "Target should not exist before targetCreated",
                details={"target_id": target_id},
            )

        context = self._browser._context_for(target_info.get("browserContextId"))
        target = Target(
            self._browser,
            target_info,
            context,
            lambda: self._connection.create_session(target.target_info),
        )
        self._targets[target_id] = target
        logger.debug(f"Target announced: {target!r}")

        if target.is_ready():
            self._expose(target)

    def _on_target_destroyed(self, params: Dict[str, Any]) -> None:
        target_id = params["targetId"]
        target = self._targets.get(target_id)
        if target is None:
            raise ContractViolationError(
                "Target should exist before targetDestroyed",
                details={"target_id": target_id},
            )

        was_usable = target.is_initialized
        target._resolve_initialized(False)
        del self._targets[target_id]
        target._did_close()
        logger.debug(f"Target destroyed: {target!r}")

        if was_usable:
            self._browser.emit(BrowserEvents.TARGET_DESTROYED, target)

    def _on_target_info_changed(self, params: Dict[str, Any]) -> None:
        target_info = params["targetInfo"]
        target = self._targets.get(target_info["targetId"])
        if target is None:
            raise ContractViolationError(
                "Target should exist before targetInfoChanged",
                details={"target_id": target_info["targetId"]},
            )

        previous = {field: target.target_info.get(field) for field in OBSERVABLE_FIELDS}
        was_usable = target.is_initialized
        target._update_info(target_info)

        if target.is_closed:
            return
        if not was_usable:
            if not target._initialized.done() and target.is_ready():
                self._expose(target)
            return
        if any(target_info.get(field) != value for field, value in previous.items()):
            self._browser.emit(BrowserEvents.TARGET_CHANGED, target)

    def _expose(self, target: Target) -> None:
        target._resolve_initialized(True)
        logger.debug(f"Target usable: {target!r}")
        self._browser.emit(BrowserEvents.TARGET_CREATED, target)
