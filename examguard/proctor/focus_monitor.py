"""
Focus Monitor - Tab switch and window blur detection

The browser reports visibility and focus changes; while the exam is running
the first loss of focus ends the session. There is no grace period.
"""

import logging
from typing import Callable, Optional

from .events import ReasonCode, ViolationEvent

logger = logging.getLogger(__name__)


class FocusMonitor:
    """
    Independent violation channel for loss of focus.

    Emits nothing unless attached. The session attaches it on entering
    Active and detaches it on leaving.
    """

    def __init__(self, on_violation: Callable[[ViolationEvent], None]):
        self.on_violation = on_violation
        self._attached = False
        self.events_seen = 0

    @property
    def is_attached(self) -> bool:
        return self._attached

    def attach(self):
        self._attached = True

    def detach(self):
        self._attached = False

    def visibility_changed(self, hidden: bool) -> Optional[ViolationEvent]:
        """Document visibility changed (visibilitychange)"""
        self.events_seen += 1
        if hidden:
            return self._emit("visibility hidden")
        return None

    def window_blurred(self) -> Optional[ViolationEvent]:
        """Window lost focus (blur)"""
        self.events_seen += 1
        return self._emit("window blur")

    def window_focused(self) -> None:
        """Window regained focus. Never a violation."""
        self.events_seen += 1
        return None

    def handle_event(self, event: str) -> Optional[ViolationEvent]:
        """
        Dispatch a host event by name.

        Args:
            event: "hidden", "visible", "blur" or "focus"

        Returns:
            The violation emitted, if any
        """
        if event == "hidden":
            return self.visibility_changed(True)
        if event == "visible":
            return self.visibility_changed(False)
        if event == "blur":
            return self.window_blurred()
        if event == "focus":
            return self.window_focused()
        raise ValueError(f"Unknown focus event: {event}")

    def _emit(self, cause: str) -> Optional[ViolationEvent]:
        if not self._attached:
            logger.debug(f"Ignoring {cause}: monitor detached")
            return None
        logger.info(f"Focus lost ({cause})")
        event = ViolationEvent(reason=ReasonCode.TAB_SWITCH, source="focus")
        self.on_violation(event)
        return event
