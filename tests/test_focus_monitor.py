"""
Tests for FocusMonitor
"""

import pytest
from unittest.mock import Mock

from examguard.proctor.events import ReasonCode
from examguard.proctor.focus_monitor import FocusMonitor


class TestFocusMonitor:
    """Tests for tab switch and blur detection"""

    def test_detached_emits_nothing(self):
        """Events before attach() are ignored"""
        callback = Mock()
        monitor = FocusMonitor(callback)

        assert monitor.handle_event("hidden") is None
        assert monitor.handle_event("blur") is None
        callback.assert_not_called()

    def test_hidden_emits_tab_switch(self):
        callback = Mock()
        monitor = FocusMonitor(callback)
        monitor.attach()

        event = monitor.handle_event("hidden")

        assert event.reason == ReasonCode.TAB_SWITCH
        assert event.source == "focus"
        callback.assert_called_once_with(event)

    def test_blur_emits_tab_switch(self):
        callback = Mock()
        monitor = FocusMonitor(callback)
        monitor.attach()

        event = monitor.handle_event("blur")

        assert event.reason == ReasonCode.TAB_SWITCH
        callback.assert_called_once()

    def test_focus_and_visible_are_not_violations(self):
        callback = Mock()
        monitor = FocusMonitor(callback)
        monitor.attach()

        assert monitor.handle_event("focus") is None
        assert monitor.handle_event("visible") is None
        callback.assert_not_called()
        assert monitor.events_seen == 2

    def test_detach_stops_emitting(self):
        callback = Mock()
        monitor = FocusMonitor(callback)
        monitor.attach()
        monitor.detach()

        monitor.handle_event("hidden")

        assert not monitor.is_attached
        callback.assert_not_called()

    def test_unknown_event(self):
        monitor = FocusMonitor(Mock())
        with pytest.raises(ValueError):
            monitor.handle_event("resize")
