"""Tests for the connection and auth strategy watchdogs."""

import logging

import pytest

from wabridge.auth.base import BaseAuthStrategy
from wabridge.browser.watchdogs import AuthStrategyWatchdog, ConnectionWatchdog
from wabridge.events import (
    BrowserErrorEvent,
    BrowserStoppedEvent,
    ConnectionLostEvent,
    DisconnectedEvent,
    ReadyEvent,
    StateChangedEvent,
)
from wabridge.session.views import ConnectionState


class StubBrowserSession:
    """Just enough of a BrowserSession for watchdogs."""

    logger = logging.getLogger('wabridge.tests')


class RecordingAuthStrategy(BaseAuthStrategy):
    def __init__(self, outcome=None):
        super().__init__()
        self.outcome = outcome or {'failed': False, 'restart': False, 'failure_message': None}
        self.hooks = []

    async def on_authentication_needed(self):
        self.hooks.append('on_authentication_needed')
        return self.outcome

    async def after_auth_ready(self):
        self.hooks.append('after_auth_ready')

    async def disconnect(self):
        self.hooks.append('disconnect')


def state_changed(state, previous=ConnectionState.UNINITIALIZED):
    return StateChangedEvent(session_id='s-1', previous_state=previous, state=state)


class TestConnectionWatchdog:
    """Tests for turning browser failures into connection loss."""

    @pytest.fixture()
    def lost(self, event_bus):
        events = []

        def record(event: ConnectionLostEvent) -> None:
            events.append(event)

        event_bus.on(ConnectionLostEvent, record)
        return events

    @pytest.fixture()
    def watchdog(self, event_bus):
        watchdog = ConnectionWatchdog(event_bus=event_bus, browser_session=StubBrowserSession())
        watchdog.attach_to_session()
        return watchdog

    @pytest.mark.asyncio
    async def test_target_crash_reports_loss_once(self, event_bus, watchdog, lost):
        """Test that a crashed page is reported once even if more errors follow."""
        event_bus.dispatch(
            BrowserErrorEvent(error_type='TargetCrashed', message='Page crashed', details={'target_id': 'T-1'})
        )
        event_bus.dispatch(BrowserErrorEvent(error_type='TargetDetached', message='Detached'))
        await event_bus.wait_until_idle(2.0)

        assert len(lost) == 1
        assert lost[0].reason == 'TargetCrashed'
        assert lost[0].target_id == 'T-1'
        assert watchdog.error_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_ignored(self, event_bus, watchdog, lost):
        event_bus.dispatch(BrowserErrorEvent(error_type='NavigationFailed', message='net::ERR_ABORTED'))
        await event_bus.wait_until_idle(2.0)

        assert lost == []
        assert not watchdog.reported

    @pytest.mark.asyncio
    async def test_browser_stopped_reports_loss(self, event_bus, watchdog, lost):
        event_bus.dispatch(BrowserStoppedEvent(reason='websocket closed'))
        await event_bus.wait_until_idle(2.0)

        assert [event.reason for event in lost] == ['websocket closed']


class TestAuthStrategyWatchdog:
    """Tests for running auth strategy hooks on lifecycle events."""

    def make(self, event_bus, strategy):
        watchdog = AuthStrategyWatchdog(
            event_bus=event_bus, browser_session=StubBrowserSession(), auth_strategy=strategy
        )
        watchdog.attach_to_session()
        return watchdog

    @pytest.mark.asyncio
    async def test_hooks_follow_lifecycle(self, event_bus):
        """Test that each lifecycle event runs its matching hook."""
        strategy = RecordingAuthStrategy()
        self.make(event_bus, strategy)

        event_bus.dispatch(state_changed(ConnectionState.AWAITING_AUTHENTICATION))
        event_bus.dispatch(ReadyEvent(session_id='s-1'))
        event_bus.dispatch(DisconnectedEvent(session_id='s-1', reason='LOGOUT'))
        await event_bus.wait_until_idle(2.0)

        assert strategy.hooks == ['on_authentication_needed', 'after_auth_ready', 'disconnect']

    @pytest.mark.asyncio
    async def test_other_states_do_not_request_auth(self, event_bus):
        strategy = RecordingAuthStrategy()
        self.make(event_bus, strategy)

        event_bus.dispatch(state_changed(ConnectionState.AUTHENTICATED))
        await event_bus.wait_until_idle(2.0)

        assert strategy.hooks == []

    @pytest.mark.asyncio
    async def test_failed_outcome_logged(self, event_bus, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger('wabridge'), 'propagate', True)
        strategy = RecordingAuthStrategy({'failed': True, 'restart': False, 'failure_message': 'no saved session'})
        self.make(event_bus, strategy)

        with caplog.at_level(logging.WARNING, logger='wabridge.browser.watchdogs.auth_watchdog'):
            event_bus.dispatch(state_changed(ConnectionState.AWAITING_AUTHENTICATION))
            await event_bus.wait_until_idle(2.0)

        assert 'no saved session' in caplog.text
