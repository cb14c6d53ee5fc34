"""Connection watchdog: turns page crashes and detaches into connection loss."""

import logging
from typing import ClassVar

from wabridge.browser.watchdogs.base import BaseWatchdog
from wabridge.events import BrowserErrorEvent, BrowserStoppedEvent, ConnectionLostEvent

logger = logging.getLogger(__name__)


class ConnectionWatchdog(BaseWatchdog):
    """
    Watchdog that reports the bound page as lost when it crashes, detaches
    or the browser connection is stopped.
    """

    LISTENS_TO = [BrowserErrorEvent, BrowserStoppedEvent]
    EMITS = [ConnectionLostEvent]

    LOST_ERROR_TYPES: ClassVar[frozenset[str]] = frozenset({'TargetCrashed', 'TargetDetached'})

    error_count: int = 0
    reported: bool = False

    async def on_BrowserErrorEvent(self, event: BrowserErrorEvent) -> None:
        """Handle browser error events."""
        self.error_count += 1
        if event.error_type not in self.LOST_ERROR_TYPES:
            logger.error(f'[ConnectionWatchdog] Browser error: {event.error_type}: {event.message}')
            return
        logger.error(f'[ConnectionWatchdog] Page lost: {event.message}')
        self._report(event.error_type, event.details.get('target_id'))

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        self._report(event.reason or 'BrowserStopped', None)

    def _report(self, reason: str, target_id: str | None) -> None:
        if self.reported:
            return
        self.reported = True
        self.event_bus.dispatch(ConnectionLostEvent(reason=reason, target_id=target_id))
