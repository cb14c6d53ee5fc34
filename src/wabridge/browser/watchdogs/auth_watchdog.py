"""Auth strategy watchdog: runs the strategy's hooks on lifecycle events."""

import logging
from typing import Any

from wabridge.browser.watchdogs.base import BaseWatchdog
from wabridge.events import DisconnectedEvent, ReadyEvent, StateChangedEvent
from wabridge.session.views import ConnectionState

logger = logging.getLogger(__name__)


class AuthStrategyWatchdog(BaseWatchdog):
    """Calls ``on_authentication_needed``, ``after_auth_ready`` and ``disconnect`` on the auth strategy."""

    LISTENS_TO = [StateChangedEvent, ReadyEvent, DisconnectedEvent]
    EMITS = []

    auth_strategy: Any  # BaseAuthStrategy

    async def on_StateChangedEvent(self, event: StateChangedEvent) -> None:
        if event.state is not ConnectionState.AWAITING_AUTHENTICATION:
            return
        outcome = await self.auth_strategy.on_authentication_needed()
        if outcome and outcome.get('failed'):
            logger.warning(f'[AuthStrategyWatchdog] Auth strategy reported failure: {outcome.get("failure_message")}')

    async def on_ReadyEvent(self, event: ReadyEvent) -> None:
        await self.auth_strategy.after_auth_ready()

    async def on_DisconnectedEvent(self, event: DisconnectedEvent) -> None:
        logger.debug(f'[AuthStrategyWatchdog] Session disconnected ({event.reason})')
        await self.auth_strategy.disconnect()
