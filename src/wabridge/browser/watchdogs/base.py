"""Base watchdog class for session monitoring components."""

import logging
from typing import Any, ClassVar

from bubus import BaseEvent, EventBus
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class BaseWatchdog(BaseModel):
    """Base class for all session watchdogs.

    Watchdogs react to events on the Session's bus and emit events of their
    own. ``attach_to_session()`` registers an ``on_<EventName>`` method for
    every event class in ``LISTENS_TO``.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra='forbid',
        validate_assignment=False,
        revalidate_instances='never',
    )

    # Class variables to statically define the list of events relevant to each watchdog
    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = []
    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

    # Core dependencies
    event_bus: EventBus = Field()
    browser_session: Any = Field()  # BrowserSession type

    @property
    def logger(self) -> logging.Logger:
        """Get the logger from the browser session."""
        return self.browser_session.logger

    def attach_to_session(self) -> None:
        """Attach event handlers to the event bus."""
        for event_class in self.LISTENS_TO:
            handler_name = f'on_{event_class.__name__}'
            handler = getattr(self, handler_name, None)
            assert handler is not None, f'{type(self).__name__} listens to {event_class.__name__} but has no {handler_name}()'
            self.event_bus.on(event_class, handler)
        logger.debug(f'{type(self).__name__} attached')
