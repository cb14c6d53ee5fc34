"""Event definitions for browser and session communication."""

import os
from typing import Any

from bubus import BaseEvent
from pydantic import Field

from wabridge.session.views import AuthChallenge, ConnectionState


def _get_timeout(env_var: str, default: float) -> float | None:
    """Safely parse environment variable timeout values with robust error handling.

    Args:
        env_var: Environment variable name (e.g. 'TIMEOUT_BrowserStartEvent')
        default: Default timeout value as float (e.g. 15.0)

    Returns:
        Parsed float value or the default if parsing fails
    """
    env_value = os.getenv(env_var)
    if env_value:
        try:
            parsed = float(env_value)
            if parsed < 0:
                return default
            return parsed
        except (ValueError, TypeError):
            pass

    return default


# ============================================================================
# Browser Lifecycle Events
# ============================================================================


class BrowserStartEvent(BaseEvent[dict[str, str]]):
    """Connect to a running browser and bind a page."""

    cdp_url: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserStartEvent', 30.0)


class BrowserStopEvent(BaseEvent[None]):
    """Disconnect from the browser."""

    reason: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserStopEvent', 45.0)


class BrowserConnectedEvent(BaseEvent[None]):
    """Browser has connected and a page is bound."""

    cdp_url: str
    target_id: str

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserConnectedEvent', 30.0)


class BrowserStoppedEvent(BaseEvent[None]):
    """Browser connection has been closed."""

    reason: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserStoppedEvent', 30.0)


class NavigationCompleteEvent(BaseEvent[None]):
    """Navigation of the bound page completed."""

    target_id: str
    url: str
    error_message: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_NavigationCompleteEvent', 30.0)


# ============================================================================
# Session Lifecycle Events (public)
# ============================================================================


class StateChangedEvent(BaseEvent[None]):
    """The session moved to a new connection state."""

    session_id: str
    previous_state: ConnectionState
    state: ConnectionState

    event_timeout: float | None = _get_timeout('TIMEOUT_StateChangedEvent', 10.0)


class AuthChallengeEvent(BaseEvent[None]):
    """A new authentication challenge was delivered."""

    session_id: str
    challenge: AuthChallenge

    event_timeout: float | None = _get_timeout('TIMEOUT_AuthChallengeEvent', 10.0)


class QrReceivedEvent(BaseEvent[None]):
    """A QR code must be scanned to link this session."""

    qr: str

    event_timeout: float | None = _get_timeout('TIMEOUT_QrReceivedEvent', 10.0)


class PairingCodeReceivedEvent(BaseEvent[None]):
    """A pairing code must be entered on the phone to link this session."""

    code: str

    event_timeout: float | None = _get_timeout('TIMEOUT_PairingCodeReceivedEvent', 10.0)


class AuthenticatedEvent(BaseEvent[None]):
    session_id: str

    event_timeout: float | None = _get_timeout('TIMEOUT_AuthenticatedEvent', 30.0)


class ReadyEvent(BaseEvent[None]):
    """The main application finished loading; domain operations are allowed."""

    session_id: str

    event_timeout: float | None = _get_timeout('TIMEOUT_ReadyEvent', 30.0)


class DisconnectedEvent(BaseEvent[None]):
    session_id: str
    reason: str

    event_timeout: float | None = _get_timeout('TIMEOUT_DisconnectedEvent', 30.0)


class MessageReceivedEvent(BaseEvent[None]):
    """A new message arrived (payload is the page's serialized message)."""

    message: dict[str, Any] = Field(default_factory=dict)

    event_timeout: float | None = _get_timeout('TIMEOUT_MessageReceivedEvent', 30.0)


class MessageAckEvent(BaseEvent[None]):
    """Acknowledgment level changed for a single message."""

    message: dict[str, Any] = Field(default_factory=dict)
    ack: int | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_MessageAckEvent', 30.0)


# ============================================================================
# Error Events
# ============================================================================


class BrowserErrorEvent(BaseEvent[None]):
    """An error occurred in the browser layer."""

    error_type: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserErrorEvent', 30.0)


class ConnectionLostEvent(BaseEvent[None]):
    """The bound page is gone (crashed, detached or closed)."""

    reason: str
    target_id: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_ConnectionLostEvent', 30.0)


# Public event names accepted by Client.on()
PUBLIC_EVENTS: dict[str, type[BaseEvent[Any]]] = {
    'qr': QrReceivedEvent,
    'code': PairingCodeReceivedEvent,
    'authenticated': AuthenticatedEvent,
    'ready': ReadyEvent,
    'disconnected': DisconnectedEvent,
    'message': MessageReceivedEvent,
    'message_ack': MessageAckEvent,
    'change_state': StateChangedEvent,
    'auth_challenge': AuthChallengeEvent,
}
