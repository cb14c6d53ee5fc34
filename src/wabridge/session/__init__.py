"""Session state shared by the state machine, the bridge and the client."""

from wabridge.session.views import AuthChallenge, BridgeEvent, ConnectionState, DisconnectReason, Session

__all__ = ["AuthChallenge", "BridgeEvent", "ConnectionState", "DisconnectReason", "Session"]
