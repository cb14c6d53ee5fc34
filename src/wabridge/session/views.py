"""Session view models: connection states, challenges and bridge events."""

import itertools
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

_session_sequence = itertools.count(1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionState(str, Enum):
    """Connection states, in the only order a Session may move through them."""

    UNINITIALIZED = 'UNINITIALIZED'
    AWAITING_AUTHENTICATION = 'AWAITING_AUTHENTICATION'
    AUTHENTICATED = 'AUTHENTICATED'
    MAIN_LOADING = 'MAIN_LOADING'
    READY = 'READY'
    DISCONNECTED = 'DISCONNECTED'

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is ConnectionState.DISCONNECTED


_STATE_ORDER = list(ConnectionState)


AuthMode = Literal['qr', 'phoneNumber']


class AuthChallenge(BaseModel):
    """A scannable QR code or numeric pairing code issued while awaiting authentication."""

    model_config = ConfigDict(frozen=True)

    code: str
    mode: AuthMode = 'qr'
    issued_at: datetime = Field(default_factory=_utcnow)


class BridgeEvent(BaseModel):
    """A normalized event that crossed from the page context to the host."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    payload: Any = None
    observed_at: datetime = Field(default_factory=_utcnow)
    sequence: int = 0


class DisconnectReason(str, Enum):
    LOGOUT = 'LOGOUT'
    REQUIRE_AUTH = 'REQUIRE_AUTH'
    CONNECTION_LOST = 'CONNECTION_LOST'
    CLOSED = 'CLOSED'
    INITIALIZATION_FAILED = 'INITIALIZATION_FAILED'


class Session(BaseModel):
    """The single logical connection to the service for one browser page.

    Attributes:
        id: Unique session identifier.
        sequence: Process-wide, monotonically assigned number for diagnostic ordering.
        state: Current ConnectionState (owned by SessionStateMachine).
        page: The bound page handle; opaque outside the session internals.
        created_at: When the session was created.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=False)

    id: str = Field(default_factory=lambda: str(uuid4()))
    sequence: int = Field(default_factory=lambda: next(_session_sequence))
    state: ConnectionState = ConnectionState.UNINITIALIZED
    page: Any = Field(default=None, exclude=True, repr=False)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def short_id(self) -> str:
        return self.id[-4:]
