"""Pytest configuration and fixtures for the wabridge test suite.

This module provides shared configuration and fixtures used across the entire
test suite. It sets up the Python path to allow importing from wabridge and
defines the fakes that stand in for the browser.

Configuration:
    - Adds src/ directory to Python path for test imports
    - Configures pytest-asyncio for async test support

Shared Fakes:
    FakeCDPClient mimics the cdp-use client surface the bridge relies on:
    ``client.send.<Domain>.<method>(params=..., session_id=...)`` and
    ``client.register.<Domain>.<event>(handler)``. Every command is an
    ``AsyncMock`` so tests can inspect calls and script replies.

    FakePageBridge stands in for ``FunctionBridge`` when testing the relay
    and the state machine: page calls are answered from a table and the
    exposed relay function can be fired directly.

Path Setup:
    The src directory is added to sys.path to enable imports like:
    ``from wabridge.bridge.interceptor import RequestInterceptor``
"""

import sys
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Add the src directory to the path so tests can import wabridge without installing it
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from bubus import EventBus  # noqa: E402

from wabridge.constants import RELAY_BINDING_NAME  # noqa: E402
from wabridge.events import (  # noqa: E402
    AuthChallengeEvent,
    AuthenticatedEvent,
    DisconnectedEvent,
    MessageAckEvent,
    MessageReceivedEvent,
    PairingCodeReceivedEvent,
    QrReceivedEvent,
    ReadyEvent,
    StateChangedEvent,
)
from wabridge.options import ClientOptions  # noqa: E402


# ---------------------------------------------------------------------------
# Fake CDP client
# ---------------------------------------------------------------------------


class _SendDomain:
    def __init__(self):
        self._methods: dict[str, AsyncMock] = {}

    def __getattr__(self, method: str) -> AsyncMock:
        if method.startswith("_"):
            raise AttributeError(method)
        if method not in self._methods:
            self._methods[method] = AsyncMock(return_value={})
        return self._methods[method]


class _SendNamespace:
    def __init__(self):
        self._domains: dict[str, _SendDomain] = {}

    def __getattr__(self, domain: str) -> _SendDomain:
        if domain.startswith("_"):
            raise AttributeError(domain)
        if domain not in self._domains:
            self._domains[domain] = _SendDomain()
        return self._domains[domain]


class _RegisterDomain:
    def __init__(self, domain: str, handlers: dict[str, Any]):
        self._domain = domain
        self._handlers = handlers

    def __getattr__(self, event: str):
        if event.startswith("_"):
            raise AttributeError(event)

        def register(handler):
            self._handlers[f"{self._domain}.{event}"] = handler

        return register


class _RegisterNamespace:
    def __init__(self, handlers: dict[str, Any]):
        self._handlers = handlers

    def __getattr__(self, domain: str) -> _RegisterDomain:
        if domain.startswith("_"):
            raise AttributeError(domain)
        return _RegisterDomain(domain, self._handlers)


class FakeCDPClient:
    """In-memory stand-in for ``cdp_use.CDPClient``."""

    def __init__(self):
        self.handlers: dict[str, Any] = {}
        self.send = _SendNamespace()
        self.register = _RegisterNamespace(self.handlers)

    def emit(self, method: str, params: dict[str, Any], session_id: str | None = None) -> None:
        """Deliver a CDP notification to the registered handler, like the websocket reader does."""
        self.handlers[method](params, session_id)


class FakePage:
    """The attributes of ``CDPSession`` the bridge components use."""

    def __init__(self, cdp_client: FakeCDPClient | None = None):
        self.cdp_client = cdp_client or FakeCDPClient()
        self.target_id = "TARGET-00000001"
        self.session_id = "SESSION-1"
        self.url = "about:blank"


# ---------------------------------------------------------------------------
# Fake function bridge
# ---------------------------------------------------------------------------


class FakePageBridge:
    """Answers page calls from ``answers`` and records exposed host functions.

    ``answers`` maps a page function source (exact match first, then
    substring) to a value, a callable receiving the call arguments, or an
    exception instance to raise.
    """

    def __init__(self, answers: dict[str, Any] | None = None):
        self.answers: dict[str, Any] = dict(answers or {})
        self.exposed: dict[str, Any] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.closed = False

    async def expose_to_page(self, name, host_function):
        if name in self.exposed:
            raise ValueError(f"A host function named {name!r} is already exposed to the page")
        self.exposed[name] = host_function

    async def call_in_page(self, fn, *args, timeout=None):
        self.calls.append((fn, args))
        if fn in self.answers:
            answer = self.answers[fn]
        else:
            answer = next((value for key, value in self.answers.items() if key in fn), None)
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            return answer(*args)
        return answer

    def calls_matching(self, fragment: str) -> list[tuple]:
        return [args for fn, args in self.calls if fragment in fn]

    def fire(self, name: str, data: Any = None) -> None:
        """Fire a page event through the exposed relay function."""
        self.exposed[RELAY_BINDING_NAME]({"event": name, "data": data})

    async def close(self):
        self.closed = True


class BusRecorder:
    """Records every public session event dispatched on a bus."""

    EVENT_CLASSES = (
        StateChangedEvent,
        AuthChallengeEvent,
        QrReceivedEvent,
        PairingCodeReceivedEvent,
        AuthenticatedEvent,
        ReadyEvent,
        DisconnectedEvent,
        MessageReceivedEvent,
        MessageAckEvent,
    )

    def __init__(self, event_bus: EventBus):
        self.events: list[Any] = []
        for event_class in self.EVENT_CLASSES:
            event_bus.on(event_class, self.record)

    def record(self, event) -> None:
        self.events.append(event)

    def of(self, event_class) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_class)]

    @property
    def states(self) -> list[Any]:
        return [event.state for event in self.of(StateChangedEvent)]


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cdp_client():
    return FakeCDPClient()


@pytest.fixture()
def page(cdp_client):
    return FakePage(cdp_client)


@pytest.fixture()
def fast_options():
    """Options with short deadlines so timeout paths finish quickly."""
    return ClientOptions(
        cdp_url="http://localhost:9222",
        injection_timeout=0.3,
        auth_timeout=0.3,
        bridge_call_timeout=0.3,
        operation_timeout=0.3,
        poll_interval=0.01,
    )


@pytest_asyncio.fixture()
async def event_bus():
    """A fresh EventBus per test, stopped and cleared afterwards."""
    bus = EventBus(name="TestBus")
    yield bus
    await bus.stop(clear=True)
