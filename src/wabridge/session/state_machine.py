"""Authoritative connection state of a Session.

The machine only moves forward through ``ConnectionState``; ``DISCONNECTED``
is terminal. Startup decides between AUTHENTICATED and AWAITING_AUTHENTICATION
by racing two page probes; afterwards only relayed page events move it.
Lifecycle notifications are dispatched on the Session's bubus ``EventBus``.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from bubus import EventBus

from wabridge.bridge.relay import EventRelay, challenge_code, challenge_mode
from wabridge.capabilities import CapabilityDescriptor, CapabilityResolver
from wabridge.constants import (
    AUTHENTICATED_PROBE,
    CHALLENGE_PROBE,
    MAIN_STATE_PROBE,
    OPTIONAL_CAPABILITIES,
    PageEvents,
)
from wabridge.events import (
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
from wabridge.exceptions import (
    AuthDetectionTimeout,
    BridgeCallTimeout,
    BridgeTransportError,
    PageEvaluationError,
    SessionClosed,
    SessionNotReady,
)
from wabridge.session.views import AuthChallenge, BridgeEvent, ConnectionState, DisconnectReason, Session

if TYPE_CHECKING:
    from wabridge.bridge.functions import FunctionBridge
    from wabridge.options import ClientOptions

logger = logging.getLogger(__name__)

# Forward moves into these states pass through AUTHENTICATED so its event fires
_AFTER_AUTHENTICATED = (ConnectionState.MAIN_LOADING, ConnectionState.READY)


class SessionStateMachine:
    """Tracks and publishes the connection state of one Session.

    Args:
        session: The Session whose ``state`` this machine owns.
        event_bus: The Session's event bus; every notification is dispatched on it.
        bridge: Function bridge used by the startup probes.
        relay: Event relay feeding page signals into the machine.
        resolver: Resolves the capabilities checked at startup.
        options: Client options (timeouts, linking method, required capabilities).

    Example:
        >>> machine = SessionStateMachine(session, bus, bridge, relay, resolver, options)
        >>> machine.on_ready(handle_ready)
        >>> await machine.start()
        >>> await machine.wait_until_ready(timeout=30)
    """

    def __init__(
        self,
        session: Session,
        event_bus: EventBus,
        bridge: 'FunctionBridge',
        relay: EventRelay,
        resolver: CapabilityResolver,
        options: 'ClientOptions',
    ):
        self.session = session
        self.event_bus = event_bus
        self.bridge = bridge
        self.relay = relay
        self.resolver = resolver
        self.options = options

        self.capabilities: dict[str, CapabilityDescriptor] = {}
        self.last_challenge: AuthChallenge | None = None
        self.disconnect_reason: str | None = None

        self._held_challenges: dict[str, AuthChallenge] = {}
        self._ready = asyncio.Event()
        self._closed = asyncio.Event()
        self._started = False

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    def get_state(self) -> ConnectionState:
        return self.session.state

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def on_state_change(self, handler) -> None:
        """Call ``handler(StateChangedEvent)`` on every transition."""
        self.event_bus.on(StateChangedEvent, handler)

    def on_auth_challenge(self, handler) -> None:
        """Call ``handler(AuthChallengeEvent)`` for every delivered challenge."""
        self.event_bus.on(AuthChallengeEvent, handler)

    def on_ready(self, handler) -> None:
        """Call ``handler(ReadyEvent)`` once, when the Session becomes READY."""
        self.event_bus.on(ReadyEvent, handler)

    async def start(self) -> ConnectionState:
        """Run the startup protocol on an instrumented page.

        Checks capabilities, subscribes to page events, then races the
        authenticated probe against the challenge probe.

        Returns:
            The state after startup (AUTHENTICATED or later, or AWAITING_AUTHENTICATION).

        Raises:
            RequiredCapabilityMissing: If a required capability does not resolve.
            AuthDetectionTimeout: If neither probe succeeds within ``options.auth_timeout``.
            SessionClosed: If the session closes during startup.
        """
        if self._started:
            raise RuntimeError('SessionStateMachine.start() may only be called once')
        self._started = True

        self.capabilities.update(await self.resolver.resolve_all(self.options.required_capabilities))
        for name in OPTIONAL_CAPABILITIES:
            if name not in self.capabilities:
                descriptor = await self.resolver.resolve(name)
                if descriptor is not None:
                    self.capabilities[name] = descriptor
        logger.debug(f'[SessionStateMachine] Bound capabilities: {", ".join(sorted(self.capabilities))}')

        # Subscribe before the race so no signal fired during it is lost
        await self.relay.subscribe(PageEvents.ALL, self.handle_bridge_event)

        outcome = await self._race_auth_probes()
        logger.info(f'[SessionStateMachine] Startup detected: {outcome}')
        if outcome == 'authenticated':
            await self.transition(ConnectionState.AUTHENTICATED)
            await self._catch_up_main_state()
        else:
            await self.transition(ConnectionState.AWAITING_AUTHENTICATION)
        return self.state

    async def transition(self, target: ConnectionState, reason: str | None = None) -> bool:
        """Move forward to ``target``; backward, repeated or post-terminal moves are ignored.

        Returns:
            True if the state changed.
        """
        current = self.session.state
        if current.is_terminal:
            logger.debug(f'[SessionStateMachine] Ignoring {target.value}: session is disconnected')
            return False
        if target.rank <= current.rank:
            logger.debug(f'[SessionStateMachine] Ignoring non-forward transition {current.value} -> {target.value}')
            return False

        path = [target]
        if target in _AFTER_AUTHENTICATED and current.rank < ConnectionState.AUTHENTICATED.rank:
            path.insert(0, ConnectionState.AUTHENTICATED)
        for state in path:
            self._enter(state, reason)

        if target is ConnectionState.AWAITING_AUTHENTICATION:
            await self._on_awaiting_authentication()
        return True

    async def disconnect(self, reason: str = DisconnectReason.CLOSED.value) -> bool:
        return await self.transition(ConnectionState.DISCONNECTED, reason=reason)

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until READY.

        Raises:
            SessionClosed: If the session is or becomes DISCONNECTED.
            SessionNotReady: If READY is not reached within ``timeout`` seconds.
        """
        if self._closed.is_set():
            raise SessionClosed()
        if self._ready.is_set():
            return

        waiters = {
            asyncio.ensure_future(self._ready.wait()),
            asyncio.ensure_future(self._closed.wait()),
        }
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        if self._closed.is_set():
            raise SessionClosed()
        if not self._ready.is_set():
            raise SessionNotReady(self.state.value, timeout)

    def ensure_open(self) -> None:
        if self._closed.is_set():
            raise SessionClosed()

    # ------------------------------------------------------------------
    # Relay signals
    # ------------------------------------------------------------------

    async def handle_bridge_event(self, event: BridgeEvent) -> None:
        """Apply one relayed page event."""
        if self._closed.is_set():
            return
        name = event.name
        state = self.session.state

        if name == PageEvents.AUTH_CODE_CHANGE:
            self._on_auth_code(event.payload)
        elif name == PageEvents.REQUIRE_AUTH:
            if state is ConnectionState.UNINITIALIZED:
                await self.transition(ConnectionState.AWAITING_AUTHENTICATION)
            elif state.rank >= ConnectionState.AUTHENTICATED.rank:
                await self.disconnect(DisconnectReason.REQUIRE_AUTH.value)
        elif name == PageEvents.AUTHENTICATED:
            await self.transition(ConnectionState.AUTHENTICATED)
        elif name in (PageEvents.MAIN_INIT, PageEvents.MAIN_LOADED):
            await self.transition(ConnectionState.MAIN_LOADING)
        elif name == PageEvents.MAIN_READY:
            await self.transition(ConnectionState.READY)
        elif name == PageEvents.LOGOUT:
            if state.rank >= ConnectionState.AUTHENTICATED.rank:
                await self.disconnect(DisconnectReason.LOGOUT.value)
        elif name == PageEvents.NEW_MESSAGE:
            if isinstance(event.payload, dict):
                self.event_bus.dispatch(MessageReceivedEvent(message=event.payload))
        elif name == PageEvents.MSG_ACK_CHANGE:
            payload = event.payload if isinstance(event.payload, dict) else {}
            self.event_bus.dispatch(MessageAckEvent(message=payload.get('message') or {}, ack=payload.get('ack')))

    def _on_auth_code(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        code = challenge_code(payload)
        if code is None:
            return
        state = self.session.state
        if state.rank >= ConnectionState.AUTHENTICATED.rank:
            logger.debug('[SessionStateMachine] Ignoring auth code after authentication')
            return

        challenge = AuthChallenge(code=code, mode=challenge_mode(payload))
        if state is ConnectionState.UNINITIALIZED:
            # Held until startup decides the session needs authentication
            self._held_challenges[challenge.mode] = challenge
            return
        self._deliver_challenge(challenge)

    def _deliver_challenge(self, challenge: AuthChallenge) -> None:
        self.last_challenge = challenge
        self.event_bus.dispatch(AuthChallengeEvent(session_id=self.session.id, challenge=challenge))
        if challenge.mode == 'qr':
            self.event_bus.dispatch(QrReceivedEvent(qr=challenge.code))
        else:
            self.event_bus.dispatch(PairingCodeReceivedEvent(code=challenge.code))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enter(self, state: ConnectionState, reason: str | None) -> None:
        previous = self.session.state
        self.session.state = state
        logger.info(f'[SessionStateMachine] {previous.value} -> {state.value}')
        self.event_bus.dispatch(
            StateChangedEvent(session_id=self.session.id, previous_state=previous, state=state)
        )

        if state is ConnectionState.AUTHENTICATED:
            self._held_challenges.clear()
            self.event_bus.dispatch(AuthenticatedEvent(session_id=self.session.id))
        elif state is ConnectionState.READY:
            self._ready.set()
            self.event_bus.dispatch(ReadyEvent(session_id=self.session.id))
        elif state is ConnectionState.DISCONNECTED:
            self.disconnect_reason = reason or DisconnectReason.CLOSED.value
            self._held_challenges.clear()
            self._closed.set()
            self.event_bus.dispatch(DisconnectedEvent(session_id=self.session.id, reason=self.disconnect_reason))

    async def _on_awaiting_authentication(self) -> None:
        held, self._held_challenges = self._held_challenges, {}
        for challenge in held.values():
            self._deliver_challenge(challenge)
        await self.request_current_challenge()

    async def request_current_challenge(self) -> None:
        """Ask the page for the current code and feed it through the relay's de-duplication."""
        # Page codes arriving during the fetch supersede the fetched one
        generations = {mode: self.relay.challenge_generation(mode) for mode in ('qr', 'phoneNumber')}
        try:
            if self.options.linking_method == 'phone':
                generate = self.capabilities.get('conn.genLinkDeviceCodeForPhoneNumber')
                if generate is None:
                    logger.warning('[SessionStateMachine] Phone linking requested but the page cannot generate codes')
                    return
                code = await generate(self.options.phone_number, self.options.send_push_notification)
                payload = {'type': 'phoneNumber', 'code': code} if code else None
            else:
                get_auth_code = self.capabilities.get('conn.getAuthCode')
                if get_auth_code is None:
                    return
                payload = await get_auth_code()
        except (PageEvaluationError, BridgeCallTimeout, BridgeTransportError) as e:
            logger.warning(f'[SessionStateMachine] Could not fetch current auth code: {e}')
            return
        except SessionClosed:
            return
        if isinstance(payload, dict):
            self.relay.emit_fetched_challenge(payload, generations[challenge_mode(payload)])

    async def _race_auth_probes(self) -> str:
        timeout = self.options.auth_timeout
        probes = {
            asyncio.create_task(self._wait_for_probe(AUTHENTICATED_PROBE), name='wabridge-probe-authenticated'): 'authenticated',
            asyncio.create_task(self._wait_for_probe(CHALLENGE_PROBE), name='wabridge-probe-challenge'): 'challenge',
        }
        try:
            done, _ = await asyncio.wait(probes, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for probe in probes:
                if not probe.done():
                    probe.cancel()
            await asyncio.gather(*probes, return_exceptions=True)

        if not done:
            raise AuthDetectionTimeout(timeout)
        winners = {probes[probe] for probe in done if not probe.cancelled() and probe.exception() is None}
        # Authenticated wins a tie
        if 'authenticated' in winners:
            return 'authenticated'
        if 'challenge' in winners:
            return 'challenge'
        raise next(probe.exception() for probe in done if not probe.cancelled())

    async def _wait_for_probe(self, probe: str) -> None:
        while True:
            try:
                if await self.bridge.call_in_page(probe):
                    return
            except (PageEvaluationError, BridgeCallTimeout, BridgeTransportError) as e:
                logger.debug(f'[SessionStateMachine] Probe failed, retrying: {e}')
            await asyncio.sleep(self.options.poll_interval)

    async def _catch_up_main_state(self) -> None:
        try:
            progress = await self.bridge.call_in_page(MAIN_STATE_PROBE)
        except (PageEvaluationError, BridgeCallTimeout, BridgeTransportError) as e:
            logger.debug(f'[SessionStateMachine] Main state probe failed: {e}')
            return
        if progress == 'ready':
            await self.transition(ConnectionState.READY)
        elif progress == 'loaded':
            await self.transition(ConnectionState.MAIN_LOADING)
