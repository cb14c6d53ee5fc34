"""Starting point for interacting with the messaging web client."""

import logging
from typing import Any

from bubus import BaseEvent, EventBus
from pydantic import BaseModel, ConfigDict

from wabridge.auth import BaseAuthStrategy, NoAuth
from wabridge.bridge.functions import FunctionBridge
from wabridge.bridge.injector import ScriptInjector
from wabridge.bridge.interceptor import RequestInterceptor
from wabridge.bridge.relay import EventRelay
from wabridge.browser.session import BrowserSession
from wabridge.browser.watchdogs import AuthStrategyWatchdog
from wabridge.capabilities import CapabilityDescriptor, WppCapabilityResolver
from wabridge.events import PUBLIC_EVENTS, ConnectionLostEvent
from wabridge.exceptions import PageEvaluationError, RequiredCapabilityMissing, SessionClosed, SessionNotReady
from wabridge.options import ClientOptions
from wabridge.session.state_machine import SessionStateMachine
from wabridge.session.views import ConnectionState, DisconnectReason, Session
from wabridge.webcache import BaseWebCache, create_web_cache

logger = logging.getLogger(__name__)

_WEB_VERSION_FN = '() => (window.Debug && window.Debug.VERSION) || null'


class InitializationResult(BaseModel):
    """Outcome of ``Client.initialize()``; truthy on success."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    state: ConnectionState
    error: Exception | None = None
    stage: str | None = None

    def __bool__(self) -> bool:
        return self.ok


class Client:
    """Drives one Session against the messaging web client in a running browser.

    Args:
        options: Client options; defaults to ``ClientOptions()``.
        auth_strategy: Session persistence hooks; defaults to ``NoAuth``.
        browser_session: Pre-built browser session (its event bus becomes the Session's bus).

    Example:
        >>> client = Client(ClientOptions(cdp_url='http://localhost:9222', bundle_dir='./dist'))
        >>> client.on('qr', lambda event: print(event.qr))
        >>> result = await client.initialize()
        >>> if result:
        ...     await client.send_message('123@c.us', 'hello')
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        auth_strategy: BaseAuthStrategy | None = None,
        browser_session: BrowserSession | None = None,
    ):
        self.options = options or ClientOptions()
        self.session = Session()

        if browser_session is None:
            browser_session = BrowserSession(
                event_bus=EventBus(name=f'WABridge_{self.session.id.replace("-", "")[-8:]}'),
                cdp_url=self.options.cdp_url,
                user_agent=self.options.user_agent,
                bypass_csp=self.options.bypass_csp,
            )
        self.browser_session = browser_session
        self.event_bus: EventBus = browser_session.event_bus

        self.auth_strategy = auth_strategy or NoAuth()
        self.auth_strategy.setup(self)

        cache_options = dict(self.options.web_version_cache)
        self.web_cache: BaseWebCache = create_web_cache(cache_options.pop('type', 'none'), **cache_options)

        self.interceptor: RequestInterceptor | None = None
        self.injector: ScriptInjector | None = None
        self.bridge: FunctionBridge | None = None
        self.relay: EventRelay | None = None
        self.state_machine: SessionStateMachine | None = None
        self._torn_down = False

        self._auth_watchdog = AuthStrategyWatchdog(
            event_bus=self.event_bus, browser_session=self.browser_session, auth_strategy=self.auth_strategy
        )
        self._auth_watchdog.attach_to_session()
        self.event_bus.on(ConnectionLostEvent, self.on_ConnectionLostEvent)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on(self, event: str | type[BaseEvent[Any]], handler) -> None:
        """Subscribe ``handler`` to a public lifecycle event.

        Args:
            event: One of ``qr``, ``code``, ``authenticated``, ``ready``,
                ``disconnected``, ``message``, ``message_ack``, ``change_state``,
                ``auth_challenge`` (or the event class itself).
            handler: Sync or async function taking the event.

        Raises:
            ValueError: For an unknown event name.
        """
        if isinstance(event, str):
            if event not in PUBLIC_EVENTS:
                raise ValueError(f'Unknown event {event!r}; expected one of {", ".join(PUBLIC_EVENTS)}')
            event = PUBLIC_EVENTS[event]
        self.event_bus.on(event, handler)

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    def get_state(self) -> ConnectionState:
        return self.session.state

    async def initialize(self) -> InitializationResult:
        """Connect, instrument the page and run the startup protocol.

        Never raises for expected failures: the returned result is falsy and
        carries the ``error`` and the ``stage`` that failed.
        """
        stage = 'before_browser'
        try:
            await self.auth_strategy.before_browser_initialized()

            stage = 'browser'
            await self.browser_session.start()
            page = self.browser_session.page
            assert page is not None
            self.session.page = page
            await self.auth_strategy.after_browser_initialized()

            stage = 'interception'
            cached_html = await self.web_cache.resolve(self.options.web_version)
            self.interceptor = RequestInterceptor(
                bundle_dir=self.options.bundle_dir,
                marker=self.options.intercept_marker,
                web_url=self.options.web_url,
                cached_html=cached_html,
                web_cache=self.web_cache,
            )
            await self.interceptor.install(page)

            stage = 'navigation'
            await self.browser_session.navigate_to(self.options.web_url, referer=self.options.referer)

            stage = 'injection'
            self.injector = ScriptInjector(
                bundle_path=None if self.options.bundle_url else self.options.resolved_bundle_path,
                bundle_url=self.options.bundle_url,
                ready_expression=self.options.ready_expression,
                poll_interval=self.options.poll_interval,
            )
            await self.injector.inject(page, timeout=self.options.injection_timeout)

            stage = 'startup'
            self.bridge = FunctionBridge(page, default_timeout=self.options.bridge_call_timeout)
            self.relay = EventRelay(self.bridge, message_resolver=self._resolve_message)
            self.state_machine = SessionStateMachine(
                session=self.session,
                event_bus=self.event_bus,
                bridge=self.bridge,
                relay=self.relay,
                resolver=WppCapabilityResolver(self.bridge),
                options=self.options,
            )
            state = await self.state_machine.start()
        except Exception as e:
            logger.error(f'[Client] Initialization failed during {stage}: {type(e).__name__}: {e}')
            # A failed Session is terminal: stop the relay, bridge and interception
            if self.state_machine is not None:
                await self.state_machine.disconnect(DisconnectReason.INITIALIZATION_FAILED.value)
            await self._teardown()
            return InitializationResult(ok=False, state=self.session.state, error=e, stage=stage)

        logger.info(f'[Client] Session {self.session.short_id} initialized in state {state.value}')
        return InitializationResult(ok=True, state=state)

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until the Session is READY (see ``SessionStateMachine.wait_until_ready``)."""
        await self._require_machine().wait_until_ready(timeout=timeout)

    async def logout(self) -> None:
        """Log out on the page, close the connection and run the strategy's logout hook."""
        machine = self._require_machine()
        machine.ensure_open()
        page_logout = machine.capabilities.get('conn.logout')
        if page_logout is not None:
            await page_logout()
        await machine.disconnect(DisconnectReason.LOGOUT.value)
        await self._teardown()
        await self.browser_session.stop(reason='Logged out')
        await self.auth_strategy.logout()

    async def destroy(self) -> None:
        """Close the Session and the browser connection; the browser keeps running."""
        if self.state_machine is not None:
            await self.state_machine.disconnect(DisconnectReason.CLOSED.value)
        await self._teardown()
        if self.browser_session.is_connected:
            await self.browser_session.stop(reason='Client destroyed')
        await self.auth_strategy.destroy()
        await self.event_bus.stop(timeout=2.0)

    async def on_ConnectionLostEvent(self, event: ConnectionLostEvent) -> None:
        if self.state_machine is not None:
            await self.state_machine.disconnect(DisconnectReason.CONNECTION_LOST.value)
        await self._teardown()

    async def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        if self.relay is not None:
            await self.relay.close()
        if self.bridge is not None:
            await self.bridge.close()
        if self.interceptor is not None and self.browser_session.is_connected:
            await self.interceptor.uninstall()

    # ------------------------------------------------------------------
    # Domain operations
    # ------------------------------------------------------------------

    def _require_machine(self) -> SessionStateMachine:
        if self.state_machine is None:
            if self._torn_down:
                raise SessionClosed()
            raise SessionNotReady(self.session.state.value, 0)
        return self.state_machine

    async def _ready_capability(self, name: str) -> CapabilityDescriptor:
        machine = self._require_machine()
        await machine.wait_until_ready(timeout=self.options.operation_timeout)
        capability = machine.capabilities.get(name)
        if capability is None:
            raise RequiredCapabilityMissing([name])
        return capability

    async def _resolve_message(self, message_id: str) -> dict[str, Any] | None:
        machine = self.state_machine
        capability = machine.capabilities.get('chat.getMessageById') if machine else None
        if capability is None:
            return None
        return await capability(message_id)

    async def send_message(self, chat_id: str, content: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a text message.

        Raises:
            SessionNotReady: If the Session is not READY within ``operation_timeout``.
            SessionClosed: If the Session is disconnected.
            PageEvaluationError: If the page rejects the message.
        """
        send_text = await self._ready_capability('chat.sendTextMessage')
        return await send_text(chat_id, content, options or {})

    async def send_seen(self, chat_id: str) -> Any:
        """Mark a chat as seen."""
        mark_read = await self._ready_capability('chat.markIsRead')
        return await mark_read(chat_id)

    async def get_contact_by_id(self, contact_id: str) -> dict[str, Any] | None:
        get_contact = await self._ready_capability('contact.get')
        return await get_contact(contact_id)

    async def get_profile_pic_url(self, contact_id: str) -> str | None:
        """Return the contact's profile picture URL, or None if privacy settings refuse it."""
        get_picture = await self._ready_capability('contact.getProfilePictureUrl')
        try:
            url = await get_picture(contact_id)
        except PageEvaluationError as e:
            if e.name == 'ServerStatusCodeError':
                return None
            raise
        return url or None

    async def get_web_version(self) -> str | None:
        """Version of the web client currently loaded in the page."""
        machine = self._require_machine()
        machine.ensure_open()
        assert self.bridge is not None
        return await self.bridge.call_in_page(_WEB_VERSION_FN)

    async def get_auth_code(self) -> dict[str, Any] | None:
        """Fetch the current QR auth code from the page (AWAITING_AUTHENTICATION only)."""
        machine = self._require_machine()
        machine.ensure_open()
        get_auth_code = machine.capabilities.get('conn.getAuthCode')
        if get_auth_code is None:
            raise RequiredCapabilityMissing(['conn.getAuthCode'])
        return await get_auth_code()

    async def request_pairing_code(self, phone_number: str, send_push_notification: bool = True) -> str:
        """Request a pairing code for linking by phone number.

        The code is also delivered through the ``code`` event.

        Raises:
            RequiredCapabilityMissing: If the page cannot generate pairing codes.
        """
        machine = self._require_machine()
        machine.ensure_open()
        generate = machine.capabilities.get('conn.genLinkDeviceCodeForPhoneNumber')
        if generate is None:
            raise RequiredCapabilityMissing(['conn.genLinkDeviceCodeForPhoneNumber'])
        generation = self.relay.challenge_generation('phoneNumber') if self.relay is not None else 0
        code = await generate(phone_number, send_push_notification)
        if code and self.relay is not None:
            self.relay.emit_fetched_challenge({'type': 'phoneNumber', 'code': code}, generation)
        return code
