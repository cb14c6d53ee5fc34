"""Event-driven browser session bound to the messaging web client's page.

This module manages the connection to an already running Chromium-based
browser over the Chrome DevTools Protocol (CDP) and the single page the
Session works with. Launching or configuring the browser process is left to
the caller.

Key Components:
    CDPSession: Manages a single CDP session bound to a specific browser target.
    BrowserSession: Connects to the browser, binds a page and reports when it is lost.

The module uses bubus EventBus for event-driven communication between components
and cdp-use for type-safe CDP interactions.

Example:
    >>> session = BrowserSession(cdp_url='http://localhost:9222')
    >>> await session.start()
    >>> await session.navigate_to('https://web.whatsapp.com/', referer='https://whatsapp.com/')
    >>> await session.stop()
"""

import asyncio
import logging
from typing import Any

import httpx
from bubus import EventBus
from cdp_use import CDPClient
from cdp_use.cdp.target import SessionID, TargetID
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from wabridge.events import (
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserStartEvent,
    BrowserStopEvent,
    BrowserStoppedEvent,
    NavigationCompleteEvent,
)
from wabridge.exceptions import BrowserConnectionError

logger = logging.getLogger(__name__)

PAGE_DOMAINS = ['Page', 'Runtime', 'Network', 'Inspector']


class CDPSession(BaseModel):
    """Info about a single CDP session bound to a specific browser target.

    This is the "page" handed to the interceptor, injector and bridge: every
    command is sent through ``cdp_client`` with ``session_id``.

    Attributes:
        cdp_client: Shared CDPClient for WebSocket communication.
        target_id: The CDP target ID this session is attached to.
        session_id: The CDP session ID for this attachment.
        title: Current page/target title.
        url: Current URL of the target.

    Example:
        >>> page = await CDPSession.for_target(cdp_client, target_id)
        >>> info = await page.get_target_info()
        >>> print(page.title, page.url)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    cdp_client: CDPClient
    target_id: TargetID
    session_id: SessionID
    title: str = 'Unknown title'
    url: str = 'about:blank'

    @classmethod
    async def for_target(
        cls,
        cdp_client: CDPClient,
        target_id: TargetID,
        domains: list[str] | None = None,
    ) -> 'CDPSession':
        """Create a CDP session for a target using the shared WebSocket.

        Args:
            cdp_client: The shared CDP client (root WebSocket connection).
            target_id: Target ID to attach to.
            domains: CDP domains to enable. Defaults to ``PAGE_DOMAINS``.

        Returns:
            Attached CDPSession instance ready for use.

        Raises:
            RuntimeError: If domain enabling fails.
        """
        cdp_session = cls(
            cdp_client=cdp_client,
            target_id=target_id,
            session_id='connecting',
        )
        return await cdp_session.attach(domains=domains)

    async def attach(self, domains: list[str] | None = None) -> 'CDPSession':
        """Attach to target and enable CDP domains.

        Returns:
            Self for method chaining.

        Raises:
            RuntimeError: If any domain fails to enable.
        """
        result = await self.cdp_client.send.Target.attachToTarget(
            params={
                'targetId': self.target_id,
                'flatten': True,
            }
        )
        self.session_id = result['sessionId']

        domains = domains or PAGE_DOMAINS

        # Enable all domains in parallel
        enable_tasks = []
        for domain in domains:
            domain_api = getattr(self.cdp_client.send, domain, None)
            assert domain_api and hasattr(domain_api, 'enable'), (
                f'{domain_api} is not a recognized CDP domain with a .enable() method'
            )
            enable_tasks.append(domain_api.enable(session_id=self.session_id))

        results = await asyncio.gather(*enable_tasks, return_exceptions=True)
        if any(isinstance(result, Exception) for result in results):
            raise RuntimeError(f'Failed to enable requested CDP domain: {results}')

        target_info = await self.get_target_info()
        self.title = target_info.get('title', 'Unknown title')
        self.url = target_info.get('url', 'about:blank')
        return self

    async def get_target_info(self) -> dict:
        """Get target info from CDP (``targetId``, ``type``, ``title``, ``url``, ...)."""
        result = await self.cdp_client.send.Target.getTargetInfo(params={'targetId': self.target_id})
        return result['targetInfo']


def _is_page_target(target: dict[str, Any]) -> bool:
    url = target.get('url', '')
    return target.get('type') == 'page' and not url.startswith(('chrome-extension://', 'devtools://'))


class BrowserSession(BaseModel):
    """Connection to a running browser and the page the Session is bound to.

    Handles:
    - Resolving the CDP WebSocket URL and connecting with cdp-use
    - Attaching to (or creating) the page target
    - User agent override, CSP bypass and navigation with a referer
    - Reporting target crash / detach as ``BrowserErrorEvent``

    Attributes:
        event_bus: EventBus shared with the rest of the Session.
        cdp_url: CDP endpoint (``http://host:port`` or ``ws://...``).
        user_agent: User agent override applied to the page.
        bypass_csp: Whether to bypass the page's Content-Security-Policy.
        page: The bound page, once connected.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True,
        extra='forbid',
        revalidate_instances='never',
    )

    # Main shared event bus for all session operations
    event_bus: EventBus = Field(default_factory=EventBus)

    cdp_url: str | None = None
    user_agent: str | None = None
    bypass_csp: bool = False

    # Mutable public state
    page: CDPSession | None = None

    # Mutable private state
    _cdp_client_root: CDPClient | None = PrivateAttr(default=None)
    _logger: logging.Logger | None = PrivateAttr(default=None)
    _watchdogs_attached: bool = PrivateAttr(default=False)
    _connection_watchdog: Any | None = PrivateAttr(default=None)

    @property
    def logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = logging.getLogger('wabridge.browser_session')
        return self._logger

    @property
    def cdp_client(self) -> CDPClient:
        """Get the cached root CDP client.

        Raises:
            AssertionError: If the browser is not connected.
        """
        assert self._cdp_client_root is not None, 'CDP client not initialized - browser may not be connected yet'
        return self._cdp_client_root

    @property
    def is_connected(self) -> bool:
        return self._cdp_client_root is not None and self.page is not None

    def model_post_init(self, __context) -> None:
        self.event_bus.on(BrowserStartEvent, self.on_BrowserStartEvent)
        self.event_bus.on(BrowserStopEvent, self.on_BrowserStopEvent)

    async def start(self) -> None:
        """Connect to the browser and bind a page.

        Raises:
            BrowserConnectionError: If the connection or page attachment fails.
        """
        start_event = self.event_bus.dispatch(BrowserStartEvent(cdp_url=self.cdp_url))
        await start_event
        await start_event.event_result(raise_if_any=True, raise_if_none=False)

    async def stop(self, reason: str | None = None) -> None:
        """Disconnect from the browser; the browser process keeps running."""
        await self.event_bus.dispatch(BrowserStopEvent(reason=reason))

    async def attach_all_watchdogs(self) -> None:
        if self._watchdogs_attached:
            return
        from wabridge.browser.watchdogs.connection_watchdog import ConnectionWatchdog

        self._connection_watchdog = ConnectionWatchdog(event_bus=self.event_bus, browser_session=self)
        self._connection_watchdog.attach_to_session()
        self._watchdogs_attached = True

    async def on_BrowserStartEvent(self, event: BrowserStartEvent) -> dict[str, str]:
        """Handle the start request: attach watchdogs, connect, bind the page."""
        await self.attach_all_watchdogs()

        cdp_url = event.cdp_url or self.cdp_url
        try:
            if self._cdp_client_root is None:
                await self.connect(cdp_url=cdp_url)
                assert self.page is not None
                self.event_bus.dispatch(BrowserConnectedEvent(cdp_url=self.cdp_url or '', target_id=self.page.target_id))
            else:
                self.logger.debug('Already connected to CDP, skipping reconnection')
            return {'cdp_url': self.cdp_url or ''}
        except Exception as e:
            self.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='BrowserStartEventError',
                    message=f'Failed to connect to browser: {type(e).__name__} {e}',
                    details={'cdp_url': cdp_url},
                )
            )
            if isinstance(e, BrowserConnectionError):
                raise
            raise BrowserConnectionError(f'Failed to connect to browser at {cdp_url}: {e}') from e

    async def on_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
        """Close the CDP connection and notify listeners."""
        client, self._cdp_client_root = self._cdp_client_root, None
        self.page = None
        if client is not None:
            try:
                await client.stop()
            except Exception as e:
                self.logger.debug(f'Error closing CDP client: {type(e).__name__}: {e}')
        self.event_bus.dispatch(BrowserStoppedEvent(reason=event.reason or 'Stopped by request'))

    async def resolve_ws_url(self, cdp_url: str) -> str:
        """Turn an HTTP CDP endpoint into its WebSocket URL via ``/json/version``."""
        if cdp_url.startswith('ws'):
            return cdp_url
        url = cdp_url.rstrip('/')
        if not url.endswith('/json/version'):
            url = url + '/json/version'
        async with httpx.AsyncClient() as client:
            version_info = await client.get(url)
            version_info.raise_for_status()
            return version_info.json()['webSocketDebuggerUrl']

    async def connect(self, cdp_url: str | None = None) -> CDPSession:
        """Connect to a running chromium-based browser via CDP using cdp-use.

        Attaches to the first page target (creating one if the browser has
        none) and applies the user agent override and CSP bypass.

        Args:
            cdp_url: WebSocket or HTTP CDP endpoint. If HTTP, the WebSocket URL
                is fetched from the /json/version endpoint.

        Returns:
            The bound page.

        Raises:
            BrowserConnectionError: If no CDP URL is configured or connecting fails.
        """
        cdp_url = cdp_url or self.cdp_url
        if not cdp_url:
            raise BrowserConnectionError('Cannot setup CDP connection without CDP URL')

        try:
            ws_url = await self.resolve_ws_url(cdp_url)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise BrowserConnectionError(f'Could not resolve CDP WebSocket URL from {cdp_url}: {e}') from e
        self.cdp_url = ws_url
        self.logger.debug(f'Connecting to existing chromium-based browser via CDP: {ws_url}')

        try:
            self._cdp_client_root = CDPClient(ws_url)
            await self._cdp_client_root.start()

            targets = await self._cdp_client_root.send.Target.getTargets()
            pages = [t for t in targets['targetInfos'] if _is_page_target(t)]
            if pages:
                target_id = pages[0]['targetId']
            else:
                created = await self._cdp_client_root.send.Target.createTarget(params={'url': 'about:blank'})
                target_id = created['targetId']

            page = await CDPSession.for_target(self._cdp_client_root, target_id)
            self._cdp_client_root.register.Target.detachedFromTarget(self._on_target_detached)
            self._cdp_client_root.register.Inspector.targetCrashed(self._on_target_crashed)

            if self.user_agent:
                await page.cdp_client.send.Network.setUserAgentOverride(
                    params={'userAgent': self.user_agent}, session_id=page.session_id
                )
            if self.bypass_csp:
                await page.cdp_client.send.Page.setBypassCSP(params={'enabled': True}, session_id=page.session_id)

            self.page = page
            self.logger.debug(f'Bound to page target {target_id[-4:]} ({page.url})')
            return page
        except Exception as e:
            if self._cdp_client_root is not None:
                try:
                    await self._cdp_client_root.stop()
                except Exception as cleanup_error:
                    self.logger.debug(f'Error closing CDP client: {cleanup_error}')
            self._cdp_client_root = None
            self.page = None
            raise BrowserConnectionError(f'Failed to establish CDP connection to browser: {e}') from e

    async def navigate_to(self, url: str, referer: str | None = None) -> None:
        """Navigate the bound page.

        Raises:
            BrowserConnectionError: If no page is bound or the navigation fails.
        """
        if self.page is None:
            raise BrowserConnectionError('Cannot navigate - browser not connected')
        params: dict[str, Any] = {'url': url}
        if referer:
            params['referrer'] = referer
        result = await self.page.cdp_client.send.Page.navigate(params=params, session_id=self.page.session_id)
        error_text = result.get('errorText')
        self.event_bus.dispatch(NavigationCompleteEvent(target_id=self.page.target_id, url=url, error_message=error_text))
        if error_text:
            raise BrowserConnectionError(f'Navigation to {url} failed: {error_text}')
        self.page.url = url

    def _on_target_detached(self, event: dict[str, Any], session_id: str | None = None) -> None:
        page = self.page
        if page is None:
            return
        if event.get('sessionId') != page.session_id and event.get('targetId') != page.target_id:
            return
        self.event_bus.dispatch(
            BrowserErrorEvent(
                error_type='TargetDetached',
                message=f'Page target {page.target_id[-4:]} detached',
                details={'target_id': page.target_id, 'reason': event.get('reason')},
            )
        )

    def _on_target_crashed(self, event: dict[str, Any], session_id: str | None = None) -> None:
        page = self.page
        if page is None or (session_id is not None and session_id != page.session_id):
            return
        self.event_bus.dispatch(
            BrowserErrorEvent(
                error_type='TargetCrashed',
                message=f'Page target {page.target_id[-4:]} crashed',
                details={'target_id': page.target_id},
            )
        )
