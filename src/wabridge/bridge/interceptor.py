"""Network interception that keeps a known-good instrumentation bundle in the page.

Every outgoing request of the bound page is paused with the CDP ``Fetch``
domain. Requests for a bundle file that is cached locally are answered from
disk; everything else continues unmodified. The same interception point also
serves a cached copy of the web client's HTML, or captures it for caching.
"""

import asyncio
import base64
import logging
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from wabridge.constants import DEFAULT_INTERCEPT_MARKER
from wabridge.exceptions import AlreadyInstalled

if TYPE_CHECKING:
    from wabridge.browser.session import CDPSession
    from wabridge.webcache.base import BaseWebCache

logger = logging.getLogger(__name__)

BUNDLE_CONTENT_TYPE = 'text/javascript; charset=UTF-8'
BUNDLE_STATUS_CODE = 201


class Disposition(str, Enum):
    """What the interceptor did with one paused request."""

    PENDING = 'pending'
    FULFILLED_BUNDLE = 'fulfilled_bundle'
    FULFILLED_HTML = 'fulfilled_html'
    CONTINUED = 'continued'
    CAPTURED = 'captured'
    FAILED = 'failed'


class RequestInterceptor:
    """Pause, classify and dispose of page requests exactly once.

    Args:
        bundle_dir: Directory holding locally cached bundle files.
        marker: Substring of the URL path that identifies bundle requests.
        web_url: URL of the web client document, used by the HTML cache rule.
        cached_html: Cached document served for ``web_url`` instead of the network.
        web_cache: Cache that receives the live document when ``cached_html`` is None.
    """

    def __init__(
        self,
        bundle_dir: Path | str | None,
        marker: str = DEFAULT_INTERCEPT_MARKER,
        web_url: str | None = None,
        cached_html: str | None = None,
        web_cache: 'BaseWebCache | None' = None,
    ):
        self.bundle_dir = Path(bundle_dir).expanduser() if bundle_dir else None
        self.marker = marker
        self.web_url = web_url
        self.cached_html = cached_html
        self.web_cache = web_cache

        self.dispositions: dict[tuple[str, str], Disposition] = {}
        self._page: 'CDPSession | None' = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def installed(self) -> bool:
        return self._page is not None

    @property
    def _captures_html(self) -> bool:
        return bool(self.web_url and self.cached_html is None and self.web_cache is not None and self.web_cache.writable)

    async def install(self, page: 'CDPSession') -> None:
        """Enable request interception on the page.

        Raises:
            AlreadyInstalled: If interception was already enabled by this interceptor.
        """
        if self._page is not None:
            raise AlreadyInstalled(f'Request interception is already installed on target {self._page.target_id}')
        self._page = page

        patterns: list[dict[str, Any]] = []
        if self._captures_html:
            # Listed first: the document request pauses at response stage only
            patterns.append({'urlPattern': self.web_url, 'resourceType': 'Document', 'requestStage': 'Response'})
        patterns.append({'urlPattern': '*', 'requestStage': 'Request'})

        page.cdp_client.register.Fetch.requestPaused(self._on_request_paused)
        await page.cdp_client.send.Fetch.enable(params={'patterns': patterns}, session_id=page.session_id)
        logger.debug(
            f'[RequestInterceptor] Installed on target {page.target_id[-4:]} '
            f'(bundle_dir={self.bundle_dir}, marker={self.marker!r}, cached_html={self.cached_html is not None})'
        )

    async def uninstall(self) -> None:
        page, self._page = self._page, None
        for task in list(self._tasks):
            task.cancel()
        if page is None:
            return
        try:
            await page.cdp_client.send.Fetch.disable(session_id=page.session_id)
        except Exception as e:
            logger.debug(f'[RequestInterceptor] Fetch.disable failed: {type(e).__name__}: {e}')

    async def wait_idle(self) -> None:
        """Wait until every scheduled disposition has been sent."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_request_paused(self, event: dict[str, Any], session_id: str | None = None) -> None:
        if self._page is None or (session_id is not None and session_id != self._page.session_id):
            return
        task = asyncio.create_task(self.handle_request_paused(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_request_paused(self, event: dict[str, Any]) -> Disposition | None:
        """Dispose of one ``Fetch.requestPaused`` notification.

        Returns:
            The disposition applied, or None if the notification was a duplicate.
        """
        assert self._page is not None, 'RequestInterceptor is not installed'
        page = self._page

        request_id = event.get('requestId')
        if not request_id:
            return None
        is_response = 'responseStatusCode' in event or 'responseErrorReason' in event
        key = (request_id, 'Response' if is_response else 'Request')
        if key in self.dispositions:
            logger.debug(f'[RequestInterceptor] Ignoring duplicate pause for request {request_id} ({key[1]})')
            return None
        self.dispositions[key] = Disposition.PENDING

        request = event.get('request') or {}
        url = request.get('url', '')

        fulfilling = False
        try:
            if is_response:
                disposition = await self._capture_and_continue(page, request_id, event)
            elif self.cached_html is not None and self._is_web_url(url) and event.get('resourceType', 'Document') == 'Document':
                fulfilling = True
                await self._fulfill(page, request_id, 200, 'text/html', self.cached_html.encode('utf-8'))
                disposition = Disposition.FULFILLED_HTML
            else:
                body = self._read_cached_bundle(url)
                if body is not None:
                    fulfilling = True
                    await self._fulfill(page, request_id, BUNDLE_STATUS_CODE, BUNDLE_CONTENT_TYPE, body)
                    disposition = Disposition.FULFILLED_BUNDLE
                    logger.debug(f'[RequestInterceptor] Served cached bundle for {url}')
                else:
                    await page.cdp_client.send.Fetch.continueRequest(
                        params={'requestId': request_id}, session_id=page.session_id
                    )
                    disposition = Disposition.CONTINUED
        except Exception as e:
            logger.warning(f'[RequestInterceptor] Failed to dispose of request {request_id} ({url}): {type(e).__name__}: {e}')
            disposition = await self._continue_after_failure(page, request_id) if fulfilling else Disposition.FAILED

        self.dispositions[key] = disposition
        return disposition

    def classify(self, url: str) -> Path | None:
        """Return the cached bundle file that answers ``url``, if any."""
        if self.bundle_dir is None:
            return None
        path = urlparse(url).path
        if self.marker not in path:
            return None
        name = PurePosixPath(path).name
        if not name:
            return None
        candidate = self.bundle_dir / name
        return candidate if candidate.is_file() else None

    def _read_cached_bundle(self, url: str) -> bytes | None:
        candidate = self.classify(url)
        if candidate is None:
            return None
        try:
            return candidate.read_bytes()
        except OSError as e:
            logger.warning(f'[RequestInterceptor] Cached bundle {candidate} unreadable, passing through: {e}')
            return None

    def _is_web_url(self, url: str) -> bool:
        return bool(self.web_url) and url.split('#', 1)[0] == self.web_url

    async def _fulfill(self, page: 'CDPSession', request_id: str, status: int, content_type: str, body: bytes) -> None:
        await page.cdp_client.send.Fetch.fulfillRequest(
            params={
                'requestId': request_id,
                'responseCode': status,
                'responseHeaders': [{'name': 'Content-Type', 'value': content_type}],
                'body': base64.b64encode(body).decode('ascii'),
            },
            session_id=page.session_id,
        )

    async def _continue_after_failure(self, page: 'CDPSession', request_id: str) -> Disposition:
        """Let a request whose fulfillment failed through to the network."""
        try:
            await page.cdp_client.send.Fetch.continueRequest(params={'requestId': request_id}, session_id=page.session_id)
        except Exception as e:
            logger.warning(f'[RequestInterceptor] Could not continue request {request_id} either: {type(e).__name__}: {e}')
            return Disposition.FAILED
        return Disposition.CONTINUED

    async def _capture_and_continue(self, page: 'CDPSession', request_id: str, event: dict[str, Any]) -> Disposition:
        status = event.get('responseStatusCode')
        if self.web_cache is not None and status is not None and 200 <= status < 300:
            try:
                result = await page.cdp_client.send.Fetch.getResponseBody(
                    params={'requestId': request_id}, session_id=page.session_id
                )
                body = result.get('body', '')
                html = base64.b64decode(body).decode('utf-8') if result.get('base64Encoded') else body
                await self.web_cache.persist(html)
            except Exception as e:
                logger.warning(f'[RequestInterceptor] Could not capture web client document: {type(e).__name__}: {e}')

        await page.cdp_client.send.Fetch.continueRequest(params={'requestId': request_id}, session_id=page.session_id)
        return Disposition.CAPTURED
