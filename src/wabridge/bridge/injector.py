"""Load the instrumentation bundle into the page and wait for it to become ready."""

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from wabridge.constants import DEFAULT_READY_EXPRESSION
from wabridge.exceptions import AlreadyInjected, InjectionTimeout

if TYPE_CHECKING:
    from wabridge.browser.session import CDPSession

logger = logging.getLogger(__name__)

# Marks the document the bundle was appended to; a fresh document after a navigation lacks it
_APPENDED_FLAG = '__wabridgeBundleAppended'

_APPEND_SCRIPT = """(() => {
  const parent = document.head || document.documentElement;
  if (!parent) return false;
  const script = document.createElement('script');
  script.type = 'text/javascript';
  %(assign)s
  parent.appendChild(script);
  window.%(flag)s = true;
  return true;
})()"""

_POLL_SCRIPT = """(() => {
  if (%(ready)s) return 'ready';
  return window.%(flag)s ? 'pending' : 'missing';
})()"""


class ScriptInjector:
    """Append the bundle as a ``<script>`` tag and wait for its readiness flag.

    Either ``bundle_path`` (inline content) or ``bundle_url`` (``src`` attribute,
    normally answered by the request interceptor) must be given.
    """

    def __init__(
        self,
        bundle_path: Path | str | None = None,
        bundle_url: str | None = None,
        ready_expression: str = DEFAULT_READY_EXPRESSION,
        poll_interval: float = 0.1,
    ):
        if bundle_path is None and bundle_url is None:
            raise ValueError('ScriptInjector needs a bundle_path or a bundle_url')
        self.bundle_path = Path(bundle_path).expanduser() if bundle_path is not None else None
        self.bundle_url = bundle_url
        self.ready_expression = ready_expression
        self.poll_interval = poll_interval
        self._injected = False

    @property
    def injected(self) -> bool:
        return self._injected

    async def inject(self, page: 'CDPSession', timeout: float) -> None:
        """Inject the bundle and return once ``ready_expression`` is truthy.

        Raises:
            AlreadyInjected: If this injector was already used.
            InjectionTimeout: If the bundle is not ready within ``timeout`` seconds.
            OSError: If the bundle file cannot be read.
        """
        if self._injected:
            raise AlreadyInjected(f'Bundle was already injected into target {page.target_id}')
        self._injected = True

        append_expression = _APPEND_SCRIPT % {'assign': self._script_assignment(), 'flag': _APPENDED_FLAG}
        try:
            await asyncio.wait_for(self._append_and_wait(page, append_expression), timeout=timeout)
        except asyncio.TimeoutError:
            raise InjectionTimeout(timeout, self.ready_expression) from None
        logger.debug(f'[ScriptInjector] Bundle ready on target {page.target_id[-4:]}')

    def _script_assignment(self) -> str:
        if self.bundle_url is not None:
            return f'script.src = {json.dumps(self.bundle_url)};'
        assert self.bundle_path is not None
        source = self.bundle_path.read_text(encoding='utf-8')
        return f'script.text = {json.dumps(source)};'

    async def _append_and_wait(self, page: 'CDPSession', append_expression: str) -> None:
        poll_expression = _POLL_SCRIPT % {'ready': self.ready_expression, 'flag': _APPENDED_FLAG}
        appended = False
        while True:
            if not appended:
                appended = bool(await self._evaluate(page, append_expression))
                if appended:
                    logger.debug('[ScriptInjector] Bundle script tag appended')
            else:
                status = await self._evaluate(page, poll_expression)
                if status == 'ready':
                    return
                if status == 'missing':
                    # New document after a navigation
                    logger.debug('[ScriptInjector] Document changed before bundle became ready, appending again')
                    appended = False
                    continue
            await asyncio.sleep(self.poll_interval)

    async def _evaluate(self, page: 'CDPSession', expression: str) -> Any:
        try:
            result = await page.cdp_client.send.Runtime.evaluate(
                params={'expression': expression, 'returnByValue': True},
                session_id=page.session_id,
            )
        except Exception as e:
            # Execution context destroyed mid-navigation
            logger.debug(f'[ScriptInjector] Evaluation failed, retrying: {type(e).__name__}: {e}')
            return None
        if result.get('exceptionDetails'):
            return None
        return result.get('result', {}).get('value')
