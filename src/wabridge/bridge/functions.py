"""Two-way function bridge between the host process and the page context.

Host callables are exposed to the page with ``Runtime.addBinding``: the page
sees ``window[name](...args)`` returning a Promise, the host receives the call
through a single ``Runtime.bindingCalled`` handler and settles the Promise with
a follow-up evaluation. Page functions are called from the host with
``Runtime.evaluate`` inside an envelope that turns page exceptions into values,
so their name and message survive the crossing.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from wabridge.exceptions import BridgeCallTimeout, BridgeTransportError, PageEvaluationError, SessionClosed

if TYPE_CHECKING:
    from wabridge.browser.session import CDPSession

logger = logging.getLogger(__name__)

BINDING_PREFIX = '__wabridge_binding_'

_CALLBACKS = '__wabridgeCallbacks'

_WRAPPER_SCRIPT = """(() => {
  const name = %(name)s;
  const bindingName = %(binding)s;
  const registry = window.%(callbacks)s || (window.%(callbacks)s = {});
  const entry = registry[name] || (registry[name] = { seq: 0, callbacks: new Map() });
  window[name] = (...args) => new Promise((resolve, reject) => {
    entry.seq += 1;
    const id = entry.seq;
    entry.callbacks.set(id, { resolve, reject });
    try {
      window[bindingName](JSON.stringify({ id, args }));
    } catch (err) {
      entry.callbacks.delete(id);
      reject(err);
    }
  });
})()"""

_SETTLE_SCRIPT = """(() => {
  const entry = (window.%(callbacks)s || {})[%(name)s];
  const callback = entry && entry.callbacks.get(%(id)s);
  if (!callback) return false;
  entry.callbacks.delete(%(id)s);
  const reply = %(reply)s;
  if (reply.ok) {
    callback.resolve(reply.value);
  } else {
    const error = new Error(reply.message);
    error.name = reply.name;
    callback.reject(error);
  }
  return true;
})()"""

_CALL_ENVELOPE = """(async () => {
  try {
    const fn = (%(fn)s);
    const value = await fn(...%(args)s);
    return { ok: true, value: value === undefined ? null : JSON.parse(JSON.stringify(value)) };
  } catch (err) {
    return {
      ok: false,
      name: (err && err.name) || 'Error',
      message: (err && err.message !== undefined) ? String(err.message) : String(err),
    };
  }
})()"""


def _exception_details_to_error(details: dict[str, Any]) -> PageEvaluationError:
    exception = details.get('exception') or {}
    name = exception.get('className') or 'Error'
    description = exception.get('description') or details.get('text') or ''
    message = description.split('\n', 1)[0]
    prefix = f'{name}: '
    if message.startswith(prefix):
        message = message[len(prefix):]
    return PageEvaluationError(name, message)


class FunctionBridge:
    """Host <-> page function calls for one bound page.

    Owned by a single Session; after ``close()`` every call fails with
    ``SessionClosed``.
    """

    def __init__(self, page: 'CDPSession', default_timeout: float | None = None):
        self.page = page
        self.default_timeout = default_timeout
        self._functions: dict[str, Callable[..., Any]] = {}
        self._inflight: set[asyncio.Future] = set()
        self._reply_tasks: set[asyncio.Task] = set()
        self._handler_registered = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed('Function bridge is closed')

    async def expose_to_page(self, name: str, host_function: Callable[..., Any]) -> None:
        """Make ``host_function`` callable from the page as ``window[name](...)``.

        Synchronous host functions run inline, in the order the page called
        them. Coroutine results are awaited in a separate task.

        Raises:
            ValueError: If ``name`` is already exposed.
            SessionClosed: If the bridge is closed.
        """
        self._ensure_open()
        if name in self._functions:
            raise ValueError(f'A host function named {name!r} is already exposed to the page')
        self._functions[name] = host_function

        if not self._handler_registered:
            self.page.cdp_client.register.Runtime.bindingCalled(self._on_binding_called)
            self._handler_registered = True

        binding_name = BINDING_PREFIX + name
        wrapper = _WRAPPER_SCRIPT % {
            'name': json.dumps(name),
            'binding': json.dumps(binding_name),
            'callbacks': _CALLBACKS,
        }
        send = self.page.cdp_client.send
        await send.Runtime.addBinding(params={'name': binding_name}, session_id=self.page.session_id)
        await send.Page.addScriptToEvaluateOnNewDocument(params={'source': wrapper}, session_id=self.page.session_id)
        await send.Runtime.evaluate(params={'expression': wrapper}, session_id=self.page.session_id)
        logger.debug(f'[FunctionBridge] Exposed host function {name!r} to the page')

    async def call_in_page(self, fn: str, *args: Any, timeout: float | None = None) -> Any:
        """Call a page-context function and return its JSON result.

        Args:
            fn: JavaScript function source, e.g. ``'(id) => WPP.contact.get(id)'``.
            *args: JSON-serializable arguments.
            timeout: Seconds to wait; defaults to ``default_timeout`` (None waits forever).

        Raises:
            TypeError: If an argument is not JSON serializable.
            PageEvaluationError: If the page function throws.
            BridgeCallTimeout: If no result arrives in time.
            BridgeTransportError: If the CDP command itself fails.
            SessionClosed: If the bridge is or becomes closed.
        """
        self._ensure_open()
        try:
            encoded_args = json.dumps(list(args))
        except (TypeError, ValueError) as e:
            raise TypeError(f'Arguments for a page call must be JSON serializable: {e}') from e

        expression = _CALL_ENVELOPE % {'fn': fn, 'args': encoded_args}
        timeout = self.default_timeout if timeout is None else timeout

        task = asyncio.ensure_future(self._evaluate_call(expression))
        self._inflight.add(task)
        task.add_done_callback(self._discard_call)

        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            # The late page response is discarded when it arrives
            raise BridgeCallTimeout(timeout, description=fn if len(fn) <= 80 else fn[:77] + '...')
        if task.cancelled():
            raise SessionClosed('Function bridge closed while a page call was in flight')
        return task.result()

    def _discard_call(self, task: asyncio.Future) -> None:
        self._inflight.discard(task)
        if not task.cancelled():
            # Mark late exceptions as retrieved
            task.exception()

    async def _evaluate_call(self, expression: str) -> Any:
        try:
            result = await self.page.cdp_client.send.Runtime.evaluate(
                params={'expression': expression, 'awaitPromise': True, 'returnByValue': True},
                session_id=self.page.session_id,
            )
        except RuntimeError as e:
            # cdp-use reports protocol errors as RuntimeError
            raise BridgeTransportError(str(e)) from e
        if self._closed:
            raise SessionClosed('Function bridge closed while a page call was in flight')
        if result.get('exceptionDetails'):
            raise _exception_details_to_error(result['exceptionDetails'])

        reply = result.get('result', {}).get('value')
        if not isinstance(reply, dict) or 'ok' not in reply:
            return reply
        if reply['ok']:
            return reply.get('value')
        raise PageEvaluationError(reply.get('name') or 'Error', reply.get('message') or '')

    def _on_binding_called(self, event: dict[str, Any], session_id: str | None = None) -> None:
        if self._closed or (session_id is not None and session_id != self.page.session_id):
            return
        binding_name = event.get('name', '')
        if not binding_name.startswith(BINDING_PREFIX):
            return
        name = binding_name[len(BINDING_PREFIX):]
        host_function = self._functions.get(name)
        if host_function is None:
            return

        try:
            call = json.loads(event.get('payload') or '{}')
        except json.JSONDecodeError as e:
            logger.warning(f'[FunctionBridge] Malformed call payload for {name!r}: {e}')
            return
        call_id = call.get('id')
        context_id = event.get('executionContextId')

        try:
            result = host_function(*call.get('args', []))
        except Exception as e:
            logger.debug(f'[FunctionBridge] Host function {name!r} raised {type(e).__name__}: {e}')
            self._schedule_reply(self._settle(name, call_id, context_id, error=e))
            return

        if inspect.isawaitable(result):
            self._schedule_reply(self._settle_awaitable(name, call_id, context_id, result))
        else:
            self._schedule_reply(self._settle(name, call_id, context_id, value=result))

    def _schedule_reply(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._reply_tasks.add(task)
        task.add_done_callback(self._reply_tasks.discard)

    async def _settle_awaitable(self, name: str, call_id: Any, context_id: int | None, awaitable) -> None:
        try:
            value = await awaitable
        except Exception as e:
            await self._settle(name, call_id, context_id, error=e)
            return
        await self._settle(name, call_id, context_id, value=value)

    async def _settle(
        self,
        name: str,
        call_id: Any,
        context_id: int | None,
        value: Any = None,
        error: BaseException | None = None,
    ) -> None:
        if self._closed or call_id is None:
            return
        if error is None:
            try:
                reply = json.dumps({'ok': True, 'value': value})
            except (TypeError, ValueError) as e:
                error = TypeError(f'Result of host function {name!r} is not JSON serializable: {e}')
        if error is not None:
            reply = json.dumps({'ok': False, 'name': type(error).__name__, 'message': str(error)})

        params: dict[str, Any] = {
            'expression': _SETTLE_SCRIPT % {
                'callbacks': _CALLBACKS,
                'name': json.dumps(name),
                'id': json.dumps(call_id),
                'reply': reply,
            }
        }
        if context_id is not None:
            params['contextId'] = context_id
        try:
            await self.page.cdp_client.send.Runtime.evaluate(params=params, session_id=self.page.session_id)
        except Exception as e:
            logger.debug(f'[FunctionBridge] Could not settle call {call_id} of {name!r}: {type(e).__name__}: {e}')

    async def close(self) -> None:
        """Close the bridge; calls in flight fail with ``SessionClosed``."""
        if self._closed:
            return
        self._closed = True
        pending = list(self._inflight) + list(self._reply_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._functions.clear()
        logger.debug('[FunctionBridge] Closed')
