"""Ordered, de-duplicated relay of page events to host subscribers."""

import asyncio
import inspect
import itertools
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from wabridge.bridge.functions import FunctionBridge
from wabridge.constants import RELAY_BINDING_NAME, PageEvents
from wabridge.exceptions import SessionClosed
from wabridge.session.views import BridgeEvent

logger = logging.getLogger(__name__)

BridgeEventHandler = Callable[[BridgeEvent], Any]
MessageResolver = Callable[[str], Awaitable[dict[str, Any] | None]]

PHONE_CODE_TYPES = ('phoneNumber', 'code', 'linkDevice')

# Wires one listener per name on the bundle's emitter; names already wired are skipped
_SUBSCRIBE_FN = """(names, relayName) => {
  const wired = window.__wabridgeRelayWired || (window.__wabridgeRelayWired = new Set());
  const normalize = (data) => {
    if (data === undefined || data === null) return null;
    try {
      const plain = typeof data.serialize === 'function' ? data.serialize() : data;
      return JSON.parse(JSON.stringify(plain));
    } catch (err) {
      return null;
    }
  };
  for (const name of names) {
    if (wired.has(name)) continue;
    wired.add(name);
    window.WPP.ev.on(name, (data) => {
      window[relayName]({ event: name, data: normalize(data) });
    });
  }
  return Array.from(wired);
}"""


def challenge_mode(payload: dict[str, Any]) -> str:
    """Linking mode of a ``conn.auth_code_change`` payload."""
    return 'phoneNumber' if payload.get('type') in PHONE_CODE_TYPES else 'qr'


def challenge_code(payload: dict[str, Any]) -> str | None:
    code = payload.get('fullCode') or payload.get('code')
    return str(code) if code is not None else None


class EventRelay:
    """Streams page events to host handlers in page firing order.

    Every page fire becomes one call of the exposed relay function, which only
    enqueues. A single consumer task then expands acknowledgment batches,
    suppresses repeated auth codes and awaits each handler in turn.

    Args:
        bridge: Function bridge of the Session that owns this relay.
        message_resolver: Coroutine turning a serialized message id into the
            message dict; used when expanding acknowledgment batches.
    """

    def __init__(self, bridge: FunctionBridge, message_resolver: MessageResolver | None = None):
        self.bridge = bridge
        self.message_resolver = message_resolver

        self._handlers: dict[str, list[BridgeEventHandler]] = defaultdict(list)
        self._wired: set[str] = set()
        self._queue: asyncio.Queue[tuple[str, Any, datetime]] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._sequence = itertools.count(1)
        self._last_codes: dict[str, str] = {}
        self._code_generations: dict[str, int] = defaultdict(int)
        self._exposed = False
        self._closed = False

    @property
    def wired_events(self) -> frozenset[str]:
        return frozenset(self._wired)

    async def subscribe(self, event_names: str | Iterable[str], handler: BridgeEventHandler) -> None:
        """Deliver every event named in ``event_names`` to ``handler``.

        Raises:
            SessionClosed: If the relay is closed.
        """
        if self._closed:
            raise SessionClosed('Event relay is closed')
        names = [event_names] if isinstance(event_names, str) else list(event_names)

        if not self._exposed:
            await self.bridge.expose_to_page(RELAY_BINDING_NAME, self._on_page_event)
            self._exposed = True

        for name in names:
            self._handlers[name].append(handler)

        unwired = [name for name in dict.fromkeys(names) if name not in self._wired]
        if unwired:
            await self.bridge.call_in_page(_SUBSCRIBE_FN, unwired, RELAY_BINDING_NAME)
            self._wired.update(unwired)
            logger.debug(f'[EventRelay] Listening for page events: {", ".join(unwired)}')
        self._ensure_consumer()

    def emit_local(self, name: str, payload: Any) -> None:
        """Feed a host-obtained payload through the same queue and rules as page events."""
        self._enqueue(name, payload)

    def challenge_generation(self, mode: str) -> int:
        """Number of page auth codes seen so far for ``mode`` (``'qr'`` or ``'phoneNumber'``)."""
        return self._code_generations[mode]

    def emit_fetched_challenge(self, payload: dict[str, Any], generation: int) -> bool:
        """Enqueue an auth code the host fetched, unless the page reported a newer one meanwhile.

        Args:
            payload: ``conn.auth_code_change`` payload obtained from the page.
            generation: ``challenge_generation()`` of the payload's mode taken before the fetch began.

        Returns:
            True if the payload was enqueued.
        """
        mode = challenge_mode(payload)
        if self._code_generations[mode] != generation:
            logger.debug(f'[EventRelay] Dropping fetched {mode} code: the page reported a newer one')
            return False
        self._enqueue(PageEvents.AUTH_CODE_CHANGE, payload)
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        if self._consumer is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop delivering; anything still queued is dropped."""
        if self._closed:
            return
        self._closed = True
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.debug(f'[EventRelay] Dropped {dropped} queued event(s) on close')
        consumer, self._consumer = self._consumer, None
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        self._handlers.clear()

    def _on_page_event(self, envelope: Any) -> None:
        if not isinstance(envelope, dict) or not envelope.get('event'):
            logger.debug(f'[EventRelay] Ignoring malformed page event: {envelope!r}')
            return
        name, data = envelope['event'], envelope.get('data')
        if name == PageEvents.AUTH_CODE_CHANGE and isinstance(data, dict):
            self._code_generations[challenge_mode(data)] += 1
        self._enqueue(name, data)

    def _enqueue(self, name: str, payload: Any) -> None:
        if self._closed:
            return
        self._queue.put_nowait((name, payload, datetime.now(timezone.utc)))
        self._ensure_consumer()

    def _ensure_consumer(self) -> None:
        if self._consumer is None and not self._closed:
            self._consumer = asyncio.create_task(self._consume(), name='wabridge-event-relay')

    async def _consume(self) -> None:
        while not self._closed:
            name, payload, observed_at = await self._queue.get()
            try:
                await self._process(name, payload, observed_at)
            except Exception as e:
                logger.error(f'[EventRelay] Failed to relay {name}: {type(e).__name__}: {e}')
            finally:
                self._queue.task_done()

    async def _process(self, name: str, payload: Any, observed_at: datetime) -> None:
        if name == PageEvents.MSG_ACK_CHANGE:
            payloads = await self._expand_ack_batch(payload)
        elif name == PageEvents.AUTH_CODE_CHANGE and not self._is_new_challenge(payload):
            logger.debug('[EventRelay] Suppressing repeated auth code')
            return
        else:
            payloads = [payload]

        for item in payloads:
            if self._closed:
                return
            event = BridgeEvent(name=name, payload=item, observed_at=observed_at, sequence=next(self._sequence))
            for handler in list(self._handlers.get(name, ())):
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f'[EventRelay] Handler {getattr(handler, "__name__", handler)} failed on {name}: {type(e).__name__}: {e}')

    def _is_new_challenge(self, payload: Any) -> bool:
        if not isinstance(payload, dict):
            return True
        code = challenge_code(payload)
        if code is None:
            return True
        mode = challenge_mode(payload)
        if self._last_codes.get(mode) == code:
            return False
        self._last_codes[mode] = code
        return True

    async def _expand_ack_batch(self, payload: Any) -> list[dict[str, Any]]:
        if not isinstance(payload, dict):
            return []
        ack = payload.get('ack')
        expanded = []
        for message_id in payload.get('ids') or []:
            remote = message_id.get('remote') if isinstance(message_id, dict) else None
            if isinstance(remote, dict) and 'device' in remote:
                # Per-device duplicate of a message reported under its plain id
                continue
            serialized = message_id.get('_serialized') if isinstance(message_id, dict) else str(message_id)
            expanded.append({'ack': ack, 'message': await self._resolve_message(message_id, serialized)})
        return expanded

    async def _resolve_message(self, message_id: Any, serialized: str | None) -> dict[str, Any]:
        if self.message_resolver is not None and serialized:
            try:
                message = await self.message_resolver(serialized)
                if isinstance(message, dict):
                    return message
            except Exception as e:
                logger.debug(f'[EventRelay] Could not resolve message {serialized}: {type(e).__name__}: {e}')
        return {'id': message_id}
