"""Named-function resolution inside the instrumentation bundle."""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, PrivateAttr

from wabridge.bridge.functions import FunctionBridge
from wabridge.exceptions import RequiredCapabilityMissing

logger = logging.getLogger(__name__)

_PROBE_FN = """(root, name) => {
  let target = window[root];
  for (const part of name.split('.')) {
    if (target === undefined || target === null) return null;
    target = target[part];
  }
  if (target === undefined) return null;
  return { kind: typeof target };
}"""


class CapabilityDescriptor(BaseModel):
    """A resolved page capability, bound to the bridge that calls it."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    kind: Literal['function', 'value'] = 'function'

    _bridge: FunctionBridge | None = PrivateAttr(default=None)

    def bind(self, bridge: FunctionBridge) -> 'CapabilityDescriptor':
        self._bridge = bridge
        return self

    async def __call__(self, *args: Any, timeout: float | None = None) -> Any:
        """Invoke the capability in the page (or read it, for values)."""
        assert self._bridge is not None, f'Capability {self.name} is not bound to a bridge'
        if self.kind == 'value':
            return await self._bridge.call_in_page(f'() => {self.path}', timeout=timeout)
        return await self._bridge.call_in_page(f'(...args) => {self.path}(...args)', *args, timeout=timeout)


class CapabilityResolver(ABC):
    """Resolves capability names to descriptors; the lookup technique is up to the subclass."""

    @abstractmethod
    async def resolve(self, name: str) -> CapabilityDescriptor | None:
        """Return the descriptor for ``name``, or None if the page does not offer it."""

    async def resolve_all(self, names: Iterable[str]) -> dict[str, CapabilityDescriptor]:
        """Resolve every name, failing with the complete list of missing names.

        Raises:
            RequiredCapabilityMissing: If any name does not resolve.
        """
        resolved: dict[str, CapabilityDescriptor] = {}
        missing: list[str] = []
        for name in names:
            descriptor = await self.resolve(name)
            if descriptor is None:
                missing.append(name)
            else:
                resolved[name] = descriptor
        if missing:
            raise RequiredCapabilityMissing(missing)
        return resolved


class WppCapabilityResolver(CapabilityResolver):
    """Looks up dotted paths under ``window.WPP``."""

    def __init__(self, bridge: FunctionBridge, root: str = 'WPP'):
        self.bridge = bridge
        self.root = root

    async def resolve(self, name: str) -> CapabilityDescriptor | None:
        found = await self.bridge.call_in_page(_PROBE_FN, self.root, name)
        if not found:
            logger.debug(f'[WppCapabilityResolver] {self.root}.{name} not found')
            return None
        kind = 'function' if found.get('kind') == 'function' else 'value'
        path = f'window[{json.dumps(self.root)}].{name}'
        return CapabilityDescriptor(name=name, path=path, kind=kind).bind(self.bridge)
