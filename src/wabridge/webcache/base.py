"""Web client version cache interface."""

import re

_MANIFEST_VERSION = re.compile(r'manifest-([\d\\.]+)\.json')


def extract_version(html: str) -> str | None:
    """Read the web client version from its document's manifest link."""
    match = _MANIFEST_VERSION.search(html)
    return match.group(1) if match else None


class BaseWebCache:
    """Default implementation of a web version cache that does nothing."""

    # Whether persist() stores anything; the interceptor only captures documents for writable caches
    writable: bool = False

    async def resolve(self, version: str | None) -> str | None:
        return None

    async def persist(self, html: str, version: str | None = None) -> None:
        return None


class NoWebCache(BaseWebCache):
    pass
