import logging

import httpx

from wabridge.exceptions import WebVersionResolveError
from wabridge.webcache.base import BaseWebCache

logger = logging.getLogger(__name__)


class RemoteWebCache(BaseWebCache):
    """Read-only cache that fetches documents from a URL template.

    Args:
        remote_path: URL containing ``{version}``, e.g. ``https://host/html/{version}.html``.
        strict: Raise ``WebVersionResolveError`` when the version cannot be fetched.
        timeout: HTTP timeout in seconds.
    """

    def __init__(self, remote_path: str, strict: bool = False, timeout: float = 10.0):
        if not remote_path:
            raise ValueError('RemoteWebCache requires remote_path')
        self.remote_path = remote_path
        self.strict = strict
        self.timeout = timeout

    async def resolve(self, version: str | None) -> str | None:
        if not version:
            return None
        url = self.remote_path.replace('{version}', version)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
            if response.status_code == 200:
                return response.text
            logger.debug(f'[RemoteWebCache] {url} answered {response.status_code}')
        except httpx.HTTPError as e:
            logger.debug(f'[RemoteWebCache] Fetching {url} failed: {type(e).__name__}: {e}')

        if self.strict:
            raise WebVersionResolveError(version, url)
        return None
