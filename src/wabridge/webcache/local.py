import asyncio
import logging
from pathlib import Path

from wabridge.exceptions import WebVersionResolveError
from wabridge.webcache.base import BaseWebCache, extract_version

logger = logging.getLogger(__name__)


class LocalWebCache(BaseWebCache):
    """Stores web client documents as ``<path>/<version>.html``.

    Args:
        path: Cache directory.
        strict: Raise ``WebVersionResolveError`` when a requested version is not cached.
    """

    writable = True

    def __init__(self, path: Path | str = './.wabridge_cache/', strict: bool = False):
        self.path = Path(path).expanduser()
        self.strict = strict

    def _file_for(self, version: str) -> Path:
        return self.path / f'{version}.html'

    async def resolve(self, version: str | None) -> str | None:
        if not version:
            return None
        file_path = self._file_for(version)
        try:
            return await asyncio.to_thread(file_path.read_text, encoding='utf-8')
        except OSError:
            if self.strict:
                raise WebVersionResolveError(version, str(file_path)) from None
            logger.debug(f'[LocalWebCache] Version {version} not cached at {file_path}')
            return None

    async def persist(self, html: str, version: str | None = None) -> None:
        version = version or extract_version(html)
        if not version:
            logger.debug('[LocalWebCache] No version found in document, not persisting')
            return
        file_path = self._file_for(version)

        def _write() -> None:
            self.path.mkdir(parents=True, exist_ok=True)
            file_path.write_text(html, encoding='utf-8')

        await asyncio.to_thread(_write)
        logger.debug(f'[LocalWebCache] Persisted version {version} to {file_path}')
