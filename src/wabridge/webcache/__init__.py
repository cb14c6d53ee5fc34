from typing import Any

from wabridge.webcache.base import BaseWebCache, NoWebCache, extract_version
from wabridge.webcache.local import LocalWebCache
from wabridge.webcache.remote import RemoteWebCache


def create_web_cache(cache_type: str | None, **options: Any) -> BaseWebCache:
    """Create a web version cache from its ``type`` and options.

    Raises:
        ValueError: For an unknown cache type.
    """
    if cache_type == 'local':
        return LocalWebCache(**options)
    elif cache_type == 'remote':
        return RemoteWebCache(**options)
    elif cache_type in (None, 'none'):
        return NoWebCache()
    raise ValueError(f'Invalid web version cache type: {cache_type}')


__all__ = [
    'BaseWebCache',
    'LocalWebCache',
    'NoWebCache',
    'RemoteWebCache',
    'create_web_cache',
    'extract_version',
]
