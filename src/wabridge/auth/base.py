"""Hooks for persisting and restoring an authenticated session."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wabridge.client import Client


class BaseAuthStrategy:
    """Base class which all authentication strategies extend.

    Every hook is a no-op; subclasses override the ones they need. The
    client calls them around browser setup and on lifecycle events.
    """

    def __init__(self) -> None:
        self.client: 'Client | None' = None

    def setup(self, client: 'Client') -> None:
        self.client = client

    async def before_browser_initialized(self) -> None:
        pass

    async def after_browser_initialized(self) -> None:
        pass

    async def on_authentication_needed(self) -> dict:
        """Called when the session needs a QR scan or pairing code.

        Returns:
            ``{'failed': bool, 'restart': bool, 'failure_message': str | None}``
        """
        return {'failed': False, 'restart': False, 'failure_message': None}

    async def after_auth_ready(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def logout(self) -> None:
        pass

    async def destroy(self) -> None:
        pass
