"""Browser module for low-level CDP logic."""

from wabridge.browser.session import BrowserSession, CDPSession

__all__ = ["BrowserSession", "CDPSession"]
