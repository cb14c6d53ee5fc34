from wabridge.browser.watchdogs.auth_watchdog import AuthStrategyWatchdog
from wabridge.browser.watchdogs.base import BaseWatchdog
from wabridge.browser.watchdogs.connection_watchdog import ConnectionWatchdog

__all__ = ['AuthStrategyWatchdog', 'BaseWatchdog', 'ConnectionWatchdog']
