"""wabridge - session lifecycle and event bridge for the WhatsApp Web client over CDP."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Core session components - always available
from wabridge.client import Client, InitializationResult
from wabridge.options import ClientOptions
from wabridge.session.views import AuthChallenge, BridgeEvent, ConnectionState, DisconnectReason, Session
from wabridge.auth import BaseAuthStrategy, NoAuth
from wabridge.exceptions import (
    AlreadyInjected,
    AlreadyInstalled,
    AuthDetectionTimeout,
    BridgeCallTimeout,
    BridgeTransportError,
    BrowserConnectionError,
    InjectionTimeout,
    PageEvaluationError,
    RequiredCapabilityMissing,
    SessionClosed,
    SessionNotReady,
    WABridgeError,
    WebVersionResolveError,
)

# Lazy imports for optional modules
if TYPE_CHECKING:
    from wabridge.webcache import LocalWebCache, NoWebCache, RemoteWebCache, create_web_cache
    from wabridge.logging_config import setup_logging

_LAZY_IMPORTS = {
    # Web version cache
    'LocalWebCache': ('wabridge.webcache', 'LocalWebCache'),
    'NoWebCache': ('wabridge.webcache', 'NoWebCache'),
    'RemoteWebCache': ('wabridge.webcache', 'RemoteWebCache'),
    'create_web_cache': ('wabridge.webcache', 'create_web_cache'),
    # Logging
    'setup_logging': ('wabridge.logging_config', 'setup_logging'),
}


def __getattr__(name: str):
    """Lazy import mechanism for optional modules.

    Args:
        name: The name of the attribute being accessed.

    Returns:
        The requested module attribute.

    Raises:
        AttributeError: If the attribute is not found in the module.

    Example:
        >>> from wabridge import setup_logging  # Only imports when accessed
        >>> setup_logging(log_level="debug")
    """
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        import importlib
        module = importlib.import_module(module_path)
        return getattr(module, attr_name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Version
    "__version__",
    # Client
    "Client",
    "ClientOptions",
    "InitializationResult",
    # Session
    "AuthChallenge",
    "BridgeEvent",
    "ConnectionState",
    "DisconnectReason",
    "Session",
    # Auth
    "BaseAuthStrategy",
    "NoAuth",
    # Errors
    "AlreadyInjected",
    "AlreadyInstalled",
    "AuthDetectionTimeout",
    "BridgeCallTimeout",
    "BridgeTransportError",
    "BrowserConnectionError",
    "InjectionTimeout",
    "PageEvaluationError",
    "RequiredCapabilityMissing",
    "SessionClosed",
    "SessionNotReady",
    "WABridgeError",
    "WebVersionResolveError",
    # Web version cache (lazy)
    "LocalWebCache",
    "NoWebCache",
    "RemoteWebCache",
    "create_web_cache",
    # Logging (lazy)
    "setup_logging",
]
