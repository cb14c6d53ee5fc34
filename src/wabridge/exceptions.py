"""Exception hierarchy for the session bridge."""


class WABridgeError(Exception):
    """Base exception for all bridge and session errors."""
    pass


class InjectionTimeout(WABridgeError, TimeoutError):
    """The instrumentation bundle did not report readiness before the deadline."""

    def __init__(self, timeout: float, ready_expression: str | None = None):
        self.timeout = timeout
        self.ready_expression = ready_expression
        message = f"Instrumentation bundle not ready after {timeout}s"
        if ready_expression:
            message += f" (waiting for `{ready_expression}`)"
        super().__init__(message)


class AuthDetectionTimeout(WABridgeError, TimeoutError):
    """Neither the authenticated UI nor the challenge UI appeared in time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Could not detect authentication state within {timeout}s")


class BridgeCallTimeout(WABridgeError, TimeoutError):
    """A single host -> page call exceeded its deadline."""

    def __init__(self, timeout: float, description: str | None = None):
        self.timeout = timeout
        self.description = description
        target = f" `{description}`" if description else ""
        super().__init__(f"Page call{target} did not return within {timeout}s")


class BridgeTransportError(WABridgeError):
    """The CDP command carrying a page call failed, e.g. the execution context was destroyed."""
    pass


class RequiredCapabilityMissing(WABridgeError):
    """One or more required page capabilities could not be resolved."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Required page capabilities missing: {', '.join(self.missing)}")


class PageEvaluationError(WABridgeError):
    """An exception raised inside the page context, re-raised on the host.

    Preserves the original JavaScript error name and message.
    """

    def __init__(self, name: str, message: str):
        self.name = name or "Error"
        self.message = message or ""
        super().__init__(f"{self.name}: {self.message}")


class AlreadyInstalled(WABridgeError):
    """Request interception was already installed on this page."""
    pass


class AlreadyInjected(WABridgeError):
    """The instrumentation bundle was already injected into this page."""
    pass


class SessionClosed(WABridgeError):
    """The session is disconnected; no further operations are possible."""

    def __init__(self, message: str = "Session is closed"):
        super().__init__(message)


class SessionNotReady(WABridgeError, TimeoutError):
    """An operation that requires a ready session timed out waiting for it."""

    def __init__(self, state: str, timeout: float):
        self.state = state
        self.timeout = timeout
        super().__init__(f"Session not ready after {timeout}s (state: {state})")


class BrowserConnectionError(WABridgeError):
    """Connecting to, or attaching to a page of, the browser failed."""
    pass


class WebVersionResolveError(WABridgeError):
    """A strict web version cache could not provide the requested version."""

    def __init__(self, version: str | None, source: str | None = None):
        self.version = version
        self.source = source
        where = f" from {source}" if source else ""
        super().__init__(f"Couldn't load web client version {version}{where}")
