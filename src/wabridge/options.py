"""Client options following the browser profile pattern."""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wabridge.constants import (
    DEFAULT_BUNDLE_FILE,
    DEFAULT_INTERCEPT_MARKER,
    DEFAULT_READY_EXPRESSION,
    DEFAULT_USER_AGENT,
    REQUIRED_CAPABILITIES,
    WHATSAPP_REFERER,
    WHATSAPP_WEB_URL,
)


class ClientOptions(BaseModel):
    """Client configuration.

    Manages the browser endpoint, instrumentation bundle location, deadlines
    and linking method used by a Client.
    """

    model_config = ConfigDict(
        extra='ignore',
        validate_assignment=True,
        validate_by_name=True,
        validate_by_alias=True,
    )

    # Browser endpoint
    cdp_url: str | None = Field(
        default=None,
        description='CDP endpoint of a running browser (http://host:port or ws://...)',
    )
    web_url: str = Field(default=WHATSAPP_WEB_URL, description='URL of the messaging web client')
    referer: str | None = Field(default=WHATSAPP_REFERER, description='Referer sent with the initial navigation')
    user_agent: str | None = Field(default=DEFAULT_USER_AGENT, description='User agent override for the page')
    bypass_csp: bool = Field(default=False, description="Bypass the page's Content-Security-Policy")

    # Instrumentation bundle
    bundle_path: Path | None = Field(
        default=None,
        description='Local bundle file injected inline. Defaults to <bundle_dir>/' + DEFAULT_BUNDLE_FILE,
    )
    bundle_dir: Path | None = Field(
        default=None,
        description='Directory of locally cached bundle files served by request interception',
    )
    bundle_url: str | None = Field(
        default=None,
        description='If set, the bundle is loaded with <script src=...> and served from bundle_dir by interception',
    )
    intercept_marker: str = Field(default=DEFAULT_INTERCEPT_MARKER, validation_alias='dist_marker')
    ready_expression: str = Field(default=DEFAULT_READY_EXPRESSION)

    # Deadlines (seconds)
    injection_timeout: float = Field(default=60.0, gt=0)
    auth_timeout: float = Field(default=45.0, gt=0, validation_alias='auth_timeout_s')
    bridge_call_timeout: float | None = Field(default=30.0, gt=0)
    operation_timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=0.1, gt=0)

    # Linking
    linking_method: Literal['qr', 'phone'] = 'qr'
    phone_number: str | None = None
    send_push_notification: bool = True

    required_capabilities: list[str] = Field(default_factory=lambda: list(REQUIRED_CAPABILITIES))

    # Web version cache
    web_version: str | None = None
    web_version_cache: dict[str, Any] = Field(default_factory=lambda: {'type': 'none'})

    @model_validator(mode='after')
    def _check_linking(self) -> 'ClientOptions':
        if self.linking_method == 'phone' and not self.phone_number:
            raise ValueError('phone_number is required when linking_method="phone"')
        return self

    @property
    def resolved_bundle_path(self) -> Path | None:
        if self.bundle_path is not None:
            return Path(self.bundle_path).expanduser()
        if self.bundle_dir is not None:
            return Path(self.bundle_dir).expanduser() / DEFAULT_BUNDLE_FILE
        return None

    @classmethod
    def from_env(cls, **overrides: Any) -> 'ClientOptions':
        """Build options from config.json and WABRIDGE_* environment variables."""
        from wabridge.config import CONFIG

        data = CONFIG.load_config()
        if 'bundle_dir' not in data:
            data['bundle_dir'] = str(CONFIG.BUNDLE_DIR)
        cache = data.get('web_version_cache')
        if isinstance(cache, dict) and cache.get('type') == 'local' and 'path' not in cache:
            data['web_version_cache'] = {**cache, 'path': str(CONFIG.WEB_CACHE_DIR)}
        data.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**data)
