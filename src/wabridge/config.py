"""Configuration system for wabridge with automatic migration support."""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EnvConfig(BaseSettings):
    """Environment variable configuration using pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='allow'
    )

    # Logging
    WABRIDGE_LOGGING_LEVEL: str = Field(default='info')
    CDP_LOGGING_LEVEL: str = Field(default='WARNING')
    WABRIDGE_DEBUG_LOG_FILE: str | None = Field(default=None)

    # Path configuration
    XDG_CACHE_HOME: str = Field(default='~/.cache')
    XDG_CONFIG_HOME: str = Field(default='~/.config')
    WABRIDGE_CONFIG_DIR: str | None = Field(default=None)
    WABRIDGE_CONFIG_PATH: str | None = Field(default=None)

    # Client overrides
    WABRIDGE_CDP_URL: str | None = Field(default=None)
    WABRIDGE_WEB_URL: str | None = Field(default=None)
    WABRIDGE_USER_AGENT: str | None = Field(default=None)
    WABRIDGE_BUNDLE_PATH: str | None = Field(default=None)
    WABRIDGE_BUNDLE_DIR: str | None = Field(default=None)
    WABRIDGE_WEB_VERSION: str | None = Field(default=None)
    WABRIDGE_PHONE_NUMBER: str | None = Field(default=None)


class DBStyleEntry(BaseModel):
    """Database-style entry with UUID and metadata."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    default: bool = Field(default=False)
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ClientEntry(DBStyleEntry):
    """Client options entry; unknown keys are passed through to ClientOptions."""

    model_config = ConfigDict(extra='allow')

    cdp_url: str | None = None
    web_url: str | None = None
    user_agent: str | None = None
    bundle_path: str | None = None
    bundle_dir: str | None = None
    linking_method: str | None = None
    phone_number: str | None = None
    web_version: str | None = None
    web_version_cache: dict[str, Any] | None = None


class ConfigJSON(BaseModel):
    """Configuration file format."""

    clients: dict[str, ClientEntry] = Field(default_factory=dict)


def create_default_config() -> ConfigJSON:
    """Create a fresh default configuration."""
    logger.debug('Creating fresh default config.json')

    new_config = ConfigJSON()
    client_id = str(uuid4())
    new_config.clients[client_id] = ClientEntry(
        id=client_id,
        default=True,
        linking_method='qr',
        web_version_cache={'type': 'local'},
    )
    return new_config


def load_and_migrate_config(config_path: Path) -> ConfigJSON:
    """Load config.json or create fresh one if old format detected."""
    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        new_config = create_default_config()
        with open(config_path, 'w') as f:
            json.dump(new_config.model_dump(), f, indent=2)
        return new_config

    try:
        with open(config_path) as f:
            data = json.load(f)

        if 'clients' in data and all(isinstance(v, dict) and 'id' in v for v in data['clients'].values()):
            return ConfigJSON(**data)

        # Old format detected - replace it with a fresh config
        logger.debug(f'Old config format detected at {config_path}, creating fresh config')
        new_config = create_default_config()
        with open(config_path, 'w') as f:
            json.dump(new_config.model_dump(), f, indent=2)
        return new_config

    except Exception as e:
        logger.error(f'Failed to load config from {config_path}: {e}, creating fresh config')
        new_config = create_default_config()
        try:
            with open(config_path, 'w') as f:
                json.dump(new_config.model_dump(), f, indent=2)
        except Exception as write_error:
            logger.error(f'Failed to write fresh config: {write_error}')
        return new_config


class Config:
    """Configuration class that merges environment and file config.

    Re-reads environment variables on every access for flexibility.
    """

    _instance: 'Config | None' = None
    _dirs_created: bool = False

    def __new__(cls) -> 'Config':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def LOGGING_LEVEL(self) -> str:
        return os.getenv('WABRIDGE_LOGGING_LEVEL', 'info').lower()

    @property
    def CDP_LOGGING_LEVEL(self) -> str:
        return os.getenv('CDP_LOGGING_LEVEL', 'WARNING').upper()

    @property
    def DEBUG_LOG_FILE(self) -> str | None:
        return os.getenv('WABRIDGE_DEBUG_LOG_FILE') or None

    @property
    def CDP_URL(self) -> str | None:
        return os.getenv('WABRIDGE_CDP_URL') or None

    @property
    def XDG_CACHE_HOME(self) -> Path:
        return Path(os.getenv('XDG_CACHE_HOME', '~/.cache')).expanduser().resolve()

    @property
    def XDG_CONFIG_HOME(self) -> Path:
        return Path(os.getenv('XDG_CONFIG_HOME', '~/.config')).expanduser().resolve()

    @property
    def CONFIG_DIR(self) -> Path:
        path = Path(
            os.getenv('WABRIDGE_CONFIG_DIR', str(self.XDG_CONFIG_HOME / 'wabridge'))
        ).expanduser().resolve()
        self._ensure_dirs()
        return path

    @property
    def CONFIG_FILE(self) -> Path:
        return self.CONFIG_DIR / 'config.json'

    @property
    def WEB_CACHE_DIR(self) -> Path:
        return self.XDG_CACHE_HOME / 'wabridge' / 'web_versions'

    @property
    def BUNDLE_DIR(self) -> Path:
        return Path(os.getenv('WABRIDGE_BUNDLE_DIR', str(self.CONFIG_DIR / 'dist'))).expanduser().resolve()

    def _ensure_dirs(self) -> None:
        """Create directories if they don't exist (only once)"""
        if not self._dirs_created:
            config_dir = Path(
                os.getenv('WABRIDGE_CONFIG_DIR', str(self.XDG_CONFIG_HOME / 'wabridge'))
            ).expanduser().resolve()
            config_dir.mkdir(parents=True, exist_ok=True)
            Config._dirs_created = True

    def _get_config_path(self) -> Path:
        """Get config path from env config."""
        env_config = EnvConfig()
        if env_config.WABRIDGE_CONFIG_PATH:
            return Path(env_config.WABRIDGE_CONFIG_PATH).expanduser()
        elif env_config.WABRIDGE_CONFIG_DIR:
            return Path(env_config.WABRIDGE_CONFIG_DIR).expanduser() / 'config.json'
        else:
            xdg_config = Path(env_config.XDG_CONFIG_HOME).expanduser()
            return xdg_config / 'wabridge' / 'config.json'

    def get_default_client(self) -> dict[str, Any]:
        """Get the default client options from config.json."""
        db_config = load_and_migrate_config(self._get_config_path())
        for client in db_config.clients.values():
            if client.default:
                return client.model_dump(exclude_none=True, exclude={'id', 'default', 'created_at'})

        if db_config.clients:
            return next(iter(db_config.clients.values())).model_dump(
                exclude_none=True, exclude={'id', 'default', 'created_at'}
            )

        return {}

    def load_config(self) -> dict[str, Any]:
        """Load client options from config.json with env var overrides."""
        options = self.get_default_client()
        env_config = EnvConfig()

        overrides = {
            'cdp_url': env_config.WABRIDGE_CDP_URL,
            'web_url': env_config.WABRIDGE_WEB_URL,
            'user_agent': env_config.WABRIDGE_USER_AGENT,
            'bundle_path': env_config.WABRIDGE_BUNDLE_PATH,
            'bundle_dir': env_config.WABRIDGE_BUNDLE_DIR,
            'web_version': env_config.WABRIDGE_WEB_VERSION,
        }
        options.update({key: value for key, value in overrides.items() if value})

        if env_config.WABRIDGE_PHONE_NUMBER:
            options['phone_number'] = env_config.WABRIDGE_PHONE_NUMBER
            options['linking_method'] = 'phone'

        return options


# Create singleton instance
CONFIG = Config()


def load_wabridge_config() -> dict[str, Any]:
    """Load wabridge client configuration."""
    return CONFIG.load_config()
