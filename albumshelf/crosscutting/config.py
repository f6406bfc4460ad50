import os
from typing import Dict, Any, Optional, Mapping
from pathlib import Path


class ConfigError(Exception):
    """Configuration error."""
    pass


DEFAULT_DEVICE_NAME = 'AlbumShelf Player'
DEFAULT_REDIRECT_URI = 'http://localhost:3000/api/spotify/callback'


class Settings:
    """Application settings resolved from the process environment.

    The HTTP runner loads ``.env`` into the environment before the first
    instance is created, so everything here reads ``os.environ`` (or an
    explicit mapping in tests).
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None,
                 data_dir: Optional[str] = None):
        """Initialize settings."""
        self._environ = environ if environ is not None else os.environ

        configured_dir = data_dir or self._environ.get('ALBUMSHELF_DATA_DIR')
        self.data_dir = Path(configured_dir) if configured_dir else Path.home() / '.albumshelf'
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.users_file = self.data_dir / 'users.json'
        self.shelves_file = self.data_dir / 'shelves.json'
        self.local_cache_file = self.data_dir / 'local_cache.json'

    def _get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._environ.get(key)
        return value if value else default

    @property
    def secret_key(self) -> Optional[str]:
        return self._get('ALBUMSHELF_SECRET_KEY')

    @property
    def device_name(self) -> str:
        return self._get('ALBUMSHELF_DEVICE_NAME', DEFAULT_DEVICE_NAME)

    @property
    def redirect_uri(self) -> str:
        return self._get('SPOTIFY_REDIRECT_URI', DEFAULT_REDIRECT_URI)

    @property
    def shelf_store_url(self) -> Optional[str]:
        return self._get('SHELF_STORE_URL')

    @property
    def shelf_store_key(self) -> Optional[str]:
        return self._get('SHELF_STORE_KEY')

    @property
    def log_level(self) -> str:
        return self._get('ALBUMSHELF_LOG_LEVEL', 'INFO')

    @property
    def commit(self) -> str:
        return self._get('GIT_COMMIT', 'unknown')

    def get_spotify_scopes(self) -> list:
        """Scopes needed for login plus device-scoped playback control."""
        return [
            'streaming',
            'user-read-email',
            'user-read-private',
            'user-read-playback-state',
            'user-modify-playback-state',
        ]

    def get_spotify_scope_string(self) -> str:
        """Get Spotify scopes as space-separated string."""
        return ' '.join(self.get_spotify_scopes())

    def get_missing_spotify_scopes(self, scopes: str) -> list:
        """Get list of missing required Spotify scopes."""
        provided_scopes = set((scopes or '').split())
        return [s for s in self.get_spotify_scopes() if s not in provided_scopes]

    def spotify_client_config(self) -> Dict[str, str]:
        """Get Spotify client configuration, raising when it is incomplete."""
        client_id = self._get('SPOTIFY_CLIENT_ID')
        client_secret = self._get('SPOTIFY_CLIENT_SECRET')

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")

        return {
            'client_id': client_id,
            'client_secret': client_secret,
            'redirect_uri': self.redirect_uri,
        }

    def validate_configuration(self) -> Dict[str, bool]:
        """Validate that all required configuration is present."""
        return {
            'spotify_client_id': bool(self._get('SPOTIFY_CLIENT_ID')),
            'spotify_client_secret': bool(self._get('SPOTIFY_CLIENT_SECRET')),
            'spotify_redirect_uri': bool(self._get('SPOTIFY_REDIRECT_URI')),
            'secret_key': bool(self.secret_key),
            'shelf_store': bool(self.shelf_store_url and self.shelf_store_key),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        validation = self.validate_configuration()

        return {
            'data_dir': str(self.data_dir),
            'users_file': str(self.users_file),
            'shelves_file': str(self.shelves_file),
            'device_name': self.device_name,
            'redirect_uri': self.redirect_uri,
            'validation': validation,
            'spotify_scopes': self.get_spotify_scopes(),
            'remote_shelf_store': validation['shelf_store'],
        }


# Global instance, created lazily so importing never touches the filesystem
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def setup_config(data_dir: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Setup configuration with a custom data directory or environment."""
    global _settings
    _settings = Settings(environ=environ, data_dir=data_dir)
    return _settings
