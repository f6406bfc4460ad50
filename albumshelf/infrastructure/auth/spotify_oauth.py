import logging
from typing import Optional

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from albumshelf.crosscutting.config import Settings
from albumshelf.domain.errors import TemporaryFailure, VendorApiError
from albumshelf.infrastructure.providers.schemas import (
    TokenPayload, UserProfilePayload, profile_from_payload, token_from_payload,
)

logger = logging.getLogger(__name__)

# Refresh credentials that expire within this window
REFRESH_WINDOW_MS = 5 * 60 * 1000


class SpotifyAuthService:
    """Authorization-code flow against the Spotify accounts service.

    Tokens are never cached by spotipy itself: callers persist them on the
    user record, so the OAuth manager uses an in-memory cache handler.
    """

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, scope: str,
                 oauth: Optional[SpotifyOAuth] = None,
                 requests_timeout: int = 15):
        self.redirect_uri = redirect_uri
        self._requests_timeout = requests_timeout
        self._oauth = oauth or SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=scope,
            show_dialog=True,
            cache_handler=MemoryCacheHandler(),
            open_browser=False,
            requests_timeout=requests_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpotifyAuthService":
        """Build the service; raises ConfigError without client credentials."""
        config = settings.spotify_client_config()
        return cls(
            client_id=config['client_id'],
            client_secret=config['client_secret'],
            redirect_uri=config['redirect_uri'],
            scope=settings.get_spotify_scope_string(),
        )

    def get_authorize_url(self, state: Optional[str] = None) -> str:
        return self._oauth.get_authorize_url(state=state)

    def exchange_code(self, code: str) -> TokenPayload:
        """Trade an authorization code for access and refresh tokens."""
        try:
            raw = self._oauth.get_access_token(code, as_dict=True, check_cache=False)
        except SpotifyOauthError as e:
            logger.error(f"Authorization code exchange failed: {e}")
            raise VendorApiError(400, "Failed to exchange code for token") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Accounts service unreachable during code exchange: {e}")
            raise TemporaryFailure("Accounts service unreachable") from e
        token = token_from_payload(raw)
        logger.info("Exchanged authorization code for tokens")
        return token

    def refresh(self, refresh_token: str) -> TokenPayload:
        try:
            raw = self._oauth.refresh_access_token(refresh_token)
        except SpotifyOauthError as e:
            logger.warning(f"Token refresh rejected: {e}")
            raise VendorApiError(401, "Failed to refresh token") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"Accounts service unreachable during token refresh: {e}")
            raise TemporaryFailure("Accounts service unreachable") from e
        token = token_from_payload(raw)
        logger.info("Refreshed Spotify access token")
        return token

    def current_profile(self, access_token: str) -> UserProfilePayload:
        client = spotipy.Spotify(auth=access_token, requests_timeout=self._requests_timeout)
        try:
            raw = client.current_user()
        except spotipy.SpotifyException as e:
            logger.error(f"Failed to get user info from Spotify: {e.http_status}")
            raise VendorApiError(e.http_status, "Failed to get user info from Spotify") from e
        return profile_from_payload(raw)


def needs_refresh(token_expires_at: int, now: int) -> bool:
    """True when a credential expires within the refresh window."""
    return token_expires_at < now + REFRESH_WINDOW_MS
