import time
import logging
import threading
from typing import Any, Callable, Dict, Optional

import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from dailypick.crosscutting.config import ConfigError, TokenStore, get_spotify_scope_string, get_missing_spotify_scopes
from dailypick.domain.errors import AuthorizationRequired, TemporaryFailure

logger = logging.getLogger(__name__)

# Refresh slightly before the advertised expiry
EXPIRY_MARGIN_SEC = 60


class SpotifyCredentialProvider:
    """Owns the Spotify OAuth token pair: acquire, use, refresh on expiry, persist.

    The provider is created once per process and passed explicitly to everything
    that talks to Spotify. Every change of the token pair is written back to the
    token store.
    """

    def __init__(self,
                 client_id: str,
                 client_secret: str,
                 redirect_uri: str,
                 token_store: TokenStore,
                 oauth: Optional[SpotifyOAuth] = None,
                 clock: Callable[[], float] = time.time):
        """Initialize credential provider.

        Args:
            client_id: Spotify application client ID
            client_secret: Spotify application client secret
            redirect_uri: Redirect URI registered for the application
            token_store: Where the token document is read from and written to
            oauth: Pre-built OAuth manager (tests inject a mock here)
            clock: Time source returning epoch seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_store = token_store
        self._clock = clock
        self._oauth = oauth or SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=get_spotify_scope_string(),
            cache_handler=MemoryCacheHandler(),
            open_browser=False,
        )
        self._token_info: Dict[str, Any] = {}
        self._lock = threading.RLock()

    @property
    def access_token(self) -> Optional[str]:
        return self._token_info.get('access_token')

    @property
    def refresh_token(self) -> Optional[str]:
        return self._token_info.get('refresh_token')

    def has_tokens(self) -> bool:
        return bool(self.access_token and self.refresh_token)

    def is_expired(self) -> bool:
        expires_at = self._token_info.get('expires_at')
        if not expires_at:
            # Unknown expiry: treat as expired so the first use refreshes
            return True
        return float(expires_at) - EXPIRY_MARGIN_SEC <= self._clock()

    def load(self) -> bool:
        """Load the token pair from the store. Returns True if a full pair was found."""
        try:
            tokens = self.token_store.load()
        except ConfigError as e:
            logger.warning(f"Ignoring stored tokens: {e}")
            return False
        if tokens.get('access_token') and tokens.get('refresh_token'):
            self._token_info = dict(tokens)
            logger.info("Loaded access token and refresh token")
            return True
        logger.warning(f"No token pair found in {self.token_store.tokens_file}")
        return False

    def get_authorize_url(self, state: str = 'state') -> str:
        """Return the URL the user must open to grant access."""
        return self._oauth.get_authorize_url(state=state)

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for a token pair and persist it."""
        if not code:
            raise AuthorizationRequired("Missing authorization code")

        logger.info("Getting access token")
        try:
            self._oauth.get_access_token(code, as_dict=False, check_cache=False)
            token_info = self._oauth.cache_handler.get_cached_token()
        except SpotifyOauthError as e:
            raise AuthorizationRequired(f"Could not exchange authorization code: {e}")
        except requests.exceptions.RequestException as e:
            raise TemporaryFailure(f"Token exchange failed: {e}")

        if not token_info or 'access_token' not in token_info:
            raise AuthorizationRequired("Token exchange returned no access token")

        missing = get_missing_spotify_scopes(token_info.get('scope', ''))
        if missing:
            logger.warning(f"Granted token is missing scopes: {', '.join(missing)}")

        self._store(token_info)
        logger.info("Got access token successfully")
        return dict(self._token_info)

    def refresh(self) -> str:
        """Refresh the access token and persist the updated pair.

        Concurrent callers are serialized so the stored pair is replaced once per refresh.
        """
        with self._lock:
            if not self.refresh_token:
                raise AuthorizationRequired("Refresh token is missing")

            try:
                token_info = self._oauth.refresh_access_token(self.refresh_token)
            except SpotifyOauthError as e:
                logger.error(f"Could not refresh access token: {e}")
                raise AuthorizationRequired(f"Could not refresh access token: {e}")
            except requests.exceptions.RequestException as e:
                logger.error(f"Could not refresh access token: {e}")
                raise TemporaryFailure(f"Token refresh failed: {e}")

            if not token_info or 'access_token' not in token_info:
                raise AuthorizationRequired("Token refresh returned no access token")

            if not token_info.get('refresh_token'):
                token_info['refresh_token'] = self.refresh_token

            self._store(token_info)
            logger.info("Refreshed access token")
            return self._token_info['access_token']

    def get_access_token(self) -> str:
        """Return a valid access token, refreshing first when it has expired."""
        with self._lock:
            if not self.has_tokens():
                raise AuthorizationRequired("Access token is missing")
            if self.is_expired():
                return self.refresh()
            return self._token_info['access_token']

    def ensure_authorized(self, prompt: Callable[[str], str]) -> None:
        """Load stored tokens and refresh them, falling back to the interactive code flow.

        An unreadable token file counts as no stored tokens.

        Args:
            prompt: Called with the authorize URL; returns the code the user pasted
        """
        if self.load():
            try:
                self.refresh()
                return
            except AuthorizationRequired:
                logger.warning("Stored tokens were rejected, authorization required")

        code = prompt(self.get_authorize_url())
        self.exchange_code(code.strip())

    def _store(self, token_info: Dict[str, Any]) -> None:
        token_info = dict(token_info)
        if 'expires_at' not in token_info and token_info.get('expires_in'):
            token_info['expires_at'] = int(self._clock()) + int(token_info['expires_in'])
        with self._lock:
            self._token_info = token_info
            self.token_store.save(token_info)
