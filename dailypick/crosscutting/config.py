import os
import json
import logging
import tempfile
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, List, Optional
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration error."""
    pass


SPOTIFY_SCOPES = [
    'playlist-modify-public',      # Modify public playlists
    'playlist-modify-private',     # Modify private playlists
    'playlist-read-private',       # Read private playlists
]

DEFAULT_SCHEDULE = '0 0 * * *'
DISABLED_SCHEDULE_VALUES = ('', 'off', 'manual', 'false', 'no', 'disabled')


def get_spotify_scope_string() -> str:
    """Get Spotify scopes as space-separated string."""
    return ' '.join(SPOTIFY_SCOPES)


def get_missing_spotify_scopes(scopes: str) -> List[str]:
    """Get list of required Spotify scopes missing from a granted scope string."""
    provided_scopes = set((scopes or '').split())
    return [scope for scope in SPOTIFY_SCOPES if scope not in provided_scopes]


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


@dataclass
class Settings:
    """Runtime configuration read from the environment."""

    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_redirect_uri: str = 'http://localhost:8888/callback'
    spotify_playlist_id: Optional[str] = None
    lastfm_user: Optional[str] = None
    lastfm_api_key: Optional[str] = None
    host: str = 'localhost'
    port: int = 8888
    token_file: str = 'token.json'
    schedule: str = DEFAULT_SCHEDULE
    lookback_hours: int = 24
    search_market: Optional[str] = None
    report_dir: Optional[str] = None
    dry_run: bool = False

    @property
    def schedule_enabled(self) -> bool:
        return self.schedule.strip().lower() not in DISABLED_SCHEDULE_VALUES

    def missing(self) -> List[str]:
        """Return names of required variables that are not set."""
        required = {
            'SPOTIFY_CLIENT_ID': self.spotify_client_id,
            'SPOTIFY_CLIENT_SECRET': self.spotify_client_secret,
            'SPOTIFY_PLAYLIST_ID': self.spotify_playlist_id,
            'LASTFM_USER': self.lastfm_user,
            'LASTFM_API_KEY': self.lastfm_api_key,
        }
        return [name for name, value in required.items() if not value]

    def validate(self) -> None:
        """Raise ConfigError if any required variable is missing."""
        missing = self.missing()
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
        if self.lookback_hours <= 0:
            raise ConfigError("DAILYPICK_LOOKBACK_HOURS must be positive")

    def summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'spotify_client_id': bool(self.spotify_client_id),
            'spotify_client_secret': bool(self.spotify_client_secret),
            'spotify_redirect_uri': self.spotify_redirect_uri,
            'spotify_playlist_id': self.spotify_playlist_id,
            'spotify_scopes': list(SPOTIFY_SCOPES),
            'lastfm_user': self.lastfm_user,
            'lastfm_api_key': bool(self.lastfm_api_key),
            'host': self.host,
            'port': self.port,
            'token_file': self.token_file,
            'schedule': self.schedule if self.schedule_enabled else 'disabled',
            'lookback_hours': self.lookback_hours,
            'search_market': self.search_market,
            'report_dir': self.report_dir,
            'dry_run': self.dry_run,
            'missing': self.missing(),
        }


def load_settings(env_file: Optional[str] = None, load_env: bool = True) -> Settings:
    """Build Settings from the process environment, optionally loading a .env file first."""
    if load_env:
        load_dotenv(env_file, override=False)

    lookback_hours = _env_int('DAILYPICK_LOOKBACK_HOURS', 24)
    if lookback_hours <= 0:
        raise ConfigError(f"DAILYPICK_LOOKBACK_HOURS must be positive, got {lookback_hours}")

    return Settings(
        spotify_client_id=os.getenv('SPOTIFY_CLIENT_ID') or None,
        spotify_client_secret=os.getenv('SPOTIFY_CLIENT_SECRET') or None,
        spotify_redirect_uri=os.getenv('SPOTIFY_REDIRECT_URI') or 'http://localhost:8888/callback',
        spotify_playlist_id=os.getenv('SPOTIFY_PLAYLIST_ID') or None,
        lastfm_user=os.getenv('LASTFM_USER') or None,
        lastfm_api_key=os.getenv('LASTFM_API_KEY') or None,
        host=os.getenv('HOST') or 'localhost',
        port=_env_int('PORT', 8888),
        token_file=os.getenv('DAILYPICK_TOKEN_FILE') or 'token.json',
        schedule=os.getenv('DAILYPICK_SCHEDULE', DEFAULT_SCHEDULE),
        lookback_hours=lookback_hours,
        search_market=os.getenv('DAILYPICK_SEARCH_MARKET') or None,
        report_dir=os.getenv('DAILYPICK_REPORT_DIR') or None,
        dry_run=_env_bool('DAILYPICK_DRY_RUN'),
    )


class TokenStore:
    """Reads and writes the OAuth token document."""

    def __init__(self, tokens_file: str = 'token.json'):
        """Initialize token store."""
        self.tokens_file = Path(tokens_file)

    def load(self) -> Dict[str, Any]:
        """Load tokens from file; a missing file yields an empty dict."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                tokens = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

        if not isinstance(tokens, dict):
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: not a JSON object")
        return tokens

    def save(self, tokens: Dict[str, Any]) -> None:
        """Merge tokens into the file, replacing it atomically.

        An unreadable existing file is overwritten rather than merged.
        """
        try:
            existing_tokens = self.load()
        except ConfigError as e:
            logger.warning(f"Overwriting unreadable token file: {e}")
            existing_tokens = {}
        existing_tokens.update(tokens)
        existing_tokens['updated_at'] = datetime.now().isoformat()

        tmp_path = None
        try:
            parent = self.tokens_file.parent
            if parent and not parent.exists():
                parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile('w', dir=str(parent), prefix=f".{self.tokens_file.name}.",
                                             suffix='.tmp', delete=False) as f:
                tmp_path = f.name
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.tokens_file)
        except (IOError, TypeError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def has_token_pair(self) -> bool:
        tokens = self.load()
        return bool(tokens.get('access_token') and tokens.get('refresh_token'))
