import logging
import threading
from typing import List, Optional

from dailypick.application.pipeline import DailySelectionPipeline
from dailypick.crosscutting.config import ConfigError, Settings
from dailypick.domain.entities import SelectionOutcome
from dailypick.domain.errors import AuthorizationRequired, RunInProgress
from dailypick.infrastructure.credentials import SpotifyCredentialProvider


logger = logging.getLogger(__name__)


class DailyTrigger:
    """Single entry point shared by the HTTP endpoint, the scheduler and the CLI."""

    def __init__(self, settings: Settings, pipeline: DailySelectionPipeline,
                 credentials: SpotifyCredentialProvider):
        self.settings = settings
        self.pipeline = pipeline
        self.credentials = credentials
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked() or self.pipeline.is_running

    def config_problems(self) -> List[str]:
        problems = []
        if not self.settings.spotify_client_id or not self.settings.spotify_client_secret:
            problems.append("missing SPOTIFY_CLIENT_ID or SPOTIFY_CLIENT_SECRET")
        if not self.settings.lastfm_user or not self.settings.lastfm_api_key:
            problems.append("missing LASTFM_USER or LASTFM_API_KEY")
        if not self.settings.spotify_playlist_id:
            problems.append("missing SPOTIFY_PLAYLIST_ID")
        return problems

    def credential_problems(self) -> List[str]:
        problems = []
        if not self.credentials.access_token:
            problems.append("access token is null")
        if not self.credentials.refresh_token:
            problems.append("refresh token is null")
        return problems

    def preflight(self) -> List[str]:
        """Return the reasons a run cannot start; empty when ready."""
        return self.config_problems() + self.credential_problems()

    def run(self, dry_run: Optional[bool] = None) -> SelectionOutcome:
        """Check configuration and credentials, refresh the token, then run the pipeline.

        The token refresh happens only once this trigger owns the run, so an
        overlapping request never touches the shared token pair.

        Raises:
            RunInProgress: another run is executing
            ConfigError: required settings are missing
            AuthorizationRequired: no token pair is available or refresh was rejected
        """
        if not self._lock.acquire(blocking=False):
            raise RunInProgress("Daily selection is already running")

        try:
            config_problems = self.config_problems()
            if config_problems:
                for problem in config_problems:
                    logger.error(problem)
                raise ConfigError("; ".join(config_problems))

            credential_problems = self.credential_problems()
            if credential_problems:
                for problem in credential_problems:
                    logger.error(problem)
                raise AuthorizationRequired("; ".join(credential_problems))

            self.credentials.refresh()

            return self.pipeline.run_daily_selection(
                self.settings.lastfm_user,
                self.settings.spotify_playlist_id,
                dry_run=dry_run,
            )
        finally:
            self._lock.release()
