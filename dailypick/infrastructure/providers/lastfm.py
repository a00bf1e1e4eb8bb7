import logging
from typing import Any, Dict, List, Optional

import requests

from dailypick.domain.entities import PlayEvent
from dailypick.domain.errors import NotFound, RateLimited, TemporaryFailure
from dailypick.domain.ports import HistoryProvider

logger = logging.getLogger(__name__)

LASTFM_API_URL = 'https://ws.audioscrobbler.com/2.0/'

# Last.fm API error codes
_ERROR_INVALID_PARAMETERS = 6
_ERROR_RATE_LIMIT = 29


class LastFmHistoryProvider(HistoryProvider):
    """Reads a user's scrobbles through ``user.getrecenttracks``.

    Pages are fetched sequentially until ``totalPages`` is reached. Rows marked as
    "now playing" carry no timestamp and are skipped.
    """

    def __init__(self,
                 api_key: str,
                 session: Optional[requests.Session] = None,
                 page_size: int = 200,
                 timeout: int = 15,
                 base_url: str = LASTFM_API_URL):
        """Initialize Last.fm provider.

        Args:
            api_key: Last.fm API key
            session: HTTP session (tests inject a mock here)
            page_size: Tracks per page, at most 200
            timeout: Request timeout in seconds
            base_url: API endpoint
        """
        self.api_key = api_key
        self._session = session or requests.Session()
        self._page_size = max(1, min(200, page_size))
        self._timeout = timeout
        self._base_url = base_url

    def _get_page(self, user: str, since: int, page: int) -> Dict[str, Any]:
        params = {
            'method': 'user.getrecenttracks',
            'user': user,
            'api_key': self.api_key,
            'format': 'json',
            'from': since,
            'extended': 1,
            'limit': self._page_size,
            'page': page,
        }

        try:
            response = self._session.get(self._base_url, params=params, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise TemporaryFailure(f"Failed to fetch recent tracks: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if 'error' in data:
            code = data.get('error')
            message = data.get('message', 'unknown error')
            if code == _ERROR_RATE_LIMIT:
                raise RateLimited(retry_after_ms=1000, message=f"Last.fm rate limit: {message}")
            if code == _ERROR_INVALID_PARAMETERS:
                raise NotFound(f"Last.fm user '{user}': {message}")
            raise TemporaryFailure(f"Last.fm error {code}: {message}")

        if response.status_code != 200:
            raise TemporaryFailure(f"Last.fm returned HTTP {response.status_code}")

        return data.get('recenttracks') or {}

    @staticmethod
    def _to_play_event(raw_track: Dict[str, Any]) -> Optional[PlayEvent]:
        """Map one ``recenttracks.track`` row; None for now-playing rows."""
        date = raw_track.get('date')
        if not date or 'uts' not in date:
            return None

        artist = raw_track.get('artist') or {}
        # extended=1 returns artist.name, the compact form returns artist['#text']
        artist_name = artist.get('name') or artist.get('#text') or ''
        album = raw_track.get('album') or {}

        return PlayEvent(
            timestamp=int(date['uts']),
            track_name=raw_track.get('name', ''),
            artist_name=artist_name,
            album_name=album.get('#text', '') or '',
            reference_url=raw_track.get('url', '') or '',
        )

    def fetch_recent_plays(self, user: str, since: int) -> List[PlayEvent]:
        """Return every scrobble of ``user`` since ``since`` (epoch seconds), in fetch order."""
        events: List[PlayEvent] = []
        page = 1

        while True:
            recent = self._get_page(user, since, page)
            tracks = recent.get('track') or []
            # A single result comes back as an object instead of a list
            if isinstance(tracks, dict):
                tracks = [tracks]

            for raw_track in tracks:
                event = self._to_play_event(raw_track)
                if event:
                    events.append(event)

            attr = recent.get('@attr') or {}
            try:
                total_pages = int(attr.get('totalPages', 1))
            except (TypeError, ValueError):
                total_pages = 1

            logger.debug(f"Fetched page {page}/{total_pages} of recent tracks for {user}")
            if page >= total_pages or not tracks:
                break
            page += 1

        logger.info(f"Got {len(events)} plays for {user} since {since}")
        return events
