import os
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
import spotipy
from spotipy.exceptions import SpotifyException
from urllib3.exceptions import ReadTimeoutError

from dailypick.domain.entities import PlaylistSnapshot, TrackIdentity
from dailypick.domain.errors import MutationFailure, NotFound, RateLimited, TemporaryFailure
from dailypick.domain.ports import CredentialProvider, StreamingProvider

logger = logging.getLogger(__name__)

PLAYLIST_ITEM_FIELDS = 'items(track(id,uri,name,artists(name),album(name))),next'


def _default_client_factory(access_token: str) -> spotipy.Spotify:
    # No retries: a failed call aborts the run
    return spotipy.Spotify(
        auth=access_token,
        requests_timeout=15,
        retries=0,
        status_retries=0,
    )


class SpotifyProvider(StreamingProvider):
    """Spotify catalog search, playlist listing and playlist mutation."""

    def __init__(self,
                 credentials: CredentialProvider,
                 market: Optional[str] = None,
                 search_limit: Optional[int] = None,
                 client_factory: Callable[[str], Any] = _default_client_factory):
        """Initialize Spotify provider.

        Args:
            credentials: Source of valid access tokens
            market: Optional market code passed to catalog search
            search_limit: Number of search results to scan for an exact name match
            client_factory: Builds a spotipy client for an access token
        """
        self.credentials = credentials
        self._market = market or os.getenv('DAILYPICK_SEARCH_MARKET') or None
        self._search_limit = search_limit or int(os.getenv('DAILYPICK_SEARCH_LIMIT', '20'))
        self._client_factory = client_factory
        self._client = None
        self._client_token: Optional[str] = None

    def _get_client(self):
        """Return a client bound to the current access token."""
        token = self.credentials.get_access_token()
        if self._client is None or token != self._client_token:
            self._client = self._client_factory(token)
            self._client_token = token
        return self._client

    def _call(self, operation: str, fn: Callable[[Any], Any]) -> Any:
        """Run ``fn(client)``; on 401 refresh the token once and run it again."""
        try:
            return fn(self._get_client())
        except SpotifyException as e:
            if e.http_status != 401:
                raise
            logger.warning(f"Spotify token expired during {operation}, refreshing")
            token = self.credentials.refresh()
            self._client = self._client_factory(token)
            self._client_token = token
            return fn(self._client)

    @staticmethod
    def _translate_error(error: Exception, operation: str) -> Exception:
        """Map a spotipy/transport exception to a domain error."""
        if isinstance(error, SpotifyException):
            if error.http_status == 429:
                headers = error.headers or {}
                try:
                    retry_after = int(headers.get('Retry-After', 1))
                except (TypeError, ValueError):
                    retry_after = 1
                return RateLimited(retry_after_ms=retry_after * 1000)
            if error.http_status == 404:
                return NotFound(f"{operation}: {error.msg}")
        return TemporaryFailure(f"Failed to {operation}: {error}")

    @staticmethod
    def _to_identity(spotify_track: Dict[str, Any]) -> Optional[TrackIdentity]:
        """Convert a Spotify track object to a TrackIdentity."""
        if not spotify_track or not spotify_track.get('name'):
            return None

        track_id = spotify_track.get('id') or ''
        uri = spotify_track.get('uri') or (f"spotify:track:{track_id}" if track_id else '')
        artists = [a.get('name', '') for a in spotify_track.get('artists') or [] if a.get('name')]
        album = spotify_track.get('album') or {}

        return TrackIdentity(
            id=track_id,
            uri=uri,
            name=spotify_track['name'],
            artists=artists,
            album=album.get('name') if album else None,
        )

    def resolve_track(self, track_name: str, artist_name: str) -> Optional[TrackIdentity]:
        """Search by track and artist; return the first result whose name equals ``track_name``.

        Args:
            track_name: Track title exactly as scrobbled
            artist_name: Artist name as scrobbled

        Returns:
            The matching catalog track, or None if no result has that exact name
        """
        query = f"track:{track_name} artist:{artist_name}"
        logger.debug(f"Searching: {query} (market={self._market}, limit={self._search_limit})")

        try:
            results = self._call(
                "search tracks",
                lambda client: client.search(q=query, type='track', limit=self._search_limit, market=self._market),
            )
        except (SpotifyException, requests.exceptions.RequestException, ReadTimeoutError) as e:
            logger.error(f"Search failed for '{track_name}' by '{artist_name}': {e}")
            raise self._translate_error(e, "search tracks")

        items = (results or {}).get('tracks', {}).get('items') or []
        for item in items:
            if item and item.get('name') == track_name:
                return self._to_identity(item)

        logger.debug(f"No exact name match among {len(items)} results for '{track_name}'")
        return None

    def fetch_playlist_tracks(self, playlist_id: str) -> PlaylistSnapshot:
        """Fetch every track of the playlist, following pagination.

        Args:
            playlist_id: Spotify playlist ID

        Returns:
            PlaylistSnapshot with all tracks that still have a name
        """
        try:
            meta = self._call("get playlist", lambda client: client.playlist(playlist_id, fields='id,name'))
            page = self._call(
                "list playlist tracks",
                lambda client: client.playlist_items(playlist_id, fields=PLAYLIST_ITEM_FIELDS,
                                                     additional_types=('track',)),
            )

            tracks: List[TrackIdentity] = []
            while page:
                for item in page.get('items') or []:
                    identity = self._to_identity((item or {}).get('track'))
                    if identity:
                        tracks.append(identity)

                if not page.get('next'):
                    break
                current = page
                page = self._call("list playlist tracks", lambda client: client.next(current))

        except (SpotifyException, requests.exceptions.RequestException, ReadTimeoutError) as e:
            logger.error(f"Failed to fetch playlist {playlist_id}: {e}")
            raise self._translate_error(e, "fetch playlist tracks")

        return PlaylistSnapshot(
            playlist_id=playlist_id,
            name=(meta or {}).get('name', ''),
            tracks=tuple(tracks),
        )

    def append_track(self, playlist_id: str, track: TrackIdentity) -> None:
        """Append one track to the playlist.

        Raises:
            MutationFailure: the service did not confirm the add
            RateLimited: the service answered 429
        """
        try:
            result = self._call(
                "add track to playlist",
                lambda client: client.playlist_add_items(playlist_id, [track.uri]),
            )
        except SpotifyException as e:
            if e.http_status == 429:
                raise self._translate_error(e, "add track to playlist")
            logger.error(f"Failed to add song '{track.name}' to playlist {playlist_id}: {e}")
            raise MutationFailure(playlist_id, track.uri, f"Failed to add song to playlist: {e.msg}")
        except (requests.exceptions.RequestException, ReadTimeoutError) as e:
            logger.error(f"Failed to add song '{track.name}' to playlist {playlist_id}: {e}")
            raise MutationFailure(playlist_id, track.uri, f"Failed to add song to playlist: {e}")

        if not result or 'snapshot_id' not in result:
            logger.error(f"Failed to add song '{track.name}' to playlist {playlist_id}: no snapshot returned")
            raise MutationFailure(playlist_id, track.uri)
