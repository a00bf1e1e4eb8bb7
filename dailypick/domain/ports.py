from __future__ import annotations

from typing import List, Optional, Protocol

from .entities import PlayEvent, PlaylistSnapshot, TrackIdentity


class HistoryProvider(Protocol):
    """Port for the play-history (scrobble) service."""

    def fetch_recent_plays(self, user: str, since: int) -> List[PlayEvent]:
        """Return every play of ``user`` with a timestamp at or after ``since`` (epoch seconds)."""


class StreamingProvider(Protocol):
    """Port defining the streaming-service capabilities the daily selection consumes.

    Implementations map provider-specific payloads into domain entities and raise
    domain errors; they never retry on their own.
    """

    def resolve_track(self, track_name: str, artist_name: str) -> Optional[TrackIdentity]:
        """Search the catalog and return the first result whose name equals ``track_name``."""

    def fetch_playlist_tracks(self, playlist_id: str) -> PlaylistSnapshot:
        """Return the full current track listing of the playlist."""

    def append_track(self, playlist_id: str, track: TrackIdentity) -> None:
        """Append the track to the playlist. Raises MutationFailure if not confirmed."""


class CredentialProvider(Protocol):
    """Port for the OAuth credential lifecycle."""

    def get_access_token(self) -> str:
        """Return a valid access token, refreshing it first when expired."""

    def refresh(self) -> str:
        """Force a refresh, persist the result and return the new access token."""
