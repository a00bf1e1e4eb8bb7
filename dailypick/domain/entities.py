from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class PlayEvent:
    """One scrobbled play as reported by the history provider."""

    timestamp: int
    track_name: str
    artist_name: str
    album_name: str = ""
    reference_url: str = ""


@dataclass(frozen=True)
class RankedCandidate:
    """Distinct track name aggregated from play events.

    Artist, album and URL come from the first play event carrying this name.
    """

    track_name: str
    artist_name: str
    play_count: int
    album_name: str = ""
    reference_url: str = ""


@dataclass(frozen=True)
class TrackIdentity:
    """Concrete catalog track on the streaming service."""

    id: str
    uri: str
    name: str
    artists: List[str] = field(default_factory=list)
    album: Optional[str] = None

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""


@dataclass(frozen=True)
class PlaylistSnapshot:
    """Track listing of the target playlist at selection time."""

    playlist_id: str
    name: str = ""
    tracks: Tuple[TrackIdentity, ...] = ()

    def contains_name(self, track_name: str) -> bool:
        """Exact, case-sensitive membership test by track name."""
        return any(track.name == track_name for track in self.tracks)

    def __len__(self) -> int:
        return len(self.tracks)


@dataclass(frozen=True)
class SelectionResult:
    """Result of walking the ranking against the playlist.

    ``track`` is None when no candidate is eligible.
    """

    track: Optional[TrackIdentity] = None
    candidate: Optional[RankedCandidate] = None
    attempts: int = 0

    @property
    def is_empty(self) -> bool:
        return self.track is None


@dataclass(frozen=True)
class SelectionOutcome:
    """Outcome of one daily selection run."""

    run_id: str
    status: str
    message: str
    track: Optional[TrackIdentity] = None
    play_count: int = 0
    events_count: int = 0
    candidates_count: int = 0

    @property
    def success(self) -> bool:
        return self.status == OUTCOME_ADDED

    def to_dict(self) -> dict:
        data = {
            'run_id': self.run_id,
            'status': self.status,
            'success': self.success,
            'message': self.message,
            'events_count': self.events_count,
            'candidates_count': self.candidates_count,
        }
        if self.track is not None:
            data['track'] = {
                'id': self.track.id,
                'uri': self.track.uri,
                'name': self.track.name,
                'artists': list(self.track.artists),
                'album': self.track.album,
                'play_count': self.play_count,
            }
        return data


OUTCOME_ADDED = "added"
OUTCOME_NO_ELIGIBLE_CANDIDATE = "no_eligible_candidate"
OUTCOME_DRY_RUN = "dry_run"
