from typing import Dict, List, Optional
from unittest.mock import Mock

from dailypick.application.pipeline import ALL_IN_PLAYLIST_MESSAGE, DailySelectionPipeline
from dailypick.crosscutting.config import Settings
from dailypick.domain.entities import PlayEvent, PlaylistSnapshot, TrackIdentity
from dailypick.interfaces.http import HTTPServer
from dailypick.interfaces.trigger import DailyTrigger

DAY = 24 * 3600
START = 1_700_000_000


class ScrobbleLog:
    """In-memory play history."""

    def __init__(self):
        self.events: List[PlayEvent] = []

    def play(self, ts: int, name: str, artist: str, times: int = 1) -> None:
        for i in range(times):
            self.events.append(PlayEvent(timestamp=ts + i, track_name=name, artist_name=artist))

    def fetch_recent_plays(self, user: str, since: int) -> List[PlayEvent]:
        return [e for e in self.events if e.timestamp >= since]


class InMemoryStreaming:
    """Catalog and playlist held in memory."""

    def __init__(self, catalog: Dict[str, TrackIdentity]):
        self.catalog = catalog
        self.playlist: List[TrackIdentity] = []
        self.searches: List[str] = []

    def resolve_track(self, track_name: str, artist_name: str) -> Optional[TrackIdentity]:
        self.searches.append(track_name)
        return self.catalog.get(track_name)

    def fetch_playlist_tracks(self, playlist_id: str) -> PlaylistSnapshot:
        return PlaylistSnapshot(playlist_id=playlist_id, name="Daily", tracks=tuple(self.playlist))

    def append_track(self, playlist_id: str, track: TrackIdentity) -> None:
        self.playlist.append(track)


def _track(name: str, artist: str) -> TrackIdentity:
    track_id = name.lower().replace(" ", "")
    return TrackIdentity(id=track_id, uri=f"spotify:track:{track_id}", name=name, artists=[artist])


class TestDailySelectionE2E:
    """Runs several consecutive days through the whole stack."""

    def setup_method(self):
        self.now = START
        self.history = ScrobbleLog()
        self.streaming = InMemoryStreaming({
            "Song1": _track("Song1", "ArtistA"),
            "Song2": _track("Song2", "ArtistB"),
            "Song3": _track("Song3", "ArtistC"),
        })
        self.pipeline = DailySelectionPipeline(
            history_provider=self.history,
            streaming_provider=self.streaming,
            clock=lambda: self.now,
        )

    def test_consecutive_days_never_add_duplicates(self):
        # Day 1: Song1 dominates
        self.history.play(self.now - 3600, "Song1", "ArtistA", times=5)
        self.history.play(self.now - 1800, "Song2", "ArtistB", times=2)
        day1 = self.pipeline.run_daily_selection("listener", "pl1")

        # Day 2: Song1 still on top, so the runner-up is picked
        self.now += DAY
        self.history.play(self.now - 3600, "Song1", "ArtistA", times=4)
        self.history.play(self.now - 1800, "Song2", "ArtistB", times=1)
        day2 = self.pipeline.run_daily_selection("listener", "pl1")

        # Day 3: nothing new was played
        self.now += DAY
        self.history.play(self.now - 60, "Song2", "ArtistB")
        day3 = self.pipeline.run_daily_selection("listener", "pl1")

        assert day1.track.name == "Song1"
        assert day2.track.name == "Song2"
        assert day3.track is None
        assert day3.message == ALL_IN_PLAYLIST_MESSAGE
        assert [t.name for t in self.streaming.playlist] == ["Song1", "Song2"]

    def test_plays_outside_window_are_ignored(self):
        self.history.play(self.now - DAY - 10, "Song3", "ArtistC", times=10)
        self.history.play(self.now - 10, "Song2", "ArtistB")

        outcome = self.pipeline.run_daily_selection("listener", "pl1")

        assert outcome.track.name == "Song2"
        assert "Song3" not in self.streaming.searches

    def test_daily_endpoint_runs_full_stack(self):
        self.history.play(self.now - 100, "Song3", "ArtistC", times=2)
        credentials = Mock()
        credentials.access_token = "a1"
        credentials.refresh_token = "r1"
        settings = Settings(
            spotify_client_id="client",
            spotify_client_secret="secret",
            spotify_playlist_id="pl1",
            lastfm_user="listener",
            lastfm_api_key="lfm",
        )
        trigger = DailyTrigger(settings, self.pipeline, credentials)
        client = HTTPServer(trigger=trigger).app.test_client()

        first = client.post("/daily")
        second = client.post("/daily")

        assert first.status_code == 200
        assert first.get_json()["track"]["uri"] == "spotify:track:song3"
        assert second.status_code == 200
        assert second.get_json()["message"] == ALL_IN_PLAYLIST_MESSAGE
        assert credentials.refresh.call_count == 2
