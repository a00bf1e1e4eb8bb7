import time
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from dailypick.application.ranking import rank
from dailypick.application.selection import select
from dailypick.crosscutting.config import ConfigError
from dailypick.crosscutting.logging import CorrelationContext, log_error, log_run_complete, log_run_start
from dailypick.crosscutting.reporting import CandidateStatus, RunReport, create_run_report
from dailypick.domain.entities import (
    OUTCOME_ADDED,
    OUTCOME_DRY_RUN,
    OUTCOME_NO_ELIGIBLE_CANDIDATE,
    SelectionOutcome,
)
from dailypick.domain.errors import RunInProgress
from dailypick.domain.ports import HistoryProvider, StreamingProvider


logger = logging.getLogger(__name__)

ALL_IN_PLAYLIST_MESSAGE = "All songs are already in the playlist"
NO_HISTORY_MESSAGE = "No plays in the lookback window"


class DailySelectionPipeline:
    """Fetch recent plays, rank them and add the top eligible track to the playlist."""

    def __init__(self,
                 history_provider: HistoryProvider,
                 streaming_provider: StreamingProvider,
                 lookback_hours: int = 24,
                 dry_run: bool = False,
                 report_dir: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        """Initialize pipeline.

        Args:
            history_provider: Source of play events
            streaming_provider: Catalog search, playlist listing and mutation
            lookback_hours: Size of the trailing window of plays
            dry_run: Select but never modify the playlist
            report_dir: Directory for JSON run reports; None disables them
            clock: Time source returning epoch seconds
        """
        if lookback_hours <= 0:
            raise ConfigError(f"lookback_hours must be positive, got {lookback_hours}")

        self.history_provider = history_provider
        self.streaming_provider = streaming_provider
        self.lookback_hours = lookback_hours
        self.dry_run = dry_run
        self.report_dir = report_dir
        self._clock = clock
        self._lock = threading.Lock()

    def _create_run_id(self) -> str:
        return f"dailypick_{datetime.fromtimestamp(self._clock()).strftime('%Y%m%d_%H%M%S')}"

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_daily_selection(self, user: str, playlist_id: str,
                            dry_run: Optional[bool] = None) -> SelectionOutcome:
        """Run one selection for ``user`` against ``playlist_id``.

        Args:
            user: History-service user name
            playlist_id: Target playlist ID
            dry_run: Overrides the pipeline default when given

        Returns:
            SelectionOutcome with status added, no_eligible_candidate or dry_run

        Raises:
            RunInProgress: another run holds the pipeline
            MutationFailure: the playlist add was not confirmed
        """
        if not self._lock.acquire(blocking=False):
            raise RunInProgress("Daily selection is already running")

        try:
            return self._run(user, playlist_id, self.dry_run if dry_run is None else dry_run)
        finally:
            self._lock.release()

    def _run(self, user: str, playlist_id: str, dry_run: bool) -> SelectionOutcome:
        run_id = self._create_run_id()
        report = create_run_report(run_id, user, playlist_id, dry_run=dry_run)
        started = self._clock()

        with CorrelationContext(run_id=run_id, playlist_id=playlist_id):
            log_run_start(logger, run_id, user, playlist_id, dry_run=dry_run)
            try:
                outcome = self._select_and_add(run_id, user, playlist_id, dry_run, report)
            except Exception as e:
                log_error(logger, "Daily selection failed", e, run_id=run_id)
                report.finish("error")
                self._save_report(report)
                raise

            report.finish(outcome.status)
            self._save_report(report)
            log_run_complete(logger, run_id, outcome.status,
                             duration_ms=int((self._clock() - started) * 1000),
                             track=outcome.track.name if outcome.track else None)
            return outcome

    def _select_and_add(self, run_id: str, user: str, playlist_id: str,
                        dry_run: bool, report: RunReport) -> SelectionOutcome:
        since = int(self._clock() - self.lookback_hours * 3600)

        with CorrelationContext(stage='fetch_history'):
            logger.info(f"Getting plays for {user} since {since}")
            events = self.history_provider.fetch_recent_plays(user, since)

        with CorrelationContext(stage='rank'):
            candidates = rank(events)
            report.events_count = len(events)
            report.candidates_count = len(candidates)

        if not candidates:
            logger.info("No plays in the lookback window, nothing to add")
            return SelectionOutcome(
                run_id=run_id,
                status=OUTCOME_NO_ELIGIBLE_CANDIDATE,
                message=NO_HISTORY_MESSAGE,
                events_count=len(events),
            )

        top = candidates[0]
        logger.info(f"Ranked {len(candidates)} songs - most listened: '{top.track_name}' with count {top.play_count}")

        with CorrelationContext(stage='fetch_playlist'):
            logger.info(f"Getting playlist {playlist_id}")
            playlist = self.streaming_provider.fetch_playlist_tracks(playlist_id)
            logger.info(f"Got playlist '{playlist.name}' with {len(playlist)} tracks")

        with CorrelationContext(stage='select'):
            selection = select(candidates, self.streaming_provider.resolve_track, playlist, report=report)

        if selection.is_empty:
            logger.info(ALL_IN_PLAYLIST_MESSAGE)
            return SelectionOutcome(
                run_id=run_id,
                status=OUTCOME_NO_ELIGIBLE_CANDIDATE,
                message=ALL_IN_PLAYLIST_MESSAGE,
                events_count=len(events),
                candidates_count=len(candidates),
            )

        track = selection.track
        if dry_run:
            logger.info(f"DRY-RUN: would add song '{track.name}' by '{track.primary_artist}' to playlist")
            report.mark_last(CandidateStatus.SKIPPED_DRY_RUN)
            return SelectionOutcome(
                run_id=run_id,
                status=OUTCOME_DRY_RUN,
                message=f"Would add {track.name}",
                track=track,
                play_count=selection.candidate.play_count,
                events_count=len(events),
                candidates_count=len(candidates),
            )

        with CorrelationContext(stage='append'):
            logger.info(f"Adding song '{track.name}' by '{track.primary_artist}' to playlist")
            self.streaming_provider.append_track(playlist_id, track)
            report.mark_last(CandidateStatus.ADDED)
            logger.info(f"Successfully added song '{track.name}' by '{track.primary_artist}' to playlist")

        return SelectionOutcome(
            run_id=run_id,
            status=OUTCOME_ADDED,
            message=f"Added {track.name}",
            track=track,
            play_count=selection.candidate.play_count,
            events_count=len(events),
            candidates_count=len(candidates),
        )

    def _save_report(self, report: RunReport) -> None:
        if not self.report_dir:
            return
        try:
            report_file = report.save(self.report_dir)
            logger.info(f"Report saved to: {report_file}")
        except OSError as e:
            logger.error(f"Failed to save report: {e}")
