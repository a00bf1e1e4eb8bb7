from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from dailypick.crosscutting.reporting import CandidateStatus, RunReport
from dailypick.domain.entities import PlaylistSnapshot, RankedCandidate, SelectionResult, TrackIdentity


logger = logging.getLogger(__name__)

ResolveTrack = Callable[[str, str], Optional[TrackIdentity]]


def select(candidates: Sequence[RankedCandidate],
           resolve_track: ResolveTrack,
           playlist: PlaylistSnapshot,
           report: Optional[RunReport] = None) -> SelectionResult:
    """Pick the highest-ranked candidate that is not already in the playlist.

    Candidates are visited in rank order and each visited candidate is resolved
    exactly once. Unresolvable candidates and candidates whose resolved name is
    already in the playlist are skipped. Iteration stops at the first eligible
    track. Exceptions raised by ``resolve_track`` propagate.

    Args:
        candidates: Ranked candidates, highest play count first
        resolve_track: Catalog search by (track name, artist name)
        playlist: Current contents of the target playlist
        report: Optional run report receiving one entry per visited candidate

    Returns:
        SelectionResult; ``track`` is None when no candidate is eligible
    """
    attempts = 0

    for candidate in candidates:
        attempts += 1
        logger.info(f"Searching for song '{candidate.track_name}' by '{candidate.artist_name}'")
        track = resolve_track(candidate.track_name, candidate.artist_name)

        if track is None:
            logger.info(f"Song '{candidate.track_name}' not found in catalog, skipping")
            if report is not None:
                report.record(candidate, CandidateStatus.NOT_FOUND)
            continue

        if playlist.contains_name(track.name):
            logger.info(f"Song '{track.name}' by '{track.primary_artist}' is already in the playlist")
            if report is not None:
                report.record(candidate, CandidateStatus.SKIPPED_DUPLICATE, track)
            continue

        logger.info(f"Song '{track.name}' by '{track.primary_artist}' is not in the playlist")
        if report is not None:
            report.record(candidate, CandidateStatus.SELECTED, track)
        return SelectionResult(track=track, candidate=candidate, attempts=attempts)

    logger.info(f"No eligible candidate after {attempts} attempts")
    return SelectionResult(track=None, candidate=None, attempts=attempts)
