import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional

from dailypick.domain.entities import RankedCandidate, TrackIdentity


class CandidateStatus(str, Enum):
    """Status of a candidate visited during selection."""

    SELECTED = "selected"
    ADDED = "added"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    NOT_FOUND = "not_found"
    SKIPPED_DRY_RUN = "skipped_dry_run"


@dataclass
class ReportHeader:
    """Header information for a run report."""

    run_id: str
    user: str
    playlist_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    dry_run: bool = False

    def to_json(self) -> Dict[str, Any]:
        """Serialize header to JSON."""
        return {
            "runId": self.run_id,
            "user": self.user,
            "playlistId": self.playlist_id,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "dryRun": self.dry_run,
        }


@dataclass
class CandidateResult:
    """What happened to one ranked candidate."""

    track_name: str
    artist_name: str
    play_count: int
    status: CandidateStatus
    uri: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "trackName": self.track_name,
            "artistName": self.artist_name,
            "playCount": self.play_count,
            "status": self.status.value,
            "uri": self.uri,
        }


@dataclass
class RunReport:
    """Complete report of one daily selection run."""

    header: ReportHeader
    events_count: int = 0
    candidates_count: int = 0
    outcome: Optional[str] = None
    candidates: List[CandidateResult] = field(default_factory=list)

    def record(self, candidate: RankedCandidate, status: CandidateStatus,
               track: Optional[TrackIdentity] = None) -> None:
        """Append the result for a visited candidate."""
        self.candidates.append(CandidateResult(
            track_name=candidate.track_name,
            artist_name=candidate.artist_name,
            play_count=candidate.play_count,
            status=status,
            uri=track.uri if track else None,
        ))

    def mark_last(self, status: CandidateStatus) -> None:
        """Update the status of the most recently recorded candidate."""
        if self.candidates:
            self.candidates[-1].status = status

    def finish(self, outcome: str) -> None:
        self.outcome = outcome
        self.header.finished_at = datetime.utcnow()

    def totals(self) -> Dict[str, int]:
        totals = {status.value: 0 for status in CandidateStatus}
        for result in self.candidates:
            totals[result.status.value] += 1
        return totals

    def to_json(self) -> Dict[str, Any]:
        """Serialize report to JSON."""
        return {
            "header": self.header.to_json(),
            "eventsCount": self.events_count,
            "candidatesCount": self.candidates_count,
            "outcome": self.outcome,
            "totals": self.totals(),
            "candidates": [c.to_json() for c in self.candidates],
        }

    def save(self, report_dir: str) -> str:
        """Write the report as ``run_report_<run_id>.json`` and return its path."""
        os.makedirs(report_dir, exist_ok=True)
        report_file = os.path.join(report_dir, f"run_report_{self.header.run_id}.json")
        with open(report_file, 'w') as f:
            json.dump(self.to_json(), f, indent=2, ensure_ascii=False)
        return report_file


def create_run_report(run_id: str, user: str, playlist_id: str, dry_run: bool = False) -> RunReport:
    """Create an empty report for a run starting now."""
    return RunReport(
        header=ReportHeader(
            run_id=run_id,
            user=user,
            playlist_id=playlist_id,
            started_at=datetime.utcnow(),
            dry_run=dry_run,
        )
    )
