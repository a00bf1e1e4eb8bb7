from __future__ import annotations

from typing import Dict, Iterable, List

from dailypick.domain.entities import PlayEvent, RankedCandidate


def rank(events: Iterable[PlayEvent]) -> List[RankedCandidate]:
    """Aggregate plays by track name and rank them by play count.

    Grouping uses exact, case-sensitive track names. The representative
    artist/album/url of each group is its first event in input order. Ties on
    play count keep the order in which track names were first encountered.

    Args:
        events: Play events of the lookback window, in fetch order

    Returns:
        Ranked candidates, highest play count first
    """
    counts: Dict[str, int] = {}
    first_seen: Dict[str, PlayEvent] = {}

    for event in events:
        if event.track_name not in first_seen:
            first_seen[event.track_name] = event
            counts[event.track_name] = 0
        counts[event.track_name] += 1

    # stable sort: ties keep first-encounter order
    ranked = [
        RankedCandidate(
            track_name=name,
            artist_name=first_seen[name].artist_name,
            album_name=first_seen[name].album_name,
            reference_url=first_seen[name].reference_url,
            play_count=count,
        )
        for name, count in counts.items()
    ]
    return sorted(ranked, key=lambda c: c.play_count, reverse=True)
