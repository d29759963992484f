"""Ranking and match signals for stash-box scene candidates.

Candidates are ordered by how close their duration is to the local file, and
each one gets two advisory signals: duration agreement and fingerprint
(hash) agreement. Neither signal blocks saving.
"""

import math
from dataclasses import dataclass
from typing import Optional

from models import LocalScene, RemoteScene

DURATION_TOLERANCE_SECONDS = 5


@dataclass(frozen=True)
class DurationStatus:
    matches: bool
    matching_fingerprints: int = 0
    total_fingerprints: int = 0
    difference: Optional[int] = None

    @property
    def message(self) -> str:
        if self.matching_fingerprints:
            return (
                f"Duration matches {self.matching_fingerprints} of "
                f"{self.total_fingerprints} fingerprints"
            )
        if self.matches:
            return "Duration is a match"
        return f"Duration off by {self.difference}s"


@dataclass(frozen=True)
class FingerprintStatus:
    matches: bool
    kind: str  # "checksum", "oshash" or "phash"

    @property
    def message(self) -> str:
        if self.kind == "phash":
            return "PHash is a match"
        return "Checksum is a match"


def rank_candidates(
    local_duration: Optional[float], candidates: list[RemoteScene]
) -> list[RemoteScene]:
    """Order candidates best duration match first.

    Candidates with no duration go last. The sort is stable, so equal
    differences keep the order the search returned them in.
    """
    def sort_key(candidate: RemoteScene):
        duration = candidate.effective_duration
        if not duration:
            return (1, 0.0)
        if not local_duration:
            return (0, 0.0)
        return (0, abs(duration - local_duration))

    return sorted(candidates, key=sort_key)


def get_duration_status(
    candidate: RemoteScene, local_duration: Optional[float]
) -> Optional[DurationStatus]:
    """Compare candidate durations with the local file's duration.

    Returns None when either side has no known duration.
    """
    if not local_duration:
        return None

    fingerprint_durations = [fp.duration for fp in candidate.fingerprints if fp.duration]
    matching = [
        d for d in fingerprint_durations
        if abs(d - local_duration) <= DURATION_TOLERANCE_SECONDS
    ]
    if matching:
        return DurationStatus(
            matches=True,
            matching_fingerprints=len(matching),
            total_fingerprints=len(candidate.fingerprints),
        )

    if candidate.duration and abs(candidate.duration - local_duration) < DURATION_TOLERANCE_SECONDS:
        return DurationStatus(matches=True)

    sources = [d for d in [candidate.duration, *fingerprint_durations] if d]
    if not sources:
        return None
    difference = min(abs(d - local_duration) for d in sources)
    return DurationStatus(matches=False, difference=math.floor(difference))


def get_fingerprint_status(
    candidate: RemoteScene, scene: LocalScene
) -> Optional[FingerprintStatus]:
    """Check whether any candidate fingerprint equals one of the local hashes."""
    remote_hashes = {fp.hash for fp in candidate.fingerprints}
    if scene.checksum and scene.checksum in remote_hashes:
        return FingerprintStatus(matches=True, kind="checksum")
    if scene.oshash and scene.oshash in remote_hashes:
        return FingerprintStatus(matches=True, kind="oshash")
    if scene.phash and scene.phash in remote_hashes:
        return FingerprintStatus(matches=True, kind="phash")
    return None
