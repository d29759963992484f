"""Tests for candidate ranking and duration / fingerprint status."""

from models import Fingerprint, LocalScene, RemoteScene
from scene_matching import (
    get_duration_status,
    get_fingerprint_status,
    rank_candidates,
)


def _candidate(id, duration=None, fingerprints=()):
    return RemoteScene(id=id, duration=duration, fingerprints=tuple(fingerprints))


class TestRankCandidates:

    def test_orders_by_duration_difference(self):
        candidates = [_candidate("a", 100), _candidate("b", 1000), _candidate("c", 590)]
        ranked = rank_candidates(600, candidates)
        assert [c.id for c in ranked] == ["c", "b", "a"]

    def test_candidates_without_duration_go_last(self):
        candidates = [_candidate("none"), _candidate("far", 5000), _candidate("near", 610)]
        ranked = rank_candidates(600, candidates)
        assert [c.id for c in ranked] == ["near", "far", "none"]

    def test_ties_keep_search_order(self):
        candidates = [_candidate("first", 590), _candidate("second", 610)]
        ranked = rank_candidates(600, candidates)
        assert [c.id for c in ranked] == ["first", "second"]

    def test_unknown_local_duration_only_moves_missing_durations(self):
        candidates = [_candidate("none"), _candidate("x", 10), _candidate("y", 9999)]
        ranked = rank_candidates(None, candidates)
        assert [c.id for c in ranked] == ["x", "y", "none"]

    def test_fingerprint_duration_used_when_scene_duration_missing(self):
        candidates = [
            _candidate("scene-duration", 900),
            _candidate("fp-duration", fingerprints=[Fingerprint("h", "PHASH", 601)]),
        ]
        ranked = rank_candidates(600, candidates)
        assert [c.id for c in ranked] == ["fp-duration", "scene-duration"]

    def test_input_not_modified(self):
        candidates = [_candidate("b", 1000), _candidate("a", 600)]
        rank_candidates(600, candidates)
        assert [c.id for c in candidates] == ["b", "a"]


class TestDurationStatus:

    def test_fingerprint_durations_within_tolerance(self):
        candidate = _candidate(
            "a",
            duration=900,
            fingerprints=[
                Fingerprint("1", "PHASH", 600),
                Fingerprint("2", "PHASH", 605),
                Fingerprint("3", "PHASH", 700),
            ],
        )
        status = get_duration_status(candidate, 600)
        assert status.matches is True
        assert status.matching_fingerprints == 2
        assert status.total_fingerprints == 3
        assert status.message == "Duration matches 2 of 3 fingerprints"

    def test_primary_duration_match(self):
        status = get_duration_status(_candidate("a", 603), 600)
        assert status.matches is True
        assert status.matching_fingerprints == 0
        assert status.message == "Duration is a match"

    def test_primary_duration_boundary_is_exclusive(self):
        status = get_duration_status(_candidate("a", 605), 600)
        assert status.matches is False
        assert status.difference == 5

    def test_reports_floored_minimum_difference(self):
        candidate = _candidate(
            "a", duration=700, fingerprints=[Fingerprint("1", "MD5", 650)]
        )
        status = get_duration_status(candidate, 600.7)
        assert status.matches is False
        assert status.difference == 49
        assert status.message == "Duration off by 49s"

    def test_none_without_local_duration(self):
        assert get_duration_status(_candidate("a", 600), None) is None

    def test_none_without_candidate_duration(self):
        assert get_duration_status(_candidate("a"), 600) is None


class TestFingerprintStatus:

    def _scene(self, **hashes):
        return LocalScene(id="1", **hashes)

    def test_checksum_match(self):
        candidate = _candidate("a", fingerprints=[Fingerprint("abc", "MD5")])
        status = get_fingerprint_status(candidate, self._scene(checksum="abc"))
        assert status.kind == "checksum"
        assert status.message == "Checksum is a match"

    def test_oshash_match(self):
        candidate = _candidate("a", fingerprints=[Fingerprint("os1", "OSHASH")])
        status = get_fingerprint_status(candidate, self._scene(oshash="os1"))
        assert status.kind == "oshash"
        assert status.message == "Checksum is a match"

    def test_phash_match(self):
        candidate = _candidate("a", fingerprints=[Fingerprint("ph1", "PHASH")])
        status = get_fingerprint_status(candidate, self._scene(phash="ph1"))
        assert status.kind == "phash"
        assert status.message == "PHash is a match"

    def test_no_overlap(self):
        candidate = _candidate("a", fingerprints=[Fingerprint("zzz", "MD5")])
        assert get_fingerprint_status(candidate, self._scene(checksum="abc")) is None
