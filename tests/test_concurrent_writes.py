"""Tests for staff writes racing each other on one jam.

Covers:
- Stale rejects (single and on close) never undo an approval
- Stale ready toggles, moves and reorders re-check the current song state
- Concurrent batch opens never jointly pass the open-song ceiling
- Concurrent song creation keeps the planned bucket dense
"""
import threading

import pytest

from jamqueue.config import settings
from jamqueue.exceptions import InvalidState, NotFound, OutOfBucket, TooManyOpenSongs
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.jam import Jam
from jamqueue.models.song import Song, SongStatus
from jamqueue.services import (
    candidate_service,
    capacity_ledger,
    guest_service,
    jam_service,
    queue_ordering,
    song_service,
)


def _jam(db, event_id):
    return jam_service.create_jam(db, event_id, name="Stage", slug=f"stage-{event_id}")


def _song(db, broadcaster, jam, title="Tune", slots=2):
    return song_service.create_song(
        db, broadcaster, jam, {"title": title}, [{"instrument": "guitar", "slots": slots}],
    )


def _applicant(db, broadcaster, jam, song, event_id, n):
    guest = guest_service.register_guest(db, event_id, f"Player {n}", user_id=f"user-{n}")
    guest_service.check_in(db, event_id, guest.guest_id)
    return candidate_service.apply(db, broadcaster, jam, song, "guitar", guest)


def _run_together(targets):
    """Start one thread per callable behind a barrier and wait for all of them."""
    barrier = threading.Barrier(len(targets))

    def runner(target):
        barrier.wait()
        target()

    threads = [threading.Thread(target=runner, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)


class TestStaleRejects:
    """A reject issued from an old read cannot flip an approval."""

    def test_reject_after_concurrent_approve(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        song = _song(db, broadcaster, jam)
        song_service.open_songs(db, broadcaster, jam, [song.song_id])
        candidate_id = _applicant(db, broadcaster, jam, song, event_id, 1).candidate_id

        staff_a = session_factory()
        try:
            stale = staff_a.get(Candidate, candidate_id)
            assert stale.status == CandidateStatus.pending

            candidate_service.approve(db, broadcaster, jam, db.get(Candidate, candidate_id), approved_by="staff-b")
            broadcaster.clear()

            with pytest.raises(InvalidState):
                candidate_service.reject(staff_a, broadcaster, staff_a.get(Jam, jam.jam_id), stale)
            assert stale.status == CandidateStatus.approved
        finally:
            staff_a.close()

        db.expire_all()
        assert db.get(Candidate, candidate_id).status == CandidateStatus.approved
        assert capacity_ledger.count_approved(db, song.song_id, "guitar") == 1
        assert broadcaster.of_type("candidate_rejected") == []

    def test_close_keeps_concurrent_approval(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        song = _song(db, broadcaster, jam)
        song_service.open_songs(db, broadcaster, jam, [song.song_id])
        approved_id = _applicant(db, broadcaster, jam, song, event_id, 1).candidate_id
        pending_id = _applicant(db, broadcaster, jam, song, event_id, 2).candidate_id

        staff_a = session_factory()
        try:
            staff_a.get(Candidate, approved_id)
            staff_a.get(Candidate, pending_id)

            candidate_service.approve(db, broadcaster, jam, db.get(Candidate, approved_id), approved_by="staff-b")
            broadcaster.clear()

            song_service.close_songs(staff_a, broadcaster, staff_a.get(Jam, jam.jam_id), [song.song_id])
        finally:
            staff_a.close()

        db.expire_all()
        assert db.get(Candidate, approved_id).status == CandidateStatus.approved
        assert db.get(Candidate, pending_id).status == CandidateStatus.rejected
        assert [e["candidate_id"] for e in broadcaster.of_type("candidate_rejected")] == [pending_id]

    def test_approve_after_close_finds_candidate_decided(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        song = _song(db, broadcaster, jam)
        song_service.open_songs(db, broadcaster, jam, [song.song_id])
        candidate_id = _applicant(db, broadcaster, jam, song, event_id, 1).candidate_id

        staff_a = session_factory()
        try:
            stale = staff_a.get(Candidate, candidate_id)
            song_service.close_songs(db, broadcaster, jam, [song.song_id])
            with pytest.raises(NotFound):
                candidate_service.approve(staff_a, broadcaster, staff_a.get(Jam, jam.jam_id), stale)
        finally:
            staff_a.close()

        db.expire_all()
        assert capacity_ledger.count_approved(db, song.song_id, "guitar") == 0


class TestStaleSongWrites:
    """Song writes re-read the song under the jam lock before checking guards."""

    def test_set_ready_after_concurrent_close(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        song = _song(db, broadcaster, jam)
        song_service.open_songs(db, broadcaster, jam, [song.song_id])

        staff_a = session_factory()
        try:
            stale = staff_a.get(Song, song.song_id)
            assert stale.status == SongStatus.open_for_candidates

            song_service.close_songs(db, broadcaster, jam, [song.song_id])

            with pytest.raises(InvalidState):
                song_service.set_ready(staff_a, broadcaster, staff_a.get(Jam, jam.jam_id), stale, True)
        finally:
            staff_a.close()

        db.expire_all()
        fresh = db.get(Song, song.song_id)
        assert fresh.status == SongStatus.planned
        assert fresh.ready is False

    def test_move_on_stage_after_concurrent_close(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        song = _song(db, broadcaster, jam)
        song_service.open_songs(db, broadcaster, jam, [song.song_id])
        song_service.set_ready(db, broadcaster, jam, song, True)

        staff_a = session_factory()
        try:
            stale = staff_a.get(Song, song.song_id)
            assert stale.ready is True

            song_service.close_songs(db, broadcaster, jam, [song.song_id])

            with pytest.raises(InvalidState):
                song_service.move_song(staff_a, broadcaster, staff_a.get(Jam, jam.jam_id), stale, "on_stage")
        finally:
            staff_a.close()

        db.expire_all()
        fresh = db.get(Song, song.song_id)
        assert fresh.status == SongStatus.planned
        assert fresh.ready is False

    def test_reorder_after_song_left_bucket(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        first = _song(db, broadcaster, jam, title="First")
        second = _song(db, broadcaster, jam, title="Second")

        staff_a = session_factory()
        try:
            staff_a.get(Song, first.song_id)
            staff_a.get(Song, second.song_id)

            song_service.open_songs(db, broadcaster, jam, [second.song_id])

            with pytest.raises(OutOfBucket):
                queue_ordering.reorder(
                    staff_a, broadcaster, staff_a.get(Jam, jam.jam_id), "planned", [second.song_id, first.song_id],
                )
        finally:
            staff_a.close()

        db.expire_all()
        moved = db.get(Song, second.song_id)
        assert (moved.status, moved.order_index) == (SongStatus.open_for_candidates, 0)
        assert db.get(Song, first.song_id).order_index == 0


class TestConcurrentJamWriters:
    """Writers of one jam run one at a time."""

    def test_parallel_batch_opens_respect_ceiling(self, db, session_factory, broadcaster, event_id, monkeypatch):
        monkeypatch.setattr(settings, "JAM_MAX_OPEN_SONGS", 5)
        jam = _jam(db, event_id)
        songs = [_song(db, broadcaster, jam, title=f"S{i}").song_id for i in range(7)]
        song_service.open_songs(db, broadcaster, jam, songs[:3])
        batches = [songs[3:5], songs[5:7]]
        outcomes = []
        outcomes_lock = threading.Lock()

        def open_batch(batch):
            def run():
                session = session_factory()
                try:
                    try:
                        song_service.open_songs(session, broadcaster, session.get(Jam, jam.jam_id), batch)
                        result = "opened"
                    except TooManyOpenSongs:
                        result = "ceiling"
                    with outcomes_lock:
                        outcomes.append(result)
                finally:
                    session.close()
            return run

        _run_together([open_batch(b) for b in batches])

        assert sorted(outcomes) == ["ceiling", "opened"]
        db.expire_all()
        assert song_service.count_open(db, jam) == 5
        open_bucket = queue_ordering.bucket(db, jam.jam_id, SongStatus.open_for_candidates)
        assert [s.order_index for s in open_bucket] == [0, 1, 2, 3, 4]
        assert len(queue_ordering.jam_locks) == 0

    def test_parallel_creates_keep_bucket_dense(self, db, session_factory, broadcaster, event_id):
        jam = _jam(db, event_id)
        errors = []

        def create(n):
            def run():
                session = session_factory()
                try:
                    song_service.create_song(session, broadcaster, session.get(Jam, jam.jam_id), {"title": f"New {n}"})
                except Exception as exc:
                    errors.append(exc)
                finally:
                    session.close()
            return run

        _run_together([create(n) for n in range(4)])

        assert errors == []
        db.expire_all()
        planned = queue_ordering.bucket(db, jam.jam_id, SongStatus.planned)
        assert sorted(s.order_index for s in planned) == [0, 1, 2, 3]
