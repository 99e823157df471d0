"""Tests for the candidate workflow and the capacity ledger.

Covers:
- Apply preconditions: open song, checked-in guest, configured instrument
- Duplicate applications
- Approval capped by instrument slots, including concurrent approvals
- Reject semantics
"""
import threading

import pytest

from jamqueue.exceptions import CapacityExceeded
from jamqueue.models.candidate import Candidate, CandidateStatus
from jamqueue.models.jam import Jam
from jamqueue.services import (
    candidate_service,
    capacity_ledger,
    guest_service,
    jam_service,
    song_service,
)
from tests.conftest import (
    apply_for,
    candidate_action,
    create_test_guest,
    create_test_jam,
    create_test_song,
    open_song,
)


def _open_song_with(client, event_id, instrument_slots=None):
    jam = create_test_jam(client, event_id)
    song = create_test_song(client, event_id, jam["jam_id"], instrument_slots=instrument_slots)
    open_song(client, event_id, jam["jam_id"], song["song_id"])
    return jam, song


class TestApply:
    """Guests apply for instrument slots on open songs."""

    def test_apply(self, client, event_id, broadcaster):
        jam, song = _open_song_with(client, event_id)
        guest = create_test_guest(client, event_id, name="Ana")
        broadcaster.clear()

        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["status"] == "pending"
        assert data["instrument"] == "guitar"
        assert data["guest_id"] == guest["guest_id"]
        assert broadcaster.of_type("candidate_applied") == [{
            "song_id": song["song_id"],
            "candidate_id": data["candidate_id"],
            "instrument": "guitar",
            "guest_id": guest["guest_id"],
        }]

    def test_song_must_be_open(self, client, event_id):
        jam = create_test_jam(client, event_id)
        song = create_test_song(client, event_id, jam["jam_id"])
        guest = create_test_guest(client, event_id)
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest)
        assert resp.status_code == 400
        assert resp.json()["code"] == "song_not_open"

    def test_guest_must_be_checked_in(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        guest = create_test_guest(client, event_id, checked_in=False)
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest)
        assert resp.status_code == 403
        assert resp.json()["code"] == "guest_not_checked_in"

    def test_unknown_guest(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], {"user_id": "stranger"})
        assert resp.status_code == 404

    def test_guest_of_another_event(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        outsider = create_test_guest(client, "another-event")
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], outsider)
        assert resp.status_code == 404

    def test_instrument_must_be_configured(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        guest = create_test_guest(client, event_id)
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest, instrument="drums")
        assert resp.status_code == 404

    def test_unknown_instrument(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        guest = create_test_guest(client, event_id)
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest, instrument="theremin")
        assert resp.status_code == 422

    def test_duplicate_application(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        guest = create_test_guest(client, event_id)
        assert apply_for(client, event_id, jam["jam_id"], song["song_id"], guest).status_code == 201
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest)
        assert resp.status_code == 409
        assert resp.json()["code"] == "duplicate_application"

    def test_same_guest_other_instrument(self, client, event_id):
        jam, song = _open_song_with(client, event_id, instrument_slots=[
            {"instrument": "guitar"}, {"instrument": "vocals"},
        ])
        guest = create_test_guest(client, event_id)
        assert apply_for(client, event_id, jam["jam_id"], song["song_id"], guest).status_code == 201
        resp = apply_for(client, event_id, jam["jam_id"], song["song_id"], guest, instrument="vocals")
        assert resp.status_code == 201


class TestApprove:
    """Approval never exceeds the configured slots."""

    def test_approve_until_full(self, client, event_id, broadcaster):
        jam, song = _open_song_with(client, event_id, instrument_slots=[{"instrument": "bass", "slots": 1}])
        g1 = create_test_guest(client, event_id, name="G1")
        g2 = create_test_guest(client, event_id, name="G2")
        c1 = apply_for(client, event_id, jam["jam_id"], song["song_id"], g1, instrument="bass").json()
        c2 = apply_for(client, event_id, jam["jam_id"], song["song_id"], g2, instrument="bass").json()

        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], c1["candidate_id"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "approved"
        assert resp.json()["approved_by"] == "staff-1"
        assert resp.json()["approved_at"] is not None

        broadcaster.clear()
        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], c2["candidate_id"])
        assert resp.status_code == 409
        assert resp.json()["code"] == "capacity_exceeded"
        assert broadcaster.published == []

        open_songs = client.get(f"/api/events/{event_id}/jams/{jam['jam_id']}/open-songs").json()["songs"]
        slot = open_songs[0]["instrument_slots"][0]
        assert slot["approved_count"] == 1
        assert slot["pending_count"] == 1
        assert slot["remaining_slots"] == 0

    def test_approve_twice(self, client, event_id):
        jam, song = _open_song_with(client, event_id, instrument_slots=[{"instrument": "guitar", "slots": 2}])
        cand = apply_for(client, event_id, jam["jam_id"], song["song_id"],
                         create_test_guest(client, event_id)).json()
        assert candidate_action(client, event_id, jam["jam_id"], song["song_id"],
                                cand["candidate_id"]).status_code == 200
        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"])
        assert resp.status_code == 404

    def test_unknown_candidate(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], "missing")
        assert resp.status_code == 404


class TestReject:
    """Rejecting pending candidates."""

    def test_reject(self, client, event_id, broadcaster):
        jam, song = _open_song_with(client, event_id)
        cand = apply_for(client, event_id, jam["jam_id"], song["song_id"],
                         create_test_guest(client, event_id)).json()
        broadcaster.clear()

        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"], "reject")
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"
        assert broadcaster.types() == ["candidate_rejected"]

        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"], "reject")
        assert resp.status_code == 200
        assert broadcaster.types() == ["candidate_rejected"]

    def test_rejected_cannot_be_approved(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        cand = apply_for(client, event_id, jam["jam_id"], song["song_id"],
                         create_test_guest(client, event_id)).json()
        candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"], "reject")
        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"])
        assert resp.status_code == 404

    def test_approved_cannot_be_rejected(self, client, event_id):
        jam, song = _open_song_with(client, event_id)
        cand = apply_for(client, event_id, jam["jam_id"], song["song_id"],
                         create_test_guest(client, event_id)).json()
        candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"])
        resp = candidate_action(client, event_id, jam["jam_id"], song["song_id"], cand["candidate_id"], "reject")
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_state"


class TestConcurrentApproval:
    """Many staff approving at once on one instrument never overbook it."""

    def _setup(self, db, broadcaster, event_id, slots, applicants):
        jam = jam_service.create_jam(db, event_id, name="Stage", slug=f"stage-{event_id}")
        song = song_service.create_song(
            db, broadcaster, jam, {"title": "Crowded"}, [{"instrument": "drums", "slots": slots}],
        )
        song_service.open_songs(db, broadcaster, jam, [song.song_id])
        candidate_ids = []
        for i in range(applicants):
            guest = guest_service.register_guest(db, event_id, f"Drummer {i}", user_id=f"user-{i}")
            guest_service.check_in(db, event_id, guest.guest_id)
            candidate = candidate_service.apply(db, broadcaster, jam, song, "drums", guest)
            candidate_ids.append(candidate.candidate_id)
        return jam.jam_id, song.song_id, candidate_ids

    def test_parallel_approvals_respect_slots(self, db, session_factory, broadcaster, event_id):
        jam_id, song_id, candidate_ids = self._setup(db, broadcaster, event_id, slots=2, applicants=8)
        barrier = threading.Barrier(len(candidate_ids))
        outcomes = []
        outcomes_lock = threading.Lock()

        def approve(candidate_id):
            session = session_factory()
            try:
                jam = session.get(Jam, jam_id)
                candidate = session.get(Candidate, candidate_id)
                barrier.wait()
                try:
                    candidate_service.approve(session, broadcaster, jam, candidate, approved_by="staff")
                    result = "approved"
                except CapacityExceeded:
                    result = "full"
                with outcomes_lock:
                    outcomes.append(result)
            finally:
                session.close()

        threads = [threading.Thread(target=approve, args=(cid,)) for cid in candidate_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["approved"] * 2 + ["full"] * 6
        db.expire_all()
        assert capacity_ledger.count_approved(db, song_id, "drums") == 2
        assert capacity_ledger.remaining_slots(db, song_id, "drums") == 0
        pending = db.query(Candidate).filter(
            Candidate.song_id == song_id, Candidate.status == CandidateStatus.pending,
        ).count()
        assert pending == 6
        assert len(capacity_ledger.slot_locks) == 0

    def test_capacity_exceeded_leaves_candidate_pending(self, db, broadcaster, event_id):
        jam_id, song_id, candidate_ids = self._setup(db, broadcaster, event_id, slots=1, applicants=2)
        jam = db.get(Jam, jam_id)
        first, second = (db.get(Candidate, cid) for cid in candidate_ids)
        candidate_service.approve(db, broadcaster, jam, first)
        with pytest.raises(CapacityExceeded):
            candidate_service.approve(db, broadcaster, jam, second)
        db.refresh(second)
        assert second.status == CandidateStatus.pending
        assert second.approved_at is None
