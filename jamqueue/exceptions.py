"""Domain errors raised by the jam queue services.

Every error is caller-recoverable. ``code`` is a stable machine-readable kind,
``status_code`` the HTTP status the API renders it with.
"""


class JamQueueError(Exception):
    code = "jam_queue_error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(JamQueueError):
    code = "not_found"
    status_code = 404


class InvalidState(JamQueueError):
    code = "invalid_state"


class SongNotOpen(InvalidState):
    code = "song_not_open"


class NotReady(InvalidState):
    code = "not_ready"


class SongNotPlayed(InvalidState):
    code = "song_not_played"


class CapacityExceeded(JamQueueError):
    code = "capacity_exceeded"
    status_code = 409


class TooManyOpenSongs(JamQueueError):
    code = "too_many_open_songs"


class DuplicateApplication(JamQueueError):
    code = "duplicate_application"
    status_code = 409


class DuplicateJam(JamQueueError):
    code = "duplicate_jam"
    status_code = 409


class GuestNotCheckedIn(JamQueueError):
    code = "guest_not_checked_in"
    status_code = 403


class OutOfBucket(JamQueueError):
    code = "out_of_bucket"


class InvalidStars(JamQueueError):
    code = "invalid_stars"


class Forbidden(JamQueueError):
    code = "forbidden"
    status_code = 403


class ParticipantsPending(InvalidState):
    code = "participants_pending"
