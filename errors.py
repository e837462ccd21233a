# errors.py
# Domain errors. Each carries the notice shown to the operator; the HTTP layer
# turns them into status codes.

from __future__ import annotations


class StudioError(Exception):
    status_code = 400

    def __init__(self, notice: str):
        super().__init__(notice)
        self.notice = notice


class ValidationFailed(StudioError):
    status_code = 400


class NotFound(StudioError):
    status_code = 404


class DuplicateBooking(StudioError):
    status_code = 409


class AttendanceLocked(StudioError):
    """Exercise rows cannot be added or edited on an absent day."""
    status_code = 409
