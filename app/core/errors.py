class MeetingAssistError(Exception):
    status_code = 500


class InvalidInputError(MeetingAssistError):
    """Missing or malformed identifiers. Retrying will not help."""

    status_code = 422


class NotFoundError(MeetingAssistError):
    status_code = 404


class UpstreamFailureError(MeetingAssistError):
    """The summarizer or the storage backend failed; callers may retry."""

    status_code = 502


class ConcurrencyConflictError(MeetingAssistError):
    status_code = 409
