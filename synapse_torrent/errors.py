"""Errors raised while talking to trackers."""


class TrackerError(Exception):
    """Base class for every tracker failure."""

    description = "tracker failure"
    default_message = "tracker failure"

    def __init__(self, message=None):
        super().__init__(self.default_message if message is None else message)


class InvalidRequest(TrackerError):
    """The announce request could not be built or sent."""

    description = "invalid tracker request"

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"invalid tracker request: {reason}")


class InvalidResponse(TrackerError):
    """The tracker answered with something that cannot be understood."""

    description = "invalid tracker response"

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"invalid tracker response: {reason}")


class TrackerFailure(TrackerError):
    """The tracker answered with an explicit failure reason."""

    description = "tracker error response"

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"tracker error: {reason}")


class TrackerEOF(TrackerError):
    """The tracker closed the connection unexpectedly."""

    description = "the tracker closed the connection unexpectedly"
    default_message = "tracker EOF"


class TrackerIOError(TrackerError):
    """The tracker connection experienced an IO error."""

    description = "the tracker connection experienced an IO error"
    default_message = "tracker IO error"


class TrackerTimeout(TrackerError):
    """The tracker failed to respond in a timely manner."""

    description = "the tracker failed to respond to the request in a timely manner"
    default_message = "tracker timeout"


class DNSTimeout(TrackerError):
    """Resolving the tracker host timed out."""

    description = "the tracker url dns resolution timed out"
    default_message = "tracker dns timeout"


class DNSInvalid(TrackerError):
    """The tracker host does not resolve to a valid address."""

    description = "the tracker url does not correspond to a valid IP address"
    default_message = "tracker dns invalid"