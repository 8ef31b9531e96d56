import pytest

from synapse_torrent.errors import (
    DNSInvalid,
    DNSTimeout,
    InvalidRequest,
    InvalidResponse,
    TrackerEOF,
    TrackerError,
    TrackerFailure,
    TrackerIOError,
    TrackerTimeout,
)


def test_invalid_request_message_and_reason():
    err = InvalidRequest("Unknown tracker url scheme: ftp")
    assert str(err) == "invalid tracker request: Unknown tracker url scheme: ftp"
    assert err.reason == "Unknown tracker url scheme: ftp"


def test_invalid_response_message():
    err = InvalidResponse("Response must have interval!")
    assert str(err) == "invalid tracker response: Response must have interval!"
    assert err.description == "invalid tracker response"


def test_tracker_failure_message():
    err = TrackerFailure("torrent not registered")
    assert str(err) == "tracker error: torrent not registered"
    assert err.reason == "torrent not registered"


@pytest.mark.parametrize(
    "cls, message",
    [
        (TrackerEOF, "tracker EOF"),
        (TrackerIOError, "tracker IO error"),
        (TrackerTimeout, "tracker timeout"),
        (DNSTimeout, "tracker dns timeout"),
        (DNSInvalid, "tracker dns invalid"),
    ],
)
def test_fixed_messages(cls, message):
    err = cls()
    assert str(err) == message
    assert isinstance(err, TrackerError)


@pytest.mark.parametrize(
    "cls, message",
    [
        (InvalidRequest, "invalid tracker request: x"),
        (InvalidResponse, "invalid tracker response: x"),
        (TrackerFailure, "tracker error: x"),
    ],
)
def test_reasoned_errors_are_tracker_errors(cls, message):
    err = cls("x")
    assert str(err) == message
    assert err.reason == "x"
    assert isinstance(err, TrackerError)