import asyncio
import socket
import sys
import urllib.error
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from streamkeeper.logger import StreamLogger
from streamkeeper.models import USER_AGENT_WEB
from streamkeeper.validator import UrlValidator


class FakeResponse:
    def __init__(self, status):
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def getcode(self):
        return self.status


class FakeOpener:
    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []

    def open(self, request, timeout=None):
        self.requests.append((request, timeout))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return FakeResponse(self.outcome)


def make_validator(outcome, **kwargs):
    validator = UrlValidator(**kwargs)
    opener = FakeOpener(outcome)
    validator._opener = opener
    return validator, opener


def test_success_status_is_reachable():
    validator, opener = make_validator(200, cookie="SID=abc", timeout=2.5)

    assert asyncio.run(validator.is_reachable("https://media.example/v")) is True

    request, timeout = opener.requests[0]
    assert request.get_method() == "HEAD"
    assert request.get_header("User-agent") == USER_AGENT_WEB
    assert request.get_header("Cookie") == "SID=abc"
    assert timeout == 2.5


def test_cookie_header_omitted_without_cookie():
    validator, opener = make_validator(204)

    assert validator.probe("https://media.example/v") is True
    assert opener.requests[0][0].get_header("Cookie") is None


def test_http_error_is_unreachable_and_counted():
    logger = StreamLogger(quiet=True)
    error = urllib.error.HTTPError("https://media.example/v", 403, "Forbidden", {}, None)
    validator, _ = make_validator(error, logger=logger)

    assert validator.probe("https://media.example/v") is False
    assert logger.http_403_count == 1
    assert logger.failed_probe_count == 1


@pytest.mark.parametrize(
    "outcome",
    [socket.timeout("timed out"), urllib.error.URLError("refused"), ValueError("unknown url type")],
)
def test_any_exception_is_unreachable(outcome):
    validator, _ = make_validator(outcome)

    assert validator.probe("https://media.example/v") is False


def test_non_success_status_is_unreachable():
    validator, _ = make_validator(302)

    assert validator.probe("https://media.example/v") is False


def test_default_timeout_is_bounded():
    assert UrlValidator().timeout == 4.0
