import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parent.parent))
from streamkeeper.logger import StreamLogger, quiet_logger


@pytest.mark.parametrize(
    "message",
    [
        "HTTP Error 403: Forbidden",
        "Got 403 from server: forbidden",
    ],
)
def test_forbidden_messages_are_counted(message):
    logger = StreamLogger(quiet=True)
    logger.warning(message)

    assert logger.http_403_count == 1
    assert logger.warning_count == 1


def test_context_prefix_and_streams(capsys):
    logger = StreamLogger()
    logger.set_context("IPADOS", "abc12345678")
    logger.info("resolving")
    logger.error("no format")

    out, err = capsys.readouterr()
    assert out == "[client=IPADOS track=abc12345678] resolving\n"
    assert err == "[client=IPADOS track=abc12345678] no format\n"
    assert logger.error_count == 1


def test_debug_only_when_verbose(capsys):
    StreamLogger().debug("hidden")
    StreamLogger(verbose=True).debug(b"shown")

    assert capsys.readouterr().out == "shown\n"


def test_ignored_fragments_are_not_counted(capsys):
    logger = StreamLogger()
    logger.warning("WARNING: ffmpeg not found. Some formats may be unavailable")

    assert logger.warning_count == 0
    assert capsys.readouterr().err == ""


def test_failed_probes_counted_separately():
    logger = quiet_logger()
    logger.record_failed_probe(403)
    logger.record_failed_probe(None)

    assert logger.failed_probe_count == 2
    assert logger.http_403_count == 1


def test_record_exception_uses_type_name_for_empty_message(capsys):
    logger = StreamLogger()
    logger.set_track("abc12345678")
    logger.record_exception(TimeoutError(), prefix="Probe failed: ")

    assert capsys.readouterr().err == "[track=abc12345678] Probe failed: TimeoutError\n"
