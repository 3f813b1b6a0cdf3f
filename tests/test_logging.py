import io
import logging

from ciharness.utils.logging import create_stream_handler
from ciharness.utils.logging.build_logger import BuildLogger


def _logger_writing_to(stream):
    logger = logging.getLogger("ciharness.tests.logging")
    logger.handlers = [create_stream_handler(stream)]
    logger.propagate = False
    logger.setLevel(logging.INFO)
    return logger


def test_context_is_rendered():
    stream = io.StringIO()
    logger = _logger_writing_to(stream)
    adapter = logging.LoggerAdapter(logger, dict(provider="travis", build_type="sbt"))
    adapter.info("hello")
    assert " travis/sbt] ciharness.tests.logging: hello" in stream.getvalue()


def test_without_context():
    stream = io.StringIO()
    _logger_writing_to(stream).info("plain")
    assert "   INFO] ciharness.tests.logging: plain" in stream.getvalue()


def test_build_logger_levels():
    out = io.StringIO()
    log = BuildLogger(out)
    log.info("running")
    log.warning("careful")
    lines = out.getvalue().splitlines()
    assert lines[0].startswith("[ciharness @ ")
    assert lines[0].endswith(" INFO] running")
    assert lines[1].endswith(" WARN] careful")


def test_banner():
    out = io.StringIO()
    BuildLogger(out).banner("WARNING: short", "a somewhat longer line")
    lines = out.getvalue().splitlines()
    assert len({len(line) for line in lines}) == 1
    assert any("WARNING: short" in line for line in lines)
