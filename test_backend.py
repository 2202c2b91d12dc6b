#!/usr/bin/env python3
"""
Backend Testing Script for StackArchive

Covers the pieces around the pipeline: logging and the run error tracker,
publication URL validation, run configuration and the command line.
"""

import os
import sys
import logging
import tempfile
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from stackarchive import cli
from stackarchive.cli import build_parser, config_from_args, main
from stackarchive.core.controller import COOKIE_ENV_VAR, RunConfig, RunResult
from stackarchive.core.errors import ValidationError
from stackarchive.core.logger import ArchiveLogger, ErrorTracker, create_error_tracker, get_logger
from stackarchive.core.models import Publication
from stackarchive.utils.validators import parse_date, validate_publication_url


# Logging

def test_logger_writes_rotating_files():
    log_dir = Path(tempfile.mkdtemp()) / "logs"
    logger = ArchiveLogger(str(log_dir), app_name="stackarchive-test").setup_logger(logging.CRITICAL)

    logger.error("something broke")
    for handler in logger.handlers:
        handler.flush()

    assert (log_dir / "stackarchive-test.log").exists()
    assert "something broke" in (log_dir / "stackarchive-test_errors.log").read_text(encoding="utf-8")
    # A second setup does not stack handlers
    again = ArchiveLogger(str(log_dir), app_name="stackarchive-test").setup_logger()
    assert len(again.handlers) == 3


def test_named_loggers_live_under_the_package():
    assert get_logger("run").name == "stackarchive.run"
    assert get_logger().name == "stackarchive"


def test_error_tracker_records_errors_and_warnings():
    tracker = create_error_tracker("test")
    try:
        raise ValueError("Test error for tracking")
    except ValueError as e:
        error_id = tracker.log_error(e, context="fetch", url="https://x.test/p/a")
    warning_id = tracker.log_warning("cookie ignored", context="credential")

    assert error_id.startswith("ERR_")
    assert warning_id.startswith("WARN_")
    summary = tracker.get_error_summary()
    assert summary["total_errors"] == 1
    assert summary["total_warnings"] == 1
    assert summary["error_types"] == {"ValueError": 1}
    assert "Test error for tracking" in tracker.errors[0]["traceback"]


def test_error_report_file():
    tracker = ErrorTracker(logging.getLogger("test.report"))
    tracker.log_error(RuntimeError("boom"), url="https://x.test/img.png")
    tracker.log_warning("careful")
    path = Path(tempfile.mkdtemp()) / "report.txt"

    tracker.save_error_report(str(path))

    report = path.read_text(encoding="utf-8")
    assert "Total Errors: 1" in report
    assert "URL: https://x.test/img.png" in report
    assert "Message: careful" in report


# URL validation

def test_url_validation():
    cases = [
        ("foo.substack.com", True, "foo"),
        ("https://foo.substack.com/", True, "foo"),
        ("http://foo.substack.com/p/some-post", True, "foo"),
        ("substack.com/@writer", True, "writer"),
        ("https://www.Example.com/archive", True, "example.com"),
        ("newsletter.example.org", True, "newsletter.example.org"),
        ("invalid..domain", False, ""),
        ("localhost", False, ""),
        ("", False, ""),
        ("ftp://foo.substack.com", False, ""),
    ]
    for url, expected_valid, expected_identifier in cases:
        is_valid, identifier, error = validate_publication_url(url)
        assert is_valid == expected_valid, url
        assert identifier == expected_identifier, url
        assert bool(error) != expected_valid, url


def test_parse_date():
    assert parse_date("2024-01-31") == date(2024, 1, 31)
    assert parse_date(None) is None
    with pytest.raises(ValueError):
        parse_date("2024-13-01")


# Configuration

def test_run_config_rejects_bad_values():
    with pytest.raises(ValidationError):
        RunConfig(identifier="foo", output_format="pdf")
    with pytest.raises(ValidationError):
        RunConfig(identifier="foo", start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))


def test_run_config_date_range():
    assert RunConfig(identifier="foo").date_range is None
    window = RunConfig(identifier="foo", start_date=date(2024, 1, 1)).date_range
    assert window.start == date(2024, 1, 1)
    assert window.end is None


def test_credential_comes_from_environment_when_not_given():
    previous = os.environ.get(COOKIE_ENV_VAR)
    os.environ[COOKIE_ENV_VAR] = "substack.sid=from-env"
    try:
        assert RunConfig.from_env("foo").credential == "substack.sid=from-env"
        assert RunConfig.from_env("foo", credential="substack.sid=given").credential == "substack.sid=given"
    finally:
        if previous is None:
            del os.environ[COOKIE_ENV_VAR]
        else:
            os.environ[COOKIE_ENV_VAR] = previous


# Command line

def test_config_from_args():
    args = build_parser().parse_args([
        "https://foo.substack.com", "--format", "epub", "--cookie", "substack.sid=x",
        "--start-date", "2024-01-01", "--end-date", "2024-01-31", "--delay", "0.5",
    ])

    config = config_from_args(args)

    assert config.identifier == "foo"
    assert config.output_format == "epub"
    assert config.credential == "substack.sid=x"
    assert config.request_delay == 0.5
    assert (config.start_date, config.end_date) == (date(2024, 1, 1), date(2024, 1, 31))


def test_config_from_args_rejects_bad_input():
    parser = build_parser()
    for argv in (["ftp://foo.com"],
                 ["foo.substack.com", "--start-date", "tomorrow"],
                 ["foo.substack.com", "--delay", "-1"],
                 ["foo.substack.com", "--image-workers", "0"]):
        with pytest.raises(ValidationError):
            config_from_args(parser.parse_args(argv))


def test_main_exits_with_usage_code_on_invalid_input():
    assert main(["invalid..domain"]) == 2
    assert main(["foo.substack.com", "--start-date", "2024-02-01", "--end-date", "2024-01-01"]) == 2


class FailingItemsController:
    """Stands in for ArchiveController: one run with a failed image."""

    def __init__(self, config):
        self.config = config
        self.tracker = create_error_tracker("test.cli")
        self.tracker.log_error(RuntimeError("image gone"), context="image", url="https://cdn.test/a.png")

    def run(self, progress=None):
        publication = Publication(identifier="foo", name="Foo", url="https://foo.substack.com",
                                  base_url="https://foo.substack.com")
        return RunResult(publication=publication, filename="foo-archive.zip", data=b"",
                         documents=1, errors=["RuntimeError: image gone"])

    def stop(self):
        pass

    def close(self):
        pass


def test_main_writes_error_report_when_items_fail():
    log_dir = Path(tempfile.mkdtemp()) / "logs"
    original = cli.ArchiveController
    cli.ArchiveController = FailingItemsController
    try:
        assert main(["foo.substack.com", "--log-dir", str(log_dir)]) == 0
    finally:
        cli.ArchiveController = original

    report = (log_dir / cli.ERROR_REPORT_NAME).read_text(encoding="utf-8")
    assert "Total Errors: 1" in report
    assert "Message: image gone" in report


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✓ {name}")
