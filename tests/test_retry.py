"""Tests for the retry controller."""

import pytest

from stowage.core.errors import NetworkError, ValidationError
from stowage.utils.retry import retry


class Flaky:
    def __init__(self, failures, error=NetworkError("boom")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_succeeds_after_failures_with_doubling_delay():
    sleeps = []
    operation = Flaky(failures=2)
    assert retry(operation, max_attempts=3, initial_delay=0.1, sleep=sleeps.append) == "ok"
    assert operation.calls == 3
    assert sleeps == pytest.approx([0.1, 0.2])


def test_exhausted_attempts_reraise_last_error():
    sleeps = []
    operation = Flaky(failures=5)
    with pytest.raises(NetworkError):
        retry(operation, max_attempts=3, sleep=sleeps.append)
    assert operation.calls == 3
    assert len(sleeps) == 2


def test_non_matching_errors_propagate_immediately():
    operation = Flaky(failures=1, error=ValidationError("bad"))
    with pytest.raises(ValidationError):
        retry(operation, max_attempts=3, retry_on=(NetworkError,), sleep=lambda _: None)
    assert operation.calls == 1


def test_single_attempt_does_not_sleep():
    sleeps = []
    with pytest.raises(NetworkError):
        retry(Flaky(failures=1), max_attempts=1, sleep=sleeps.append)
    assert sleeps == []


def test_invalid_max_attempts():
    with pytest.raises(ValueError):
        retry(lambda: None, max_attempts=0)
