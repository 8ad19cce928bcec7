from __future__ import annotations

import pytest

from app.exporter import retry_policy
from app.exporter.error_codes import ErrorCode


@pytest.fixture
def event_recorder(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict]]:
    events: list[tuple[str, dict]] = []

    def _record(event_phase: str, **fields: object) -> None:
        events.append((event_phase, fields))

    monkeypatch.setattr(retry_policy, "_export_event", _record)
    return events


@pytest.mark.parametrize(
    "attempt, expected, kind",
    [
        (1, True, "retryable"),
        (3, True, "retryable"),
        (4, False, "capped"),
        (9, False, "capped"),
    ],
)
def test_masked_extraction_retry_limits(
    attempt: int, expected: bool, kind: str, event_recorder: list[tuple[str, dict]]
) -> None:
    result = retry_policy.decide_retry(attempt, 3, error_code=ErrorCode.EXTRACTION_MASKED)
    assert result is expected
    assert len(event_recorder) == 1
    phase, fields = event_recorder[0]
    assert phase == "state"
    assert fields["phase"] == "retry_decision"
    assert fields["error_code"] == "extraction_masked"
    assert fields["attempt"] == attempt
    assert fields["max_retries"] == 3
    assert fields["will_retry"] is expected
    assert fields["kind"] == kind


@pytest.mark.parametrize(
    "error_code",
    [
        ErrorCode.PERMISSION_BLOCKED,
        ErrorCode.STALL_EXHAUSTED,
        ErrorCode.RELOAD_FAILED,
        ErrorCode.INTERNAL,
    ],
)
def test_non_retryable_error_codes(error_code: str, event_recorder: list[tuple[str, dict]]) -> None:
    assert error_code in retry_policy.NON_RETRYABLE_ERROR_CODES
    assert retry_policy.decide_retry(1, 3, error_code=error_code) is False
    _, fields = event_recorder[0]
    assert fields["kind"] == "non_retryable"
    assert fields["will_retry"] is False
    assert fields["error_code"] == error_code


def test_skip_retry_wins_over_attempt_budget(event_recorder: list[tuple[str, dict]]) -> None:
    assert retry_policy.decide_retry(1, 3, error_code="", skip_retry=True) is False
    _, fields = event_recorder[0]
    assert fields["kind"] == "non_retryable"
    assert fields["error_code"] is None


def test_zero_retries_never_retries(event_recorder: list[tuple[str, dict]]) -> None:
    assert retry_policy.decide_retry(1, 0, error_code=ErrorCode.DELEGATE_TIMEOUT) is False
    assert event_recorder[0][1]["kind"] == "capped"


def test_unknown_code_is_retried_within_budget(event_recorder: list[tuple[str, dict]]) -> None:
    assert retry_policy.decide_retry(2, 3, error_code="weird") is True
    assert event_recorder[0][1]["kind"] == "unknown"


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 5.0), (2, 7.0), (3, 11.0), (4, 19.0), (10, 60.0)],
)
def test_backoff_grows_and_caps(attempt: int, expected: float) -> None:
    assert retry_policy.compute_backoff_seconds(attempt, base=3, increment=2, cap=60) == expected


def test_backoff_never_negative() -> None:
    assert retry_policy.compute_backoff_seconds(0, base=0, increment=0, cap=0) == 0.0
