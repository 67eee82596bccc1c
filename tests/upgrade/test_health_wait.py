import time

from harbormaster.errors import ValidationError
from harbormaster.upgrade.machine import wait_for_health
from harbormaster.utils.execution import RunContext


def _flaky(failures):
    calls = []

    def check():
        calls.append(time.monotonic())
        if len(calls) <= failures:
            raise ValidationError(f"attempt {len(calls)} failed")

    return check, calls


def test_passes_once_the_check_recovers():
    check, calls = _flaky(2)
    wait_for_health(check, interval=0.005, timeout=0.5)
    assert len(calls) == 3


def test_reraises_the_last_validation_error_on_deadline():
    check, calls = _flaky(1000)
    start = time.monotonic()
    try:
        wait_for_health(check, interval=0.005, timeout=0.05)
        assert False, "expected ValidationError"
    except ValidationError as e:
        assert str(e) == f"attempt {len(calls)} failed"
    assert len(calls) >= 2
    assert time.monotonic() - start < 1.0


def test_cancellation_stops_waiting():
    check, calls = _flaky(1000)
    ctx = RunContext()
    ctx.cancel()
    try:
        wait_for_health(check, interval=10, timeout=60, ctx=ctx)
        assert False, "expected ValidationError"
    except ValidationError:
        pass
    assert len(calls) == 1


def test_parent_deadline_bounds_the_window():
    check, _ = _flaky(1000)
    ctx = RunContext(timeout=0.05)
    start = time.monotonic()
    try:
        wait_for_health(check, interval=0.01, timeout=60, ctx=ctx)
        assert False, "expected ValidationError"
    except ValidationError:
        pass
    assert time.monotonic() - start < 1.0


def test_other_errors_propagate_immediately():
    def check():
        raise RuntimeError("checker crashed")

    try:
        wait_for_health(check, interval=0.005, timeout=1)
        assert False, "expected RuntimeError"
    except RuntimeError as e:
        assert "checker crashed" in str(e)
