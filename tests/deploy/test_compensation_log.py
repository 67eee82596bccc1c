from harbormaster.deploy.models import Phase, ServiceConfig, Task
from harbormaster.deploy.saga import CompensationEntry, CompensationLog


def _entry(name, calls, fail=False):
    def undo():
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} would not stop")
    task = Task(name, "service", "core-1", Phase.APPLICATIONS)
    return CompensationEntry(task=task, host="core-1", config=ServiceConfig(deploy_name="service"), undo=undo)


def test_unwind_runs_in_strict_reverse_order():
    calls = []
    saga = CompensationLog()
    for name in ("a", "b", "c"):
        saga.record(_entry(name, calls))
    assert len(saga) == 3

    warnings = saga.unwind()

    assert calls == ["c", "b", "a"]
    assert warnings == []
    assert len(saga) == 0


def test_failed_undo_is_collected_and_does_not_stop_the_rest():
    calls = []
    results = []
    saga = CompensationLog()
    saga.record(_entry("a", calls))
    saga.record(_entry("b", calls, fail=True))
    saga.record(_entry("c", calls))

    warnings = saga.unwind(results.append)

    assert calls == ["c", "b", "a"]
    assert warnings == ["failed to clean up b on core-1: b would not stop"]
    assert [(r.entry.task.name, r.ok) for r in results] == [("c", True), ("b", False), ("a", True)]


def test_unwind_of_empty_log_is_a_no_op():
    assert CompensationLog().unwind() == []


def test_entries_is_a_copy():
    saga = CompensationLog()
    saga.record(_entry("a", []))
    saga.entries.clear()
    assert len(saga) == 1
