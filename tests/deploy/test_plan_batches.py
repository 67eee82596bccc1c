from harbormaster.config.models import Manifest
from harbormaster.deploy.models import Phase, PhaseSelector, ProvisionOptions, Task
from harbormaster.deploy.planner import CyclicDependencyError, Planner, batch
from harbormaster.errors import ConfigurationError
from harbormaster.observers.dispatcher import EventBus
from harbormaster.observers.events import PlanComputed, PlanFailed


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def _manifest(**overrides):
    data = {
        "type": "central",
        "profile": "staging",
        "hosts": {
            "core-1": {"address": "10.0.0.1"},
            "core-2": {"address": "10.0.0.2"},
        },
        "infrastructure": {
            "postgres": {"enabled": True, "host": "core-1"},
            "zookeeper": {"enabled": True, "ensemble": [
                {"id": 1, "host": "core-1"},
                {"id": 2, "host": "core-2"},
            ]},
            "kafka": {"enabled": True, "brokers": [{"id": 1, "host": "core-1"}]},
            "redis": {"enabled": True, "instances": [{"name": "cache", "host": "core-2"}]},
            "clickhouse": {"enabled": True, "host": "core-2"},
        },
        "services": {
            "quartermaster": {"enabled": True, "host": "core-1"},
            "privateer": {"enabled": True, "hosts": ["core-1", "core-2"]},
            "bridge": {"enabled": True, "host": "core-1"},
            "commodore": {"enabled": True, "host": "core-2"},
            "purser": {"enabled": False, "host": "core-2"},
        },
        "interfaces": {"chartroom": {"enabled": True, "host": "core-1"}},
        "observability": {"prometheus": {"enabled": True, "host": "core-2"}},
    }
    data.update(overrides)
    return Manifest.model_validate(data)


def test_full_plan_orders_phases_and_emits_event():
    cap = Capture()
    plan = Planner(_manifest(), bus=EventBus([cap])).plan()

    assert plan.names() == [
        ["clickhouse", "postgres", "redis-cache", "zookeeper-1", "zookeeper-2"],
        ["kafka-broker-1"],
        ["quartermaster"],
        ["privateer@core-1", "privateer@core-2"],
        ["bridge", "commodore"],
        ["chartroom", "prometheus"],
    ]
    pc = next(e for e in cap.events if isinstance(e, PlanComputed))
    assert pc.batches == plan.names()
    assert pc.cluster == "central" and pc.profile == "staging"


def test_batches_never_mix_phases():
    plan = Planner(_manifest()).plan()
    for b in plan.batches:
        assert len({t.phase for t in b}) == 1
    assert plan.batches[0][0].phase is Phase.INFRASTRUCTURE
    assert plan.batches[-1][0].phase is Phase.INTERFACES


def test_planning_is_deterministic():
    first = Planner(_manifest()).plan()
    second = Planner(_manifest()).plan()
    assert first.names() == second.names()
    assert [t.depends_on for t in first.all_tasks] == [t.depends_on for t in second.all_tasks]


def test_replicas_keep_service_id_and_index():
    plan = Planner(_manifest()).plan()
    replicas = [t for t in plan.all_tasks if t.service == "privateer"]
    assert [(t.name, t.host, t.replica_index) for t in replicas] == [
        ("privateer@core-1", "core-1", 0),
        ("privateer@core-2", "core-2", 1),
    ]
    zk = [t for t in plan.all_tasks if t.type == "zookeeper"]
    assert {t.service for t in zk} == {"zookeeper"}
    kafka = next(t for t in plan.all_tasks if t.type == "kafka")
    assert set(kafka.depends_on) == {"zookeeper-1", "zookeeper-2"}


def test_disabled_services_are_not_planned():
    plan = Planner(_manifest()).plan()
    assert "purser" not in [t.name for t in plan.all_tasks]


def test_minimal_plan_puts_control_plane_alone():
    m = _manifest(
        infrastructure={"postgres": {"enabled": True, "host": "core-1"}},
        services={
            "quartermaster": {"enabled": True, "host": "core-1"},
            "bridge": {"enabled": True, "host": "core-1"},
        },
        interfaces={"chartroom": {"enabled": True, "host": "core-1"}},
        observability={},
    )
    assert Planner(m).plan().names() == [["postgres"], ["quartermaster"], ["bridge"], ["chartroom"]]


def test_phase_selection_drops_out_of_plan_dependencies():
    plan = Planner(_manifest()).plan(ProvisionOptions(phase=PhaseSelector.APPLICATIONS))
    assert plan.names() == [
        ["quartermaster"],
        ["privateer@core-1", "privateer@core-2"],
        ["bridge", "commodore"],
    ]
    assert plan.batches[0][0].depends_on == ()


def test_interfaces_only_plan_is_a_single_batch():
    plan = Planner(_manifest()).plan(ProvisionOptions(phase=PhaseSelector.INTERFACES))
    assert plan.names() == [["chartroom", "prometheus"]]


def test_unknown_host_raises_and_emits_failure():
    cap = Capture()
    m = _manifest(services={"bridge": {"enabled": True, "host": "ghost"}})
    try:
        Planner(m, bus=EventBus([cap])).plan()
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "host ghost not found in manifest" in str(e)
        pf = next(e for e in cap.events if isinstance(e, PlanFailed))
        assert "ghost" in pf.error


def test_unknown_service_id_raises():
    m = _manifest(services={"mystery": {"enabled": True, "host": "core-1"}})
    try:
        Planner(m).plan()
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "unknown service id: mystery" in str(e)


def test_enabled_service_without_host_raises():
    m = _manifest(services={"bridge": {"enabled": True}})
    try:
        Planner(m).plan()
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "has no host" in str(e)


def test_batch_detects_cycles():
    a = Task("a", "service", "core-1", Phase.APPLICATIONS, depends_on=("b",))
    b = Task("b", "service", "core-1", Phase.APPLICATIONS, depends_on=("a",))
    try:
        batch([a, b])
        assert False, "expected CyclicDependencyError"
    except CyclicDependencyError as e:
        assert "a, b" in str(e)


def test_empty_manifest_gives_empty_plan():
    plan = Planner(Manifest()).plan()
    assert plan.empty
    assert plan.describe() == "Nothing to provision."
