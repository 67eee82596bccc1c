import json

from harbormaster.detect.detector import Detector, Observation, Signal, combine
from harbormaster.errors import DetectionError
from harbormaster.execution.runner import CommandResult, TransportError


class FakeRunner:
    """Answers commands by prefix; anything unmatched exits 1 with no output."""

    def __init__(self, answers=None, broken=False):
        self.answers = answers or {}
        self.broken = broken
        self.commands = []

    def run(self, command, ctx=None):
        self.commands.append(command)
        if self.broken:
            raise TransportError("ssh channel to 10.0.0.1 failed: EOF")
        for prefix, out in self.answers.items():
            if command.startswith(prefix):
                return CommandResult(command=command, stdout=out, exit_code=0)
        return CommandResult(command=command, exit_code=1)


def test_nothing_found_means_not_installed():
    runner = FakeRunner()
    state = Detector(runner).detect("bridge")
    assert not state.exists
    assert not state.running
    assert state.detected_by is None
    # bridge has a catalog port, so port and health probes run too
    assert any(c.startswith("ss -ltnH") for c in runner.commands)
    assert any(c.startswith("curl") and ":18001/health" in c for c in runner.commands)


def test_container_signal_gives_mode_and_image_tag():
    runner = FakeRunner({"docker ps": "running|frameworks/bridge:1.4.2"})
    state = Detector(runner).detect("bridge")
    assert state.exists and state.running
    assert state.mode == "container"
    assert state.version == "1.4.2"
    assert state.detected_by == "container"


def test_inventory_outranks_container_for_version():
    record = {"service": "bridge", "mode": "container", "version": "v1.5.0"}
    runner = FakeRunner({
        "cat ": json.dumps(record),
        "docker ps": "running|frameworks/bridge:1.4.2",
    })
    state = Detector(runner).detect("bridge")
    assert state.version == "v1.5.0"
    assert state.detected_by == "inventory"
    assert state.metadata["signals"] == ["inventory", "container"]


def test_health_endpoint_outranks_everything_but_protocol():
    runner = FakeRunner({
        "cat ": json.dumps({"mode": "native", "version": "1.0.0"}),
        "systemctl show": "LoadState=loaded\nActiveState=inactive",
        "curl": json.dumps({"status": "ok", "version": "1.1.0"}),
    })
    state = Detector(runner).detect("bridge")
    assert state.version == "1.1.0"
    assert state.running
    assert state.mode == "native"
    assert state.detected_by == "health"


def test_supervisor_unit_that_is_not_loaded_is_ignored():
    runner = FakeRunner({"systemctl show": "LoadState=not-found\nActiveState=inactive"})
    assert not Detector(runner).detect("bridge").exists


def test_infrastructure_uses_protocol_probe():
    runner = FakeRunner({
        "systemctl show": "LoadState=loaded\nActiveState=active",
        "redis-cli": "# Server\r\nredis_version:7.2.4\r\nredis_mode:standalone",
    })
    state = Detector(runner).detect("redis-cache", port=6380)
    assert state.exists and state.running
    assert state.version == "7.2.4"
    assert state.detected_by == "protocol"
    assert any("frameworks-redis-cache" in c for c in runner.commands if c.startswith("systemctl"))
    assert any(c.startswith("redis-cli -p 6380") for c in runner.commands)


def test_postgres_uses_distro_unit_name():
    runner = FakeRunner({"systemctl show 'postgresql'": "LoadState=loaded\nActiveState=active"})
    state = Detector(runner).detect("postgres")
    assert state.exists
    assert state.mode == "native"
    assert state.metadata["unit"] == "postgresql"


def test_unreachable_host_is_a_detection_error():
    try:
        Detector(FakeRunner(broken=True)).detect("bridge")
        assert False, "expected DetectionError"
    except DetectionError as e:
        assert "cannot interrogate host for bridge" in str(e)


def test_combine_prefers_higher_signal_on_conflict():
    state = combine([
        Observation(Signal.PORT, exists=True, running=True),
        Observation(Signal.CONTAINER, exists=True, running=False, mode="container", version="1.0.0"),
        Observation(Signal.PROTOCOL, exists=True, running=True, version="16.2"),
    ])
    assert state.running is True
    assert state.version == "16.2"
    assert state.mode == "container"
    assert state.detected_by == "protocol"


def test_combine_with_no_confirmation_is_absent():
    state = combine([Observation(Signal.HEALTH, exists=None, running=None)])
    assert not state.exists
