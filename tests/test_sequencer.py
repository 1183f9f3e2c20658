import itertools

import pytest

from verity_builder.boot import BootSequencer, BootStage, DiscoveryState, Stage1Discovery, Stage2Executor
from verity_builder.build_config import BuildSettings
from verity_builder.features import build_manifest, resolve_features
from verity_builder.initgen import build_init_script
from verity_builder.initgen.stage1 import MEDIA_MOUNT, NEWROOT, ROOT_IMAGE_NAME


class Halted(Exception):
    pass


class HandedOff(Exception):
    pass


class FakeHost:
    def __init__(self, devices=(), signed=(), *, appear_after=0, failing=()):
        self.devices = list(devices)
        self.signed = set(signed)
        self.appear_after = appear_after
        self.failing = tuple(failing)
        self.mounted = {}
        self.scans = 0
        self.sleeps = []
        self.events = []

    def list_block_devices(self):
        self.scans += 1
        return list(self.devices) if self.scans > self.appear_after else []

    def mount(self, source, target, *, fstype=None, loop=False):
        assert target not in self.mounted, f"{target} mounted twice"
        self.mounted[target] = source
        self.events.append(("mount", source, target))
        return True

    def unmount(self, target):
        self.events.append(("umount", self.mounted.pop(target), target))

    def exists(self, path):
        return path == f"{MEDIA_MOUNT}/{ROOT_IMAGE_NAME}" and self.mounted.get(MEDIA_MOUNT) in self.signed

    def sleep(self, seconds):
        self.sleeps.append(seconds)

    def switch_root(self, new_root):
        self.events.append(("switch_root", new_root))

    def run_shell(self, command):
        self.events.append(("run", command))
        return 1 if any(f in command for f in self.failing) else 0

    def spawn(self, command):
        self.events.append(("spawn", command))

    def exec_replace(self, command):
        self.events.append(("exec", command))
        raise HandedOff(command)

    def halt(self, reason):
        raise Halted(reason)


def make_script(**flags):
    return build_init_script(build_manifest(resolve_features(flags)), BuildSettings())


@pytest.mark.parametrize("count", [1, 2, 3, 4])
def test_scan_mounts_only_the_signed_device_in_any_order(count):
    names = [f"/dev/sd{chr(ord('a') + i)}" for i in range(count)]
    for signed in names:
        for order in itertools.permutations(names):
            host = FakeHost(order, {signed})
            stage1 = Stage1Discovery(host, attempts=3, delay=1)
            assert stage1.run() == signed
            assert stage1.state is DiscoveryState.MOUNTED
            assert host.mounted == {MEDIA_MOUNT: signed, NEWROOT: f"{MEDIA_MOUNT}/{ROOT_IMAGE_NAME}"}
            # every wrong candidate was released again
            tried = [e[1] for e in host.events if e[0] == "mount" and e[2] == MEDIA_MOUNT]
            released = [e[1] for e in host.events if e[0] == "umount"]
            assert tried[-1] == signed
            assert released == tried[:-1]
            assert host.events[-1] == ("switch_root", NEWROOT)


def test_scan_exhaustion_halts_after_bounded_attempts():
    host = FakeHost(["/dev/sda", "/dev/sr0"], signed=())
    stage1 = Stage1Discovery(host, attempts=4, delay=2)
    with pytest.raises(Halted, match="after 4 scans"):
        stage1.run()
    assert stage1.state is DiscoveryState.FAILED
    assert host.scans == 4
    assert host.sleeps == [2, 2, 2]
    assert host.mounted == {}


def test_scan_waits_for_late_enumeration():
    host = FakeHost(["/dev/sr0"], {"/dev/sr0"}, appear_after=2)
    stage1 = Stage1Discovery(host, attempts=5, delay=1)
    assert stage1.run() == "/dev/sr0"
    assert stage1.scans == 3
    assert host.sleeps == [1, 1]


def test_stage2_fail_open_steps_continue():
    host = FakeHost(failing=("udhcpc", "sysctl"))
    executor = Stage2Executor(host)
    with pytest.raises(HandedOff):
        executor.run(make_script())
    assert executor.failures == ["dhcp on eth0", "apply sysctl hardening"]
    assert host.events[-1] == ("exec", "nginx -g 'daemon off;'")


def test_stage2_fail_closed_step_halts_before_handoff():
    host = FakeHost(failing=("remount,ro",))
    with pytest.raises(Halted, match="remount root read-only"):
        Stage2Executor(host).run(make_script())
    assert not any(e[0] == "exec" for e in host.events)


def test_stage2_starts_services_in_component_order():
    host = FakeHost(failing=("pg_isready",))
    with pytest.raises(HandedOff):
        Stage2Executor(host).run(make_script(discovery=True, runtime=True, database=True))
    spawned = [e[1] for e in host.events if e[0] == "spawn"]
    assert [s.split()[0] for s in spawned] == ["avahi-daemon", "node", "su"]
    assert "pg_ctl start" in spawned[2]
    # readiness loop failure is best effort, boot still hands off
    assert host.events[-1][0] == "exec"


def test_sequencer_walks_all_stages_forward():
    host = FakeHost(["/dev/vda", "/dev/sr0"], {"/dev/sr0"})
    seq = BootSequencer(host, BuildSettings(), make_script(runtime=True))
    with pytest.raises(HandedOff):
        seq.boot()
    assert seq.history == [BootStage.STAGE1_DISCOVERY, BootStage.STAGE2_INIT, BootStage.SERVICE_HANDOFF]
    assert seq.stage is BootStage.SERVICE_HANDOFF
    switch = host.events.index(("switch_root", NEWROOT))
    first_run = next(i for i, e in enumerate(host.events) if e[0] == "run")
    assert switch < first_run


def test_sequencer_stays_in_stage1_when_discovery_fails():
    host = FakeHost([], ())
    seq = BootSequencer(host, BuildSettings({"scan_attempts": 2}), make_script())
    with pytest.raises(Halted):
        seq.boot()
    assert seq.history == [BootStage.STAGE1_DISCOVERY]


def test_sequencer_rejects_backward_transition():
    seq = BootSequencer(FakeHost(), BuildSettings(), make_script())
    with pytest.raises(RuntimeError):
        seq._advance(BootStage.SERVICE_HANDOFF)
