"""Two-stage boot sequencer.

Stage 1 scans block devices for the medium carrying the root image, mounts
it and switches root. Stage 2 executes the generated init items in order
and ends by replacing itself with the terminal service. The shell programs
rendered by ``initgen`` implement the same algorithm inside the image.
"""
from __future__ import annotations

import enum
import logging
from typing import List, NoReturn, Optional, Protocol, Sequence

from ..build_config import BuildSettings
from ..initgen.fragments import InitScript, Policy, ServiceUnit, Step
from ..initgen.stage1 import MEDIA_MOUNT, NEWROOT, ROOT_IMAGE_NAME

logger = logging.getLogger(__name__)


class BootStage(enum.Enum):
    STAGE1_DISCOVERY = "stage1-discovery"
    STAGE2_INIT = "stage2-init"
    SERVICE_HANDOFF = "service-handoff"


class DiscoveryState(enum.Enum):
    SCANNING = "scanning"
    MOUNTED = "mounted"
    FAILED = "failed"


class BootHost(Protocol):
    def list_block_devices(self) -> Sequence[str]:
        ...

    def mount(self, source: str, target: str, *, fstype: Optional[str] = None, loop: bool = False) -> bool:
        """Mount read-only; return False when the source cannot be mounted."""
        ...

    def unmount(self, target: str) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...

    def sleep(self, seconds: float) -> None:
        ...

    def switch_root(self, new_root: str) -> None:
        ...

    def run_shell(self, command: str) -> int:
        ...

    def spawn(self, command: str) -> None:
        ...

    def exec_replace(self, command: str) -> NoReturn:
        ...

    def halt(self, reason: str) -> NoReturn:
        ...


class Stage1Discovery:
    def __init__(self, host: BootHost, *, attempts: int, delay: float) -> None:
        self.host = host
        self.attempts = attempts
        self.delay = delay
        self.state = DiscoveryState.SCANNING
        self.device: Optional[str] = None
        self.scans = 0

    @classmethod
    def from_settings(cls, host: BootHost, settings: BuildSettings) -> "Stage1Discovery":
        return cls(host, attempts=settings.scan_attempts, delay=settings.scan_delay)

    def _try_device(self, device: str) -> bool:
        if not self.host.mount(device, MEDIA_MOUNT):
            return False
        if self.host.exists(f"{MEDIA_MOUNT}/{ROOT_IMAGE_NAME}"):
            return True
        # wrong candidate: release it before trying the next one
        self.host.unmount(MEDIA_MOUNT)
        return False

    def scan(self) -> Optional[str]:
        """Return the device carrying the root image, or None once every attempt is used."""

        while self.scans < self.attempts:
            self.scans += 1
            for device in self.host.list_block_devices():
                if self._try_device(device):
                    self.device = device
                    return device
            logger.info("Scan %d/%d found no root medium", self.scans, self.attempts)
            if self.scans < self.attempts:
                self.host.sleep(self.delay)
        return None

    def run(self) -> str:
        device = self.scan()
        if device is None:
            self.state = DiscoveryState.FAILED
            self.host.halt(f"no boot medium carrying {ROOT_IMAGE_NAME} after {self.scans} scans")

        if not self.host.mount(f"{MEDIA_MOUNT}/{ROOT_IMAGE_NAME}", NEWROOT, fstype="squashfs", loop=True):
            self.state = DiscoveryState.FAILED
            self.host.halt(f"cannot mount {ROOT_IMAGE_NAME} from {device}")

        self.state = DiscoveryState.MOUNTED
        logger.info("Root medium %s mounted at %s", device, NEWROOT)
        self.host.switch_root(NEWROOT)
        return device


class Stage2Executor:
    def __init__(self, host: BootHost) -> None:
        self.host = host
        self.failures: List[str] = []

    def _fail(self, policy: Policy, description: str) -> None:
        if policy is Policy.FAIL_CLOSED:
            self.host.halt(description)
        logger.warning("%s failed (continuing)", description)
        self.failures.append(description)

    def _run_step(self, step: Step) -> None:
        rc = self.host.run_shell(step.command)
        if rc != 0:
            self._fail(step.policy, step.description)

    def _start_service(self, unit: ServiceUnit) -> None:
        logger.info("Starting %s", unit.name)
        if unit.backgrounded:
            try:
                self.host.spawn(unit.start_command)
            except OSError:
                self._fail(unit.policy, f"start {unit.name}")
        elif self.host.run_shell(unit.start_command) != 0:
            self._fail(unit.policy, f"start {unit.name}")

    def run(self, script: InitScript, *, on_handoff=None) -> NoReturn:
        for item in script.items():
            if isinstance(item, Step):
                self._run_step(item)
            elif item.terminal:
                if on_handoff is not None:
                    on_handoff()
                self.host.exec_replace(item.start_command)
            else:
                self._start_service(item)
        self.host.halt("init script ended without handing off")


class BootSequencer:
    """Drives Stage1Discovery -> Stage2Init -> ServiceHandoff, strictly forward."""

    def __init__(self, host: BootHost, settings: BuildSettings, script: InitScript) -> None:
        self.host = host
        self.settings = settings
        self.script = script
        self.stage = BootStage.STAGE1_DISCOVERY
        self.history: List[BootStage] = [self.stage]

    def _advance(self, to: BootStage) -> None:
        order = list(BootStage)
        if order.index(to) != order.index(self.stage) + 1:
            raise RuntimeError(f"illegal boot transition {self.stage.value} -> {to.value}")
        self.stage = to
        self.history.append(to)

    def boot(self) -> NoReturn:
        Stage1Discovery.from_settings(self.host, self.settings).run()
        self._advance(BootStage.STAGE2_INIT)
        Stage2Executor(self.host).run(self.script, on_handoff=lambda: self._advance(BootStage.SERVICE_HANDOFF))
