# Copyright 2025 iGenius S.p.A
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
import shlex
import shutil
from typing import Callable

from vm_orchestrator.backends.virtualbox import VirtualBoxController
from vm_orchestrator.config.settings import Settings
from vm_orchestrator.core.probes import ssh_probe_plan
from vm_orchestrator.core.session import SshSessionLauncher
from vm_orchestrator.exceptions import (
    ControllerError,
    DependencyMissingError,
    GlobalTimeoutError,
    ProbeTimeoutError,
    ReadinessFailedError,
    ResourceNotFoundError,
    UnexpectedStateError,
    VmOrchestratorError,
    WaitCancelledError,
)
from vm_orchestrator.helpers.logger import setup_logger
from vm_orchestrator.platform.protocols import STARTABLE_STATES, VmState, VmTarget
from vm_orchestrator.platform.readiness import (
    CancellationToken,
    Failed,
    Ready,
    ReadinessWaiter,
    TimedOut,
    WaitResult,
)
from vm_orchestrator.platform.tcp_probe import try_connect

logger = setup_logger(__name__)


def raise_for_result(result: WaitResult, timeout_s: float) -> Ready:
    """Return ``result`` if it is Ready, otherwise raise the matching error."""
    if isinstance(result, Ready):
        return result
    if isinstance(result, TimedOut):
        detail = result.last_outcome.detail if result.last_outcome else None
        if result.scope == "probe":
            raise ProbeTimeoutError(result.probe, result.elapsed, detail)
        raise GlobalTimeoutError(timeout_s, result.probe, detail)
    if isinstance(result, Failed):
        if result.cancelled:
            raise WaitCancelledError(f"Wait cancelled after {result.elapsed:.1f}s")
        raise ReadinessFailedError(result.reason)
    raise TypeError(f"Unknown wait result: {result!r}")


class VmOrchestrator:
    """Boot a VM, wait until SSH is really usable, open a session, power off afterwards."""

    def __init__(
        self,
        settings: Settings,
        *,
        controller: VirtualBoxController | None = None,
        launcher: SshSessionLauncher | None = None,
        waiter: ReadinessWaiter | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self.settings = settings
        self.controller = controller or VirtualBoxController(settings.vboxmanage)
        self.launcher = launcher or SshSessionLauncher(terminal_emulator=settings.terminal_emulator)
        self.waiter = waiter or ReadinessWaiter(attempt_timeout_s=settings.attempt_timeout)
        self._which = which

    @property
    def target(self) -> VmTarget:
        return VmTarget(
            name=self.settings.vm_name,
            host=self.settings.ssh_host,
            port=self.settings.ssh_port,
        )

    # ---- Validation ----------------------------------------------------------
    def validate_dependencies(self) -> None:
        deps = [self.settings.vboxmanage, self.launcher.ssh]
        if self.settings.terminal_emulator:
            deps.append(shlex.split(self.settings.terminal_emulator)[0])
        for cmd in deps:
            if self._which(cmd) is None:
                raise DependencyMissingError(cmd)
        logger.info("✓ All dependencies validated")

    def ensure_kernel_modules(self) -> None:
        if self.settings.load_kernel_modules:
            self.controller.ensure_kernel_modules()

    def verify_vm_exists(self) -> None:
        name = self.settings.vm_name
        vms = self.controller.list_vms()
        if name not in vms:
            raise ResourceNotFoundError(name, sorted(vms))
        logger.info(f"✓ VM '{name}' exists")

    # ---- Lifecycle -----------------------------------------------------------
    def start_if_needed(self) -> bool:
        """Start the VM unless it already runs. Returns True if a start was issued."""
        name = self.settings.vm_name
        state = self.controller.get_state(name)
        if state is VmState.RUNNING:
            logger.info(f"→ VM already running (state: {state.value})")
            return False
        if state in STARTABLE_STATES:
            logger.info(f"→ Starting VM '{name}' in headless mode (state was: {state.value})...")
            self.controller.start(name)
            return True
        raise UnexpectedStateError(name, state.value)

    def wait_ready(self, cancel_token: CancellationToken | None = None) -> Ready:
        s = self.settings
        logger.info(f"→ Waiting for SSH service readiness on {self.target.address} (max {s.max_startup_wait:g}s)...")
        probes = ssh_probe_plan(s, self.controller)
        result = self.waiter.wait(self.target, probes, s.max_startup_wait, cancel_token=cancel_token)
        if isinstance(result, TimedOut):
            self._log_diagnostics()
        ready = raise_for_result(result, s.max_startup_wait)
        logger.info(f"✓ SSH service ready on {self.target.address} (took {ready.elapsed:.1f}s)")
        return ready

    def shutdown(self, *, force: bool = False) -> None:
        name = self.settings.vm_name
        if force:
            self.controller.power_off(name)
            logger.info(f"✓ VM '{name}' powered off")
        else:
            self.controller.send_shutdown_signal(name)
            logger.info(f"✓ Graceful shutdown requested for VM '{name}'")

    # ---- Workflow ------------------------------------------------------------
    def prepare(self, cancel_token: CancellationToken | None = None) -> Ready:
        """Everything up to a verified-ready SSH endpoint."""
        self.validate_dependencies()
        self.ensure_kernel_modules()
        self.verify_vm_exists()
        self.start_if_needed()
        return self.wait_ready(cancel_token)

    def connect(self, cancel_token: CancellationToken | None = None) -> int:
        """Run the whole workflow and return the session's exit code."""
        s = self.settings
        logger.info(f"Config: VM={s.vm_name} | User={s.ssh_user} | Host={s.ssh_host}:{s.ssh_port}")
        logger.info(f"        AutoShutdown={s.auto_shutdown} | Timeout={s.max_startup_wait:g}s")

        self.prepare(cancel_token)
        if cancel_token is not None and cancel_token.cancelled:
            raise WaitCancelledError("Cancelled before the session was opened")

        if s.auto_shutdown:
            logger.info("→ Auto-shutdown ENABLED (VM will power off after SSH exit)")
        else:
            logger.info("→ Auto-shutdown DISABLED (VM will remain running after SSH exit)")

        code = self.launcher.launch(
            user=s.ssh_user,
            host=s.ssh_host,
            port=s.ssh_port,
            title=f"SSH: {s.vm_name}",
        )

        if s.auto_shutdown:
            try:
                self.shutdown()
            except ControllerError as e:
                logger.warning(f"Auto-shutdown failed: {e}")
        return code

    def _log_diagnostics(self) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        try:
            state = self.controller.get_state(self.settings.vm_name).value
        except VmOrchestratorError as e:
            state = f"unavailable ({e})"
        port = "OPEN" if try_connect(self.settings.ssh_host, self.settings.ssh_port, 2.0) else "CLOSED"
        logger.debug(f"Last VM state: {state}")
        logger.debug(f"Port status: {port}")
