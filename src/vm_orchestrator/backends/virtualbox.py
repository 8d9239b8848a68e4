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

import re
import subprocess
import sys
from typing import Callable

from vm_orchestrator.exceptions import ControllerError, DependencyMissingError, ResourceNotFoundError
from vm_orchestrator.helpers.logger import setup_logger
from vm_orchestrator.platform.protocols import VmState

logger = setup_logger(__name__)

KERNEL_MODULES = ("vboxdrv", "vboxnetflt", "vboxnetadp")

_LIST_VMS_RE = re.compile(r'^"(?P<name>.*)"\s+\{(?P<uuid>[0-9a-fA-F-]+)\}\s*$')
_VMSTATE_RE = re.compile(r'^VMState="(?P<state>[^"]*)"', re.IGNORECASE | re.MULTILINE)


class VirtualBoxController:
    """Resource controller backed by the ``VBoxManage`` CLI."""

    def __init__(
        self,
        vboxmanage: str = "VBoxManage",
        *,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        platform: str = sys.platform,
    ):
        self.vboxmanage = vboxmanage
        self._run = run
        self._platform = platform

    def _vbox(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return self._run(
                [self.vboxmanage, *args],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise DependencyMissingError(self.vboxmanage) from e

    def list_vms(self) -> dict[str, str]:
        """Registered VMs as ``{name: uuid}``."""
        proc = self._vbox("list", "vms")
        if proc.returncode != 0:
            raise ControllerError(f"VBoxManage list vms failed: {proc.stderr.strip()}")
        vms: dict[str, str] = {}
        for line in proc.stdout.splitlines():
            m = _LIST_VMS_RE.match(line.strip())
            if m:
                vms[m.group("name")] = m.group("uuid")
        return vms

    def exists(self, name: str) -> bool:
        return name in self.list_vms()

    def get_state(self, name: str) -> VmState:
        proc = self._vbox("showvminfo", name, "--machinereadable")
        if proc.returncode != 0:
            raise ResourceNotFoundError(name)
        m = _VMSTATE_RE.search(proc.stdout)
        state = VmState.parse(m.group("state") if m else None)
        logger.debug(f"VM '{name}' state: {state.value}")
        return state

    def start(self, name: str, *, headless: bool = True) -> None:
        args = ["startvm", name]
        if headless:
            args += ["--type", "headless"]
        proc = self._vbox(*args)
        if proc.returncode != 0:
            raise ControllerError(f"Failed to start VM '{name}': {proc.stderr.strip()}")

    def send_shutdown_signal(self, name: str) -> None:
        """Press the virtual ACPI power button; the guest shuts down on its own."""
        proc = self._vbox("controlvm", name, "acpipowerbutton")
        if proc.returncode != 0:
            raise ControllerError(f"Failed to send ACPI shutdown to '{name}': {proc.stderr.strip()}")

    def power_off(self, name: str) -> None:
        proc = self._vbox("controlvm", name, "poweroff")
        if proc.returncode != 0:
            raise ControllerError(f"Failed to power off '{name}': {proc.stderr.strip()}")

    def ensure_kernel_modules(self) -> None:
        """Make sure the VirtualBox host modules are loaded (Linux only)."""
        if not self._platform.startswith("linux"):
            return

        lsmod = self._host("lsmod")
        if lsmod is None:
            logger.warning("lsmod not available - skipping kernel module check")
            return

        loaded = {line.split()[0] for line in lsmod.stdout.splitlines()[1:] if line.strip()}
        if "vboxdrv" in loaded:
            logger.info("✓ VirtualBox modules active")
            return

        logger.info("→ Loading VirtualBox kernel modules...")
        modprobe = self._host("sudo", "modprobe", "-a", *KERNEL_MODULES)
        if modprobe is None or modprobe.returncode != 0:
            logger.warning("modprobe failed - attempting vboxconfig")
            vboxconfig = self._host("sudo", "/sbin/vboxconfig")
            if vboxconfig is None or vboxconfig.returncode != 0:
                raise DependencyMissingError("vboxdrv", "failed to initialize VirtualBox kernel modules")
        logger.info("✓ VirtualBox modules active")

    def _host(self, *argv: str) -> subprocess.CompletedProcess | None:
        try:
            return self._run(list(argv), capture_output=True, text=True, check=False)
        except FileNotFoundError:
            return None
