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

import subprocess

import pytest

from vm_orchestrator.backends.virtualbox import VirtualBoxController
from vm_orchestrator.exceptions import ControllerError, DependencyMissingError, ResourceNotFoundError
from vm_orchestrator.platform.protocols import ResourceController, VmState

SHOWVMINFO = """\
name="ubuntu-server"
groups="/"
ostype="Ubuntu (64-bit)"
UUID="0b4f7a55-8f3c-4c1e-9d4e-2a1b3c4d5e6f"
VMState="{state}"
VMStateChangeTime="2025-05-01T10:00:00.000000000"
"""

LIST_VMS = """\
"ubuntu-server" {0b4f7a55-8f3c-4c1e-9d4e-2a1b3c4d5e6f}
"win 11 dev" {11111111-2222-3333-4444-555555555555}
"""

LSMOD_HEADER = "Module                  Size  Used by\n"


class FakeRun:
    """Scripted stand-in for subprocess.run keyed on the first args."""

    def __init__(self, responses=None, missing=()):
        self.responses = responses or {}
        self.missing = set(missing)
        self.calls = []

    def __call__(self, argv, capture_output=True, text=True, check=False):
        self.calls.append(list(argv))
        if argv[0] in self.missing:
            raise FileNotFoundError(argv[0])
        for key, (rc, out, err) in self.responses.items():
            if tuple(argv[: len(key)]) == key:
                return subprocess.CompletedProcess(argv, rc, out, err)
        return subprocess.CompletedProcess(argv, 0, "", "")


def test_controller_satisfies_protocol():
    assert isinstance(VirtualBoxController(), ResourceController)


def test_list_vms_parses_names_with_spaces():
    run = FakeRun({("VBoxManage", "list", "vms"): (0, LIST_VMS, "")})
    ctrl = VirtualBoxController(run=run)

    vms = ctrl.list_vms()

    assert vms == {
        "ubuntu-server": "0b4f7a55-8f3c-4c1e-9d4e-2a1b3c4d5e6f",
        "win 11 dev": "11111111-2222-3333-4444-555555555555",
    }
    assert ctrl.exists("win 11 dev")
    assert not ctrl.exists("ubuntu")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("running", VmState.RUNNING),
        ("poweroff", VmState.POWEROFF),
        ("saved", VmState.SAVED),
        ("gurumeditation", VmState.GURU_MEDITATION),
        ("somethingnew", VmState.UNKNOWN),
    ],
)
def test_get_state_parses_machinereadable(raw, expected):
    run = FakeRun({("VBoxManage", "showvminfo"): (0, SHOWVMINFO.format(state=raw), "")})
    ctrl = VirtualBoxController(run=run)

    assert ctrl.get_state("ubuntu-server") is expected
    assert run.calls == [["VBoxManage", "showvminfo", "ubuntu-server", "--machinereadable"]]


def test_get_state_unknown_vm_raises():
    err = "VBoxManage: error: Could not find a registered machine named 'nope'"
    run = FakeRun({("VBoxManage", "showvminfo"): (1, "", err)})

    with pytest.raises(ResourceNotFoundError, match="VM 'nope' not found"):
        VirtualBoxController(run=run).get_state("nope")


def test_start_headless_and_failure():
    run = FakeRun()
    ctrl = VirtualBoxController("/opt/vbox/VBoxManage", run=run)
    ctrl.start("ubuntu-server")
    assert run.calls[-1] == ["/opt/vbox/VBoxManage", "startvm", "ubuntu-server", "--type", "headless"]

    run.responses[("/opt/vbox/VBoxManage", "startvm")] = (1, "", "VERR_VMX_NO_VMX")
    with pytest.raises(ControllerError, match="VERR_VMX_NO_VMX"):
        ctrl.start("ubuntu-server")


def test_shutdown_commands():
    run = FakeRun()
    ctrl = VirtualBoxController(run=run)

    ctrl.send_shutdown_signal("ubuntu-server")
    ctrl.power_off("ubuntu-server")

    assert run.calls == [
        ["VBoxManage", "controlvm", "ubuntu-server", "acpipowerbutton"],
        ["VBoxManage", "controlvm", "ubuntu-server", "poweroff"],
    ]


def test_shutdown_failure_raises():
    run = FakeRun({("VBoxManage", "controlvm"): (1, "", "is not currently running")})
    with pytest.raises(ControllerError, match="not currently running"):
        VirtualBoxController(run=run).send_shutdown_signal("ubuntu-server")


def test_missing_vboxmanage_is_a_dependency_error():
    run = FakeRun(missing={"VBoxManage"})
    with pytest.raises(DependencyMissingError, match="VBoxManage"):
        VirtualBoxController(run=run).list_vms()


# ---------- Kernel modules ----------


def test_kernel_modules_already_loaded():
    lsmod = LSMOD_HEADER + "vboxnetadp 28672 0\nvboxdrv 696320 2 vboxnetadp\n"
    run = FakeRun({("lsmod",): (0, lsmod, "")})

    VirtualBoxController(run=run, platform="linux").ensure_kernel_modules()

    assert run.calls == [["lsmod"]]


def test_kernel_modules_loaded_with_modprobe():
    run = FakeRun({("lsmod",): (0, LSMOD_HEADER, "")})

    VirtualBoxController(run=run, platform="linux").ensure_kernel_modules()

    assert run.calls[1] == ["sudo", "modprobe", "-a", "vboxdrv", "vboxnetflt", "vboxnetadp"]
    assert len(run.calls) == 2


def test_kernel_modules_fall_back_to_vboxconfig():
    run = FakeRun(
        {
            ("lsmod",): (0, LSMOD_HEADER, ""),
            ("sudo", "modprobe"): (1, "", "Module vboxdrv not found"),
        }
    )

    VirtualBoxController(run=run, platform="linux").ensure_kernel_modules()

    assert run.calls[-1] == ["sudo", "/sbin/vboxconfig"]


def test_kernel_modules_unrecoverable():
    run = FakeRun(
        {
            ("lsmod",): (0, LSMOD_HEADER, ""),
            ("sudo", "modprobe"): (1, "", ""),
            ("sudo", "/sbin/vboxconfig"): (1, "", ""),
        }
    )

    with pytest.raises(DependencyMissingError, match="vboxdrv"):
        VirtualBoxController(run=run, platform="linux").ensure_kernel_modules()


def test_kernel_modules_skipped_off_linux():
    run = FakeRun()
    VirtualBoxController(run=run, platform="darwin").ensure_kernel_modules()
    assert run.calls == []
