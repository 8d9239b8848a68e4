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

from typing import Callable

from vm_orchestrator.config.settings import Settings
from vm_orchestrator.helpers.logger import setup_logger
from vm_orchestrator.platform.http_probe import get_url_status
from vm_orchestrator.platform.protocols import ProbeOutcome, ResourceController, VmState, VmTarget
from vm_orchestrator.platform.readiness import Probe
from vm_orchestrator.platform.tcp_probe import try_connect, try_handshake

logger = setup_logger(__name__)

SSH_BANNER_PREFIX = "SSH-2.0-"

# A VM in one of these states will not reach `running` without help.
VM_DEAD_STATES = frozenset({VmState.ABORTED, VmState.GURU_MEDITATION})


def vm_state_probe(
    controller: ResourceController,
    *,
    interval_s: float,
    timeout_s: float,
    soft: bool = False,
) -> Probe:
    """Tier 1: the VM process has reached the ``running`` lifecycle state."""

    def _check(target: VmTarget) -> ProbeOutcome:
        state = controller.get_state(target.name)
        if state is VmState.RUNNING:
            return ProbeOutcome.ready("state: running")
        if state in VM_DEAD_STATES:
            return ProbeOutcome.error(f"VM '{target.name}' entered state '{state.value}'")
        return ProbeOutcome.not_yet(f"state: {state.value}")

    return Probe(name="vm-state", check=_check, interval_s=interval_s, timeout_s=timeout_s, soft=soft)


def port_probe(
    *,
    interval_s: float,
    timeout_s: float,
    soft: bool = False,
    connect_timeout: float = 1.0,
    connect: Callable[[str, int, float], bool] = try_connect,
) -> Probe:
    """Tier 2: the forwarded port accepts TCP connections."""

    def _check(target: VmTarget) -> ProbeOutcome:
        if connect(target.host, target.port, connect_timeout):
            return ProbeOutcome.ready(f"{target.address} reachable")
        return ProbeOutcome.not_yet(f"{target.address} unreachable")

    return Probe(name="port", check=_check, interval_s=interval_s, timeout_s=timeout_s, soft=soft)


def banner_probe(
    *,
    interval_s: float,
    timeout_s: float,
    soft: bool = False,
    expected_prefix: str = SSH_BANNER_PREFIX,
    strict: bool = False,
    handshake_timeout: float = 5.0,
    handshake: Callable[[str, int, float], str | None] = try_handshake,
) -> Probe:
    """Tier 3: the service greets with the expected banner.

    A greeting that does not start with ``expected_prefix`` keeps polling when
    ``strict``; otherwise it is accepted with a warning, since something is
    answering on the port.
    """

    def _check(target: VmTarget) -> ProbeOutcome:
        banner = handshake(target.host, target.port, handshake_timeout)
        if not banner:
            return ProbeOutcome.not_yet(f"no banner from {target.address}")
        if banner.startswith(expected_prefix):
            return ProbeOutcome.ready(banner)
        if strict:
            return ProbeOutcome.not_yet(f"unexpected response: {banner!r}")
        logger.warning(f"Unexpected response (not an SSH banner): {banner!r} - proceeding anyway")
        return ProbeOutcome.ready(f"unexpected banner: {banner!r}")

    return Probe(name="banner", check=_check, interval_s=interval_s, timeout_s=timeout_s, soft=soft)


def http_probe(
    url: str,
    *,
    interval_s: float,
    timeout_s: float,
    soft: bool = False,
    expected_status: int = 200,
    request_timeout: float = 5.0,
    status: Callable[..., int] = get_url_status,
) -> Probe:
    """An HTTP endpoint answers ``expected_status``. The wait target is ignored."""

    def _check(_target: object) -> ProbeOutcome:
        code = status(url, timeout=request_timeout)
        if code == expected_status:
            return ProbeOutcome.ready(f"{url} → {code}")
        if code < 0:
            return ProbeOutcome.not_yet(f"{url} unreachable")
        return ProbeOutcome.not_yet(f"{url} → {code}")

    return Probe(name="http", check=_check, interval_s=interval_s, timeout_s=timeout_s, soft=soft)


def ssh_probe_plan(
    settings: Settings,
    controller: ResourceController,
    *,
    connect: Callable[[str, int, float], bool] = try_connect,
    handshake: Callable[[str, int, float], str | None] = try_handshake,
) -> list[Probe]:
    """The standard escalation: VM state (hard) → port (soft) → SSH banner (hard).

    Port and banner softness follow ``settings.port_soft`` / ``settings.banner_soft``.
    """
    interval = settings.check_interval
    io_timeout = min(5.0, settings.attempt_timeout)
    return [
        vm_state_probe(controller, interval_s=interval, timeout_s=settings.max_startup_wait),
        port_probe(
            interval_s=interval,
            timeout_s=settings.port_timeout,
            soft=settings.port_soft,
            connect_timeout=min(1.0, io_timeout),
            connect=connect,
        ),
        banner_probe(
            interval_s=interval,
            timeout_s=settings.max_startup_wait,
            soft=settings.banner_soft,
            strict=settings.strict_banner,
            handshake_timeout=io_timeout,
            handshake=handshake,
        ),
    ]
