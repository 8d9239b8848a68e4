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

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class VmState(str, Enum):
    """Normalized VirtualBox machine states (``VMState`` in ``showvminfo``)."""

    RUNNING = "running"
    POWEROFF = "poweroff"
    ABORTED = "aborted"
    SAVED = "saved"
    PAUSED = "paused"
    STARTING = "starting"
    STOPPING = "stopping"
    SAVING = "saving"
    RESTORING = "restoring"
    TELEPORTING = "teleporting"
    GURU_MEDITATION = "gurumeditation"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "VmState":
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.UNKNOWN


# States from which `startvm` is expected to work.
STARTABLE_STATES = frozenset({VmState.POWEROFF, VmState.ABORTED, VmState.SAVED})


class ProbeStatus(str, Enum):
    """Result of a single poll attempt."""

    READY = "READY"
    NOT_YET = "NOT_YET"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ProbeOutcome:
    status: ProbeStatus
    detail: str | None = None

    @classmethod
    def ready(cls, detail: str | None = None) -> "ProbeOutcome":
        return cls(ProbeStatus.READY, detail)

    @classmethod
    def not_yet(cls, detail: str | None = None) -> "ProbeOutcome":
        return cls(ProbeStatus.NOT_YET, detail)

    @classmethod
    def error(cls, detail: str | None = None) -> "ProbeOutcome":
        return cls(ProbeStatus.ERROR, detail)


@dataclass(frozen=True)
class VmTarget:
    """Opaque handle for the machine being awaited.

    Attributes
    ----------
    name: str
        VirtualBox VM name.
    host: str
        Host the guest SSH port is forwarded to.
    port: int
        Forwarded SSH port on ``host``.
    """

    name: str
    host: str
    port: int

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@runtime_checkable
class ResourceController(Protocol):
    """Query and control the lifecycle of a virtual machine."""

    def get_state(self, name: str) -> VmState: ...

    def start(self, name: str) -> None: ...

    def send_shutdown_signal(self, name: str) -> None: ...


@runtime_checkable
class SessionLauncher(Protocol):
    """Open an interactive session against a ready endpoint and block until it ends."""

    def launch(self, *, user: str, host: str, port: int, title: str | None = None) -> int: ...
