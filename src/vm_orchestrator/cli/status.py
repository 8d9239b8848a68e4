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

from __future__ import annotations

import os

from rich.box import HEAVY
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from vm_orchestrator.platform.protocols import VmState

_STATE_GLYPH = {
    VmState.RUNNING: "●",
    VmState.STARTING: "◔",
    VmState.RESTORING: "◔",
    VmState.PAUSED: "‖",
    VmState.SAVED: "■",
    VmState.POWEROFF: "■",
    VmState.ABORTED: "✖",
    VmState.GURU_MEDITATION: "✖",
}

# Optional ASCII fallback (set VM_ORCH_ASCII=1 to enable)
_ASCII_GLYPH = {
    VmState.RUNNING: "*",
    VmState.STARTING: "~",
    VmState.RESTORING: "~",
    VmState.PAUSED: "=",
    VmState.SAVED: "#",
    VmState.POWEROFF: "#",
    VmState.ABORTED: "x",
    VmState.GURU_MEDITATION: "x",
}

STATE_STYLE = {
    VmState.RUNNING: "bold white on green3",
    VmState.STARTING: "bold black on yellow3",
    VmState.RESTORING: "bold black on yellow3",
    VmState.PAUSED: "bold black on khaki1",
    VmState.SAVED: "bold white on grey39",
    VmState.POWEROFF: "bold white on grey39",
    VmState.ABORTED: "bold white on red3",
    VmState.GURU_MEDITATION: "bold white on red3",
}
_DEFAULT_STYLE = "bold white on grey23"


def state_glyph(state: VmState) -> str:
    if os.getenv("VM_ORCH_ASCII", "").strip() == "1":
        return _ASCII_GLYPH.get(state, "?")
    return _STATE_GLYPH.get(state, "?")


def state_badge(state: VmState) -> Text:
    t = Text(f"{state_glyph(state)} {state.value}")
    t.stylize(STATE_STYLE.get(state, _DEFAULT_STYLE))
    return t


def render_vm_status(
    name: str,
    state: VmState,
    address: str,
    port_open: bool | None,
    *,
    console: Console | None = None,
) -> None:
    """Print a panel with the VM lifecycle state and SSH endpoint reachability."""
    console = console or Console()

    info = Table.grid(padding=(0, 2))
    info.add_column(style="bold dim", justify="right")
    info.add_column()
    info.add_row("State", state_badge(state))
    info.add_row("SSH", Text(address))
    if port_open is not None:
        port_txt = Text("open" if port_open else "closed")
        port_txt.stylize("bold green" if port_open else "bold yellow")
        info.add_row("Port", port_txt)

    console.print(
        Panel(
            info,
            title=f"[b cyan]{name}[/] | [magenta]VIRTUALBOX[/]",
            border_style="cyan",
            padding=(1, 2),
            box=HEAVY,
            expand=True,
        )
    )
