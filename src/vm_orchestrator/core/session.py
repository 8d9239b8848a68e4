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

import shlex
import subprocess
from typing import Callable

from vm_orchestrator.helpers.logger import setup_logger

logger = setup_logger(__name__)

SSH_OPTIONS = (
    "-o",
    "ConnectTimeout=15",
    "-o",
    "StrictHostKeyChecking=accept-new",
    "-o",
    "ServerAliveInterval=30",
)


class SshSessionLauncher:
    """Run an interactive ``ssh`` session, optionally inside a terminal emulator.

    The terminal emulator must stay in the foreground until the session ends
    (``xterm``, ``xfce4-terminal --disable-server``, ...) for auto-shutdown to
    fire at the right time.
    """

    def __init__(
        self,
        ssh: str = "ssh",
        terminal_emulator: str | None = None,
        *,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.ssh = ssh
        self.terminal_emulator = terminal_emulator
        self._run = run

    def build_command(self, *, user: str, host: str, port: int, title: str | None = None) -> list[str]:
        ssh_cmd = [self.ssh, *SSH_OPTIONS, "-p", str(port), f"{user}@{host}"]
        if not self.terminal_emulator:
            return ssh_cmd

        term = shlex.split(self.terminal_emulator)
        if title:
            term.append(f"--title={title}")
        return [*term, "-e", shlex.join(ssh_cmd)]

    def launch(self, *, user: str, host: str, port: int, title: str | None = None) -> int:
        cmd = self.build_command(user=user, host=host, port=port, title=title)
        logger.info(f"→ Connecting to {user}@{host}:{port}...")
        logger.debug(f"Session command: {shlex.join(cmd)}")
        proc = self._run(cmd, check=False)
        logger.info(f"✓ Session ended (exit code {proc.returncode})")
        return proc.returncode
