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

from collections.abc import Callable, Iterator
from contextlib import contextmanager
import logging
import signal
from typing import Optional, TypeVar

import typer
from rich.console import Console
from typing_extensions import Annotated
import yaml

from ..config.settings import Settings, load_settings
from ..core.orchestrator import VmOrchestrator, raise_for_result
from ..core.probes import http_probe
from ..exceptions import VmOrchestratorError, WaitCancelledError
from ..helpers.logger import configure_root, setup_logger
from ..platform.readiness import CancellationToken, ReadinessWaiter
from ..platform.tcp_probe import try_connect
from ..utils.version import get_version
from .status import render_vm_status

app = typer.Typer(name="vm-orchestrator CLI", no_args_is_help=True)

console = Console()
logger = setup_logger("vm_orchestrator.cli", level=logging.INFO, console=console)

EXIT_FAILURE = 1
EXIT_BAD_CONFIG = 2
EXIT_CANCELLED = 130

T = TypeVar("T")

ConfigOption = Annotated[
    Optional[typer.FileText],
    typer.Option("-c", "--config", help="YAML file overriding VM_ORCH_* environment settings"),
]
VmOption = Annotated[Optional[str], typer.Option("--vm", help="VirtualBox VM name")]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", "-t", help="Global readiness timeout in seconds"),
]


def _settings(config: Optional[typer.FileText], **overrides) -> Settings:
    try:
        s = load_settings(config, **overrides)
    except (ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(code=EXIT_BAD_CONFIG)
    configure_root(s.log_level, s.log_file)
    return s


@contextmanager
def _cancel_on_signals() -> Iterator[CancellationToken]:
    """Turn SIGINT/SIGTERM into a cancelled token for the duration of the block."""
    token = CancellationToken()

    def _handle(signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name} - exiting gracefully")
        token.cancel()

    previous = {sig: signal.signal(sig, _handle) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _run(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except WaitCancelledError as e:
        logger.warning(str(e))
        raise typer.Exit(code=EXIT_CANCELLED)
    except VmOrchestratorError as e:
        logger.error(str(e))
        raise typer.Exit(code=EXIT_FAILURE)


@app.command("version", short_help="Show the version of the vm-orchestrator CLI")
def version(short: bool = False):
    v = get_version()
    print(v if short else f"vm-orchestrator CLI Version: {v}")
    raise typer.Exit()


@app.command("connect", short_help="Start the VM, wait for SSH and open a session")
def connect(
    config: ConfigOption = None,
    vm: VmOption = None,
    timeout: TimeoutOption = None,
    auto_shutdown: Annotated[
        Optional[bool],
        typer.Option(
            "--auto-shutdown/--no-auto-shutdown",
            help="Send an ACPI shutdown once the SSH session ends",
        ),
    ] = None,
    terminal: Annotated[
        Optional[str],
        typer.Option("--terminal", help="Open the session in this terminal emulator"),
    ] = None,
):
    """
    Start the VM if needed, verify SSH readiness (VM state → port → banner),
    open an interactive session and optionally power the VM off afterwards.
    """
    s = _settings(
        config,
        vm_name=vm,
        max_startup_wait=timeout,
        auto_shutdown=auto_shutdown,
        terminal_emulator=terminal,
    )
    orchestrator = VmOrchestrator(s)
    with _cancel_on_signals() as token:
        code = _run(lambda: orchestrator.connect(token))
    raise typer.Exit(code=code)


@app.command("wait", short_help="Start the VM if needed and wait until SSH is ready")
def wait(
    config: ConfigOption = None,
    vm: VmOption = None,
    timeout: TimeoutOption = None,
):
    s = _settings(config, vm_name=vm, max_startup_wait=timeout)
    orchestrator = VmOrchestrator(s)
    with _cancel_on_signals() as token:
        ready = _run(lambda: orchestrator.prepare(token))
    if ready.degraded:
        typer.echo(f"⚠️  {s.vm_name} ready (degraded: {', '.join(ready.degraded)})")
    else:
        typer.echo(f"✅ {s.vm_name} ready in {ready.elapsed:.1f}s")


@app.command("wait-http", short_help="Wait until a URL answers 200 OK")
def wait_http(
    url: Annotated[str, typer.Argument(help="URL to poll, e.g. http://localhost:8080")],
    timeout: Annotated[float, typer.Option("--timeout", "-t", min=0.1, help="Timeout in seconds")] = 60.0,
    interval: Annotated[float, typer.Option("--interval", "-i", min=0.1, help="Polling interval in seconds")] = 3.0,
):
    """Poll a service published by the guest (e.g. a container) until it is up."""
    waiter = ReadinessWaiter()
    probe = http_probe(url, interval_s=interval, timeout_s=timeout)
    with _cancel_on_signals() as token:
        result = waiter.wait(url, [probe], timeout, cancel_token=token)
    _run(lambda: raise_for_result(result, timeout))
    typer.echo(f"✅ {url} is up")


@app.command("status", short_help="Show the VM state and SSH port reachability")
def status(
    config: ConfigOption = None,
    vm: VmOption = None,
):
    s = _settings(config, vm_name=vm)
    orchestrator = VmOrchestrator(s)
    state = _run(lambda: orchestrator.controller.get_state(s.vm_name))
    port_open = try_connect(s.ssh_host, s.ssh_port, 1.0)
    render_vm_status(s.vm_name, state, orchestrator.target.address, port_open, console=console)


@app.command("stop", short_help="Shut down the VM")
def stop(
    config: ConfigOption = None,
    vm: VmOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Power off immediately instead of an ACPI shutdown"),
    ] = False,
):
    s = _settings(config, vm_name=vm)
    orchestrator = VmOrchestrator(s)
    _run(lambda: orchestrator.shutdown(force=force))
    typer.echo("✅ Shutdown request sent." if not force else "✅ VM powered off.")


if __name__ == "__main__":
    app()
