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

from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

from vm_orchestrator.cli import main
from vm_orchestrator.cli.main import app
from vm_orchestrator.core import probes
from vm_orchestrator.exceptions import GlobalTimeoutError, ResourceNotFoundError, WaitCancelledError
from vm_orchestrator.platform.protocols import VmState
from vm_orchestrator.platform.readiness import Ready

runner = CliRunner()


@pytest.fixture
def orchestrator(mocker):
    """Patch VmOrchestrator in the CLI module and hand back the instance mock."""
    instance = mocker.MagicMock()
    instance.target = SimpleNamespace(address="127.0.0.1:2222")
    cls = mocker.patch.object(main, "VmOrchestrator", return_value=instance)
    instance.cls = cls
    return instance


def test_cli_version(monkeypatch):
    monkeypatch.setattr("vm_orchestrator.cli.main.get_version", lambda: "1.2.3")

    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "vm-orchestrator CLI Version: " in result.stdout
    assert "1.2.3" in result.stdout


def test_cli_version_short(monkeypatch):
    monkeypatch.setattr("vm_orchestrator.cli.main.get_version", lambda: "1.2.3")

    result = runner.invoke(app, ["version", "--short"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "1.2.3"


def test_connect_passes_overrides_and_exits_with_session_code(orchestrator):
    orchestrator.connect.return_value = 0

    result = runner.invoke(app, ["connect", "--vm", "debian-12", "--timeout", "45", "--no-auto-shutdown"])

    assert result.exit_code == 0, result.output
    settings = orchestrator.cls.call_args.args[0]
    assert settings.vm_name == "debian-12"
    assert settings.max_startup_wait == 45
    assert settings.auto_shutdown is False
    orchestrator.connect.assert_called_once()


def test_connect_reads_yaml_config(orchestrator, tmp_path):
    orchestrator.connect.return_value = 5
    config = tmp_path / "vm.yaml"
    config.write_text("vm_name: from-yaml\nssh_port: 2200\nterminal_emulator: xterm\n")

    result = runner.invoke(app, ["connect", "-c", str(config)])

    assert result.exit_code == 5
    settings = orchestrator.cls.call_args.args[0]
    assert (settings.vm_name, settings.ssh_port, settings.terminal_emulator) == ("from-yaml", 2200, "xterm")
    assert settings.auto_shutdown is True


def test_connect_fatal_error_exits_1(orchestrator):
    orchestrator.connect.side_effect = ResourceNotFoundError("ghost", ["ubuntu-server"])

    result = runner.invoke(app, ["connect"])

    assert result.exit_code == 1


def test_connect_cancelled_exits_130(orchestrator):
    orchestrator.connect.side_effect = WaitCancelledError("Wait cancelled after 0.5s")

    result = runner.invoke(app, ["connect"])

    assert result.exit_code == 130


def test_invalid_config_exits_2(orchestrator, tmp_path):
    config = tmp_path / "bad.yaml"
    config.write_text("ssh_port: 0\n")

    result = runner.invoke(app, ["connect", "-c", str(config)])

    assert result.exit_code == 2
    orchestrator.cls.assert_not_called()


def test_wait_reports_ready(orchestrator):
    orchestrator.prepare.return_value = Ready(elapsed=12.34)

    result = runner.invoke(app, ["wait", "--vm", "ubuntu-server"])

    assert result.exit_code == 0, result.output
    assert "ubuntu-server ready in 12.3s" in result.stdout


def test_wait_reports_degraded(orchestrator):
    orchestrator.prepare.return_value = Ready(elapsed=40.0, degraded=("port",))

    result = runner.invoke(app, ["wait"])

    assert result.exit_code == 0
    assert "degraded: port" in result.stdout


def test_wait_timeout_exits_1(orchestrator):
    orchestrator.prepare.side_effect = GlobalTimeoutError(120, "banner")

    result = runner.invoke(app, ["wait"])

    assert result.exit_code == 1


def test_stop_force(orchestrator):
    result = runner.invoke(app, ["stop", "--force"])

    assert result.exit_code == 0
    orchestrator.shutdown.assert_called_once_with(force=True)
    assert "powered off" in result.stdout


def test_stop_graceful(orchestrator):
    result = runner.invoke(app, ["stop"])

    assert result.exit_code == 0
    orchestrator.shutdown.assert_called_once_with(force=False)


def test_status_renders_state(orchestrator, monkeypatch):
    orchestrator.controller.get_state.return_value = VmState.RUNNING
    monkeypatch.setattr(main, "try_connect", lambda host, port, timeout: True)

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "ubuntu-server | VIRTUALBOX" in result.stdout
    assert "running" in result.stdout
    assert "open" in result.stdout


def test_wait_http_success(mocker):
    mocker.patch.object(
        main,
        "http_probe",
        side_effect=lambda url, **kw: probes.http_probe(url, status=lambda u, timeout: 200, **kw),
    )

    result = runner.invoke(app, ["wait-http", "http://localhost:8080", "--timeout", "5"])

    assert result.exit_code == 0, result.output
    assert "http://localhost:8080 is up" in result.stdout


def test_wait_http_timeout(mocker):
    mocker.patch.object(
        main,
        "http_probe",
        side_effect=lambda url, **kw: probes.http_probe(url, status=lambda u, timeout: 503, **kw),
    )

    result = runner.invoke(app, ["wait-http", "http://localhost:8080", "-t", "0.3", "-i", "0.1"])

    assert result.exit_code == 1
