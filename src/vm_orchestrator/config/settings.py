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

import io
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml


class Settings(BaseSettings):
    """
    Centralized environment configuration for vm-orchestrator.

    Env var naming: VM_ORCH_<FIELD_NAME>.
    A .env file in CWD or ~/.vm_orchestrator/.env is read automatically.
    """

    model_config = SettingsConfigDict(
        env_prefix="VM_ORCH_",
        env_file=(".env", "~/.vm_orchestrator/.env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # --- Target --------------------------------------------------------------
    vm_name: str = Field(default="ubuntu-server", min_length=1, description="VirtualBox VM name")
    ssh_user: str = Field(default="test", min_length=1, description="SSH username")
    ssh_host: str = Field(default="127.0.0.1", description="Host the guest SSH port is forwarded to")
    ssh_port: int = Field(default=2222, ge=1, le=65535, description="Host port forwarded to the guest's SSH (22)")

    # --- Session -------------------------------------------------------------
    auto_shutdown: bool = Field(
        default=True,
        description="Send an ACPI shutdown to the VM once the SSH session ends",
    )
    terminal_emulator: str | None = Field(
        default=None,
        description="Open the SSH session in this terminal emulator instead of the current one",
    )

    # --- Readiness -----------------------------------------------------------
    max_startup_wait: float = Field(default=120.0, gt=0, description="Global readiness timeout (seconds)")
    check_interval: float = Field(default=3.0, gt=0, description="Polling interval (seconds)")
    attempt_timeout: float = Field(default=5.0, gt=0, description="Ceiling for a single probe attempt (seconds)")
    port_soft: bool = Field(default=True, description="Port reachability timeout only degrades the result")
    banner_soft: bool = Field(default=False, description="SSH banner timeout only degrades the result")
    strict_banner: bool = Field(default=False, description="Keep polling when the greeting is not an SSH banner")

    # --- Host ----------------------------------------------------------------
    load_kernel_modules: bool = Field(default=True, description="Load vboxdrv & friends if missing")
    vboxmanage: str = Field(default="VBoxManage", description="VBoxManage executable")

    # --- Logging -------------------------------------------------------------
    log_level: str = "INFO"
    log_file: Path | None = Field(
        default=Path("~/vm-orchestrator.log").expanduser(),
        description="Append-only log destination; empty disables file logging",
    )

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return v

    @field_validator("terminal_emulator", "log_file", mode="before")
    @classmethod
    def _empty_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def port_timeout(self) -> float:
        """Ceiling for the port reachability tier: a third of the global budget."""
        return self.max_startup_wait / 3



def load_settings(config_file: io.TextIOBase | None = None, **overrides: Any) -> Settings:
    """Build settings from env, then a YAML file, then explicit overrides (highest wins).

    ``None`` overrides are ignored so unset CLI options fall through.
    """
    data: dict[str, Any] = {}
    if config_file is not None:
        loaded = yaml.safe_load(config_file) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a YAML mapping")
        data.update(loaded)
    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
