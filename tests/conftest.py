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

import os

import pytest


class FakeClock:
    """Deterministic monotonic clock; ``sleep`` just advances time."""

    def __init__(self, t0: float = 0.0):
        self.t = t0
        self.sleep_calls = 0
        self.last_slept = []

    def now(self) -> float:
        return self.t

    def sleep(self, dt: float) -> None:
        self.sleep_calls += 1
        self.last_slept.append(dt)
        self.t += dt


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep host VM_ORCH_* variables, .env files and the real log file out of tests."""
    for key in list(os.environ):
        if key.startswith("VM_ORCH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("VM_ORCH_LOG_FILE", "")
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
