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

from contextlib import contextmanager
import socket
import threading

from vm_orchestrator.platform.tcp_probe import try_connect, try_handshake


@contextmanager
def fake_server(payload: bytes | None):
    """One-shot TCP server on 127.0.0.1 that optionally greets the client."""
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)
    port = srv.getsockname()[1]
    received = []

    def _serve():
        try:
            conn, _ = srv.accept()
        except OSError:
            return
        with conn:
            if payload is None:
                return
            conn.sendall(payload)
            conn.settimeout(1.0)
            try:
                received.append(conn.recv(64))
            except OSError:
                pass

    t = threading.Thread(target=_serve, daemon=True)
    t.start()
    try:
        yield port, received
    finally:
        srv.close()
        t.join(2)


def _closed_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_try_connect_listening_port():
    with fake_server(None) as (port, _):
        assert try_connect("127.0.0.1", port, timeout=1.0) is True


def test_try_connect_closed_port():
    assert try_connect("127.0.0.1", _closed_port(), timeout=0.5) is False


def test_try_handshake_returns_first_line_without_crlf():
    with fake_server(b"SSH-2.0-OpenSSH_9.6p1 Ubuntu-3ubuntu13\r\nextra") as (port, received):
        banner = try_handshake("127.0.0.1", port, timeout=1.0)

    assert banner == "SSH-2.0-OpenSSH_9.6p1 Ubuntu-3ubuntu13"
    assert received == [b"exit\n"]


def test_try_handshake_server_closes_without_greeting():
    with fake_server(None) as (port, _):
        assert try_handshake("127.0.0.1", port, timeout=1.0) is None


def test_try_handshake_unreachable():
    assert try_handshake("127.0.0.1", _closed_port(), timeout=0.5) is None
