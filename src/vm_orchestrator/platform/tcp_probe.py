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

import socket

# Ask the server to hang up once it has greeted us (same as `echo exit | nc`).
_HANDSHAKE_PAYLOAD = b"exit\n"


def try_connect(host: str, port: int, timeout: float = 1.0) -> bool:
    """Return True if a TCP connection to ``host:port`` succeeds within ``timeout``."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def try_handshake(
    host: str,
    port: int,
    timeout: float = 5.0,
    *,
    max_bytes: int = 256,
) -> str | None:
    """Connect and return the first line the server sends, or None.

    SSH servers greet first (``SSH-2.0-OpenSSH_9.6 ...``); the line is
    returned without its trailing CR/LF.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            sock.settimeout(timeout)
            data = b""
            while b"\n" not in data and len(data) < max_bytes:
                chunk = sock.recv(max_bytes - len(data))
                if not chunk:
                    break
                data += chunk
            try:
                sock.sendall(_HANDSHAKE_PAYLOAD)
            except OSError:
                pass
    except OSError:
        return None

    line = data.split(b"\n", 1)[0].rstrip(b"\r")
    if not line:
        return None
    return line.decode("utf-8", errors="replace")
