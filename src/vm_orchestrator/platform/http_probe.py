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

import requests

UNREACHABLE = -1


def get_url_status(
    url: str,
    *,
    timeout: float = 5.0,
    http_get: Callable = requests.get,
) -> int:
    """HTTP status code of a GET on ``url``, or ``UNREACHABLE`` on connection errors."""
    try:
        r = http_get(url, timeout=timeout, allow_redirects=True)
        return r.status_code
    except requests.RequestException:
        return UNREACHABLE
