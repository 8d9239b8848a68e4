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

import logging
import os
from pathlib import Path
import sys

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def add_file_handler(logger: logging.Logger, log_file: Path | str, level=logging.DEBUG) -> logging.Handler:
    """Append plain timestamped lines to ``log_file`` (created if missing)."""
    path = Path(log_file).expanduser()
    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(path):
            return h

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
    logger.addHandler(handler)
    return handler


def setup_logger(
    name: str = "app",
    level=logging.INFO,
    console: Console | None = None,
    to_stderr: bool = False,
    log_file: Path | str | None = None,
) -> logging.Logger:
    machine_mode = not sys.stdout.isatty()
    to_stderr = to_stderr or machine_mode

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False  # Avoid duplicate logs

    if logger.handlers:
        if log_file is not None:
            add_file_handler(logger, log_file)
        return logger

    # Console setup
    stdout_console = console or Console()  # Use full terminal width
    stderr_console = Console(stderr=True)

    if log_file is not None:
        add_file_handler(logger, log_file)

    if to_stderr:
        stderr_handler = RichHandler(
            level=level,
            console=stderr_console,
            rich_tracebacks=True,
            markup=True,
            show_time=True,
            show_level=True,
            show_path=False,
        )
        logger.addHandler(stderr_handler)
        return logger

    # Info and below → stdout
    stdout_handler = RichHandler(
        level=logging.DEBUG,
        console=stdout_console,
        rich_tracebacks=False,
        markup=True,
        show_time=True,
        show_level=True,
        show_path=False,
    )
    stderr_handler = RichHandler(
        level=logging.WARNING,
        console=stderr_console,
        rich_tracebacks=True,
        markup=True,
        show_time=True,
        show_level=True,
        show_path=False,
    )

    stdout_handler.addFilter(lambda record: record.levelno <= logging.INFO)

    # Warnings and above → stderr
    logger.addHandler(stdout_handler)
    logger.addHandler(stderr_handler)

    return logger


def configure_root(level: str | int = "INFO", log_file: Path | str | None = None) -> logging.Logger:
    """Apply CLI-level settings to every ``vm_orchestrator.*`` logger.

    Module loggers are created at import time with INFO; the CLI raises or
    lowers them once the configuration is known.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = setup_logger("vm_orchestrator", level=level, log_file=log_file)
    for name, obj in logging.Logger.manager.loggerDict.items():
        if not isinstance(obj, logging.Logger) or not name.startswith("vm_orchestrator"):
            continue
        obj.setLevel(level)
        for h in obj.handlers:
            # the stderr-only handler is created with the import-time level
            if isinstance(h, RichHandler) and h.level <= logging.INFO:
                h.setLevel(min(h.level, level))
        if log_file is not None and obj is not root:
            add_file_handler(obj, log_file)
    return root
