"""Subprocess and file helpers shared by the lifecycle components."""

from __future__ import annotations

import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Type

from loguru import logger

from rkhost.exceptions import RkHostError


@dataclass
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def first_line(self) -> str:
        for line in self.stdout.splitlines():
            if line.strip():
                return line.strip()
        return ""


def parse_key_value(output: str) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for line in output.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        parsed[key] = value
    return parsed


def _truncate(value: str, limit: int) -> tuple[str, bool]:
    if len(value) <= limit:
        return value, False
    return value[:limit], True


def run_command(
    command: List[str],
    timeout: float,
    limit: int,
    error_cls: Type[RkHostError] = RkHostError,
) -> CommandResult:
    """Run ``command`` to completion and capture its output.

    A missing binary or a timeout raises ``error_cls``; a non-zero exit does
    not, callers decide with :func:`ensure_success`.
    """
    logger.debug("Executing command: {}", command)
    try:
        process = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        logger.error("Command timeout for {}", command)
        raise error_cls(f"Command timed out after {timeout:.0f}s: {' '.join(command)}") from exc
    except FileNotFoundError as exc:
        logger.error("Binary not found for {}", command)
        raise error_cls(f"Binary not found: {command[0]}") from exc
    except PermissionError as exc:
        raise error_cls(f"Permission denied executing {command[0]}") from exc
    except OSError as exc:
        raise error_cls(f"Failed to execute {command[0]}: {exc}") from exc

    stdout = process.stdout.decode("utf-8", errors="replace")
    stderr = process.stderr.decode("utf-8", errors="replace")

    stdout, stdout_truncated = _truncate(stdout, limit)
    stderr, stderr_truncated = _truncate(stderr, limit)

    return CommandResult(
        exit_code=process.returncode,
        stdout=stdout,
        stderr=stderr,
        stdout_truncated=stdout_truncated,
        stderr_truncated=stderr_truncated,
    )


def ensure_success(
    result: CommandResult,
    command_name: str,
    error_cls: Type[RkHostError] = RkHostError,
) -> None:
    if result.exit_code == 0:
        return

    logger.error("Command {} failed with exit code {}", command_name, result.exit_code)
    detail = result.stderr.strip() or result.stdout.strip()
    message = f"{command_name} failed with exit code {result.exit_code}"
    if detail:
        message = f"{message}: {detail.splitlines()[-1]}"
    raise error_cls(message)


def atomic_write(path: Path, data: bytes, mode: int, chown: Optional[Callable[[Path], None]] = None) -> None:
    """Write ``data`` next to ``path`` and rename it into place.

    The temporary file gets its final mode (and ownership, through ``chown``)
    before the rename, so readers never see a partial or over-permissive file.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, mode)
        if chown is not None:
            chown(tmp_path)
        os.replace(tmp_path, path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise
