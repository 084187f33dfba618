"""Host probe interface.

Everything the components learn about (or change in) accounts, ownership,
processes and external commands goes through :class:`Host`, so each step can
be exercised against a fake host in tests.
"""

from __future__ import annotations

import grp
import os
import platform
import pwd
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type

import psutil
from loguru import logger

from rkhost.config import ManagerSettings
from rkhost.exceptions import RkHostError
from rkhost.util import CommandResult, run_command

Runner = Callable[..., CommandResult]


class Host:
    """Live host accessors."""

    def __init__(self, settings: Optional[ManagerSettings] = None, runner: Runner = run_command):
        self.settings = settings or ManagerSettings()
        self._runner = runner

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def run(self, command: List[str], error_cls: Type[RkHostError] = RkHostError) -> CommandResult:
        return self._runner(
            command,
            self.settings.command_timeout_seconds,
            self.settings.max_output_bytes,
            error_cls,
        )

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    # ------------------------------------------------------------------
    # Identity and platform
    # ------------------------------------------------------------------

    def euid(self) -> int:
        return os.geteuid()

    def os_release(self) -> Dict[str, str]:
        try:
            return platform.freedesktop_os_release()
        except OSError:
            return {}

    def hostname(self) -> str:
        return platform.node()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def group_exists(self, name: str) -> bool:
        try:
            grp.getgrnam(name)
        except KeyError:
            return False
        return True

    def user_info(self, name: str) -> Optional[Dict[str, str]]:
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            return None
        return {"uid": str(entry.pw_uid), "gid": str(entry.pw_gid), "shell": entry.pw_shell}

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def owner(self, path: Path) -> Tuple[str, str]:
        """Return ``(user, group)`` names owning ``path`` (numeric if unknown)."""
        st = path.lstat()
        try:
            user = pwd.getpwuid(st.st_uid).pw_name
        except KeyError:
            user = str(st.st_uid)
        try:
            group = grp.getgrgid(st.st_gid).gr_name
        except KeyError:
            group = str(st.st_gid)
        return user, group

    def chown(self, path: Path, user: str, group: str) -> None:
        shutil.chown(path, user=user, group=group)

    # ------------------------------------------------------------------
    # Processes
    # ------------------------------------------------------------------

    def process_rss_mb(self, pid: int) -> Optional[int]:
        try:
            return psutil.Process(pid).memory_info().rss // (1024 * 1024)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            logger.debug("Could not read memory of PID {}", pid)
            return None

    def listening_sockets(self, pid: int) -> List[str]:
        """Return ``host:port`` for every socket ``pid`` is listening on."""
        try:
            connections = psutil.Process(pid).net_connections(kind="inet")
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise RkHostError(f"Cannot inspect sockets of PID {pid}: {e}") from e
        listening = []
        for conn in connections:
            if conn.status == psutil.CONN_LISTEN and conn.laddr:
                listening.append(f"{conn.laddr.ip}:{conn.laddr.port}")
        return sorted(listening)
