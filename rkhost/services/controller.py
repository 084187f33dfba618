"""Thin synchronous wrapper around systemctl for one unit."""

from __future__ import annotations

from typing import List

from loguru import logger

from rkhost.config import ServiceDefinition
from rkhost.exceptions import ServiceControlError
from rkhost.host import Host
from rkhost.models import ServiceStatus
from rkhost.util import ensure_success, parse_key_value

STATUS_PROPERTIES = [
    "Id",
    "LoadState",
    "ActiveState",
    "SubState",
    "MainPID",
    "UnitFileState",
    "ActiveEnterTimestamp",
]


class ServiceController:
    def __init__(self, definition: ServiceDefinition, host: Host):
        self.definition = definition
        self.host = host

    @property
    def unit(self) -> str:
        return self.definition.unit_name

    def _systemctl(self, *args: str, check: bool = True):
        command: List[str] = ["systemctl", *args]
        result = self.host.run(command, ServiceControlError)
        if check:
            ensure_success(result, f"systemctl {args[0]}", ServiceControlError)
        return result

    def status(self) -> ServiceStatus:
        command = ["show", self.unit, "--no-pager"] + [f"--property={prop}" for prop in STATUS_PROPERTIES]
        result = self._systemctl(*command)
        data = parse_key_value(result.stdout)

        main_pid = data.get("MainPID")
        try:
            pid = int(main_pid) if main_pid else None
        except ValueError:
            pid = None

        return ServiceStatus(
            load_state=data.get("LoadState"),
            active_state=data.get("ActiveState"),
            sub_state=data.get("SubState"),
            unit_file_state=data.get("UnitFileState"),
            main_pid=pid or None,
            active_since=data.get("ActiveEnterTimestamp") or None,
        )

    def is_active(self) -> bool:
        return self._systemctl("is-active", "--quiet", self.unit, check=False).ok

    def is_enabled(self) -> bool:
        return self._systemctl("is-enabled", "--quiet", self.unit, check=False).ok

    def daemon_reload(self) -> None:
        logger.info("Reloading systemd daemon")
        self._systemctl("daemon-reload")

    def start(self) -> ServiceStatus:
        logger.info(f"Starting {self.unit}")
        self._systemctl("start", self.unit)
        return self.status()

    def stop(self) -> ServiceStatus:
        if not self.is_active():
            logger.info(f"{self.unit} is not running")
            return self.status()
        logger.info(f"Stopping {self.unit}")
        self._systemctl("stop", self.unit)
        return self.status()

    def restart_if_active(self) -> ServiceStatus:
        """Restart when running, otherwise start."""
        if self.is_active():
            logger.info(f"Restarting {self.unit}")
            self._systemctl("restart", self.unit)
            return self.status()
        return self.start()

    def enable(self) -> ServiceStatus:
        logger.info(f"Enabling {self.unit}")
        self._systemctl("enable", self.unit)
        return self.status()

    def disable(self) -> ServiceStatus:
        if not self.is_enabled():
            return self.status()
        logger.info(f"Disabling {self.unit}")
        self._systemctl("disable", self.unit)
        return self.status()
