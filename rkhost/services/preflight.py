"""Preconditions checked before any mutating step runs.

Checks run in a fixed order and nothing under the service's own paths is
touched here. The only side effect is installing missing lightweight
packages through apt.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from rkhost.exceptions import MissingDependency, PlatformMismatch, PrivilegeError
from rkhost.host import Host
from rkhost.util import ensure_success

MIN_DEBIAN_VERSION = 13
CA_BUNDLE = Path("/etc/ssl/certs/ca-certificates.crt")

ENGINE_PACKAGES = [
    "chromium",
    "chromium-sandbox",
    "fonts-liberation",
    "libasound2",
    "libatk-bridge2.0-0",
    "libatk1.0-0",
    "libatspi2.0-0",
    "libcups2",
    "libdbus-1-3",
    "libdrm2",
    "libgbm1",
    "libgtk-3-0",
    "libnspr4",
    "libnss3",
    "libxcomposite1",
    "libxdamage1",
    "libxfixes3",
    "libxkbcommon0",
    "libxrandr2",
    "xdg-utils",
]


@dataclass
class PreflightResult:
    os_name: str = "unknown"
    os_version: str = ""
    installed_packages: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def detect_engine(candidates: List[str]) -> Optional[str]:
    """Return the first executable browser from the search list."""
    for path in candidates:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    return None


class PreflightChecker:
    def __init__(self, host: Host, ca_bundle: Path = CA_BUNDLE):
        self.host = host
        self.ca_bundle = ca_bundle

    def run(
        self,
        confirm: Optional[Callable[[str], bool]] = None,
        assume_yes: bool = False,
        install_dependencies: bool = True,
    ) -> PreflightResult:
        result = PreflightResult()
        self.check_privilege()
        self.check_platform(result, confirm, assume_yes)
        self.check_supervisor(result)
        if install_dependencies:
            self.ensure_dependencies(result)
        return result

    def check_privilege(self) -> None:
        if self.host.euid() != 0:
            raise PrivilegeError("This command must be run as root")
        logger.info("Running as root")

    def check_platform(
        self,
        result: PreflightResult,
        confirm: Optional[Callable[[str], bool]],
        assume_yes: bool,
    ) -> None:
        release = self.host.os_release()
        os_id = release.get("ID", "unknown")
        version = release.get("VERSION_ID", "")
        result.os_name = release.get("PRETTY_NAME", os_id)
        result.os_version = version

        problem = None
        if os_id != "debian":
            problem = f"Designed for Debian {MIN_DEBIAN_VERSION}+, detected: {os_id}"
        elif version.isdigit() and int(version) < MIN_DEBIAN_VERSION:
            problem = f"Debian {MIN_DEBIAN_VERSION}+ required, detected: Debian {version}"

        if problem is None:
            logger.info(f"Platform check passed: {result.os_name}")
            return

        logger.warning(problem)
        result.warnings.append(problem)
        if assume_yes:
            return
        if confirm is None or not confirm(f"{problem}. Continue anyway?"):
            raise PlatformMismatch(problem)

    def check_supervisor(self, result: PreflightResult) -> None:
        if not self.host.which("systemctl"):
            raise MissingDependency("systemd is required but systemctl was not found")

        state = self.host.run(["systemctl", "is-system-running"], MissingDependency)
        if not state.ok:
            message = f"systemd may not be fully operational ({state.first_line or 'unknown'})"
            logger.warning(message)
            result.warnings.append(message)
        logger.info("systemd is available")

    def ensure_dependencies(self, result: PreflightResult) -> None:
        missing = []
        if not self.host.which("curl"):
            missing.append("curl")
        if not self.ca_bundle.exists():
            missing.append("ca-certificates")

        if not missing:
            logger.info("Dependencies verified")
            return

        logger.info(f"Installing missing dependencies: {' '.join(missing)}")
        self._apt_install(missing, MissingDependency)
        result.installed_packages.extend(missing)

    def ensure_engine(self, result: PreflightResult) -> Optional[str]:
        """Install the browser engine unless one is already present.

        A failed install is reported as a warning; the service can still be
        pointed at a browser later through CHROME_PATH.
        """
        existing = detect_engine(self.host.settings.engine_search_paths)
        if existing:
            logger.info(f"Chromium already installed: {existing}")
            return existing

        logger.info("Installing Chromium and dependencies...")
        try:
            self._apt_install(ENGINE_PACKAGES, MissingDependency)
        except MissingDependency as e:
            message = f"Some Chromium dependencies may not have installed: {e}"
            logger.warning(message)
            result.warnings.append(message)
            return None
        result.installed_packages.extend(ENGINE_PACKAGES)
        return detect_engine(self.host.settings.engine_search_paths)

    def _apt_install(self, packages: List[str], error_cls) -> None:
        update = self.host.run(["apt-get", "update", "-qq"], error_cls)
        ensure_success(update, "apt-get update", error_cls)
        install = self.host.run(["apt-get", "install", "-y", "-qq", *packages], error_cls)
        ensure_success(install, "apt-get install", error_cls)
