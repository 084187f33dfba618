"""Read-only health checks for an installed service.

Each check is independent: a probe error inside one check is recorded in the
report and the remaining checks still run.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from rkhost.config import ServiceDefinition
from rkhost.exceptions import RkHostError, VerificationCheckError
from rkhost.host import Host
from rkhost.models import CheckResult, CheckStatus, InstallationState, VerificationReport
from rkhost.services.controller import ServiceController
from rkhost.services.preflight import detect_engine
from rkhost.services.provisioner import ResourceProvisioner
from rkhost.services.reconciler import parse_env

CheckFn = Callable[[], CheckResult]


def _pass(name: str, detail: str = "") -> CheckResult:
    return CheckResult(name=name, status=CheckStatus.PASS, detail=detail)


def _fail(name: str, detail: str = "") -> CheckResult:
    return CheckResult(name=name, status=CheckStatus.FAIL, detail=detail)


def _warn(name: str, detail: str = "") -> CheckResult:
    return CheckResult(name=name, status=CheckStatus.WARN, detail=detail)


class VerificationEngine:
    def __init__(self, definition: ServiceDefinition, host: Host, controller: ServiceController):
        self.definition = definition
        self.host = host
        self.controller = controller
        self.provisioner = ResourceProvisioner(definition, host)

    def run(self) -> VerificationReport:
        checks = [
            self._guard("Binary installed", self.check_binary),
            self._guard("Symlink correct", self.check_symlink),
            self._guard("Service user exists", self.check_account),
            self._guard("Directories exist", self.check_directories),
            self._guard("Configuration file", self.check_config),
            self._guard("Systemd service file", self.check_unit),
            self._guard("Service enabled", self.check_enabled),
            self._guard("Service running", self.check_running),
            self._guard("Memory usage", self.check_memory, CheckStatus.WARN),
            self._guard("Chromium available", self.check_engine, CheckStatus.WARN),
            self._guard("Port bindings", self.check_sockets, CheckStatus.WARN),
            self._guard("Recent errors", self.check_recent_errors, CheckStatus.WARN),
        ]
        report = VerificationReport.build(checks, hostname=self.host.hostname())
        logger.info(
            f"Verification finished: {report.summary.passed} passed, "
            f"{report.summary.failed} failed, {report.summary.warnings} warnings"
        )
        return report

    def _guard(self, name: str, check: CheckFn, on_error: CheckStatus = CheckStatus.FAIL) -> CheckResult:
        try:
            return check()
        except (RkHostError, OSError) as e:
            logger.debug("Check {} raised {}", name, e)
            return CheckResult(name=name, status=on_error, detail=f"Check error: {e}")

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_binary(self) -> CheckResult:
        name = "Binary installed"
        path = self.definition.binary_path
        if not path.is_file():
            return _fail(name, f"Not found: {path}")
        if not os.access(path, os.X_OK):
            return _fail(name, f"Not executable: {path}")
        version = self._version(path)
        if version is None:
            return _warn(name, f"{path} did not report a version")
        return _pass(name, f"{version} at {path}")

    def check_symlink(self) -> CheckResult:
        name = "Symlink correct"
        link = self.definition.symlink_path
        if link == self.definition.binary_path:
            return _pass(name, f"Binary installed directly at {link}")
        if not link.is_symlink():
            if link.exists():
                return _warn(name, f"{link} is not a symlink")
            return _warn(name, f"Symlink missing: {link}")
        target = link.resolve()
        if target != self.definition.binary_path.resolve():
            return _warn(name, f"Symlink points elsewhere: {link} -> {target}")
        return _pass(name, f"{link} -> {self.definition.binary_path}")

    def check_account(self) -> CheckResult:
        name = "Service user exists"
        info = self.host.user_info(self.definition.account)
        if info is None:
            return _fail(name, f"User '{self.definition.account}' not found")
        return _pass(name, f"uid={info['uid']} gid={info['gid']} shell={info['shell']}")

    def check_directories(self) -> CheckResult:
        name = "Directories exist"
        states = [s for s in self.provisioner.directory_states() if s.role in ("config", "data", "log", "runtime")]
        missing = [s.path for s in states if not s.exists]
        if missing:
            return _fail(name, f"Missing: {', '.join(missing)}")

        drift = []
        for s in states:
            if not s.conforms:
                drift.append(
                    f"{s.path} is {s.owner}:{s.group} {s.mode:o}, "
                    f"expected {s.expected_owner}:{s.expected_group} {s.expected_mode:o}"
                )
        if drift:
            return _warn(name, "; ".join(drift))
        return _pass(name, ", ".join(s.path for s in states))

    def check_config(self) -> CheckResult:
        name = "Configuration file"
        path = self.definition.config_path
        if not path.is_file():
            return _warn(name, f"Not found: {path}")
        mode = stat.S_IMODE(path.stat().st_mode)
        owner, group = self.host.owner(path)
        if mode != 0o640:
            return _warn(name, f"Permissions should be 640, got {mode:o}")
        if group != self.definition.group:
            return _warn(name, f"Group should be {self.definition.group}, got {group}")
        return _pass(name, f"{path} ({mode:o}, {owner}:{group})")

    def check_unit(self) -> CheckResult:
        name = "Systemd service file"
        path = self.definition.unit_path
        if not path.is_file():
            return _fail(name, f"Not found: {path}")
        return _pass(name, str(path))

    def check_enabled(self) -> CheckResult:
        name = "Service enabled"
        if self.controller.is_enabled():
            return _pass(name, "Will start on boot")
        return _warn(name, "Service will not start on boot")

    def check_running(self) -> CheckResult:
        name = "Service running"
        status = self.controller.status()
        if not status.active:
            return _fail(name, f"Status: {status.active_state or 'unknown'}")
        return _pass(name, f"PID {status.main_pid}, since {status.active_since or 'unknown'}")

    def check_memory(self) -> CheckResult:
        name = "Memory usage"
        status = self.controller.status()
        if not status.active or not status.main_pid:
            return _warn(name, "Service not running")
        rss = self.host.process_rss_mb(status.main_pid)
        if rss is None:
            return _warn(name, "Could not read process info")
        settings = self.host.settings
        if rss < settings.memory_pass_mb:
            return _pass(name, f"{rss} MB RSS")
        if rss < settings.memory_warn_mb:
            return _warn(name, f"{rss} MB RSS (consider monitoring)")
        return _warn(name, f"{rss} MB RSS (high usage)")

    def check_engine(self) -> CheckResult:
        name = "Chromium available"
        values, _ = parse_env(self._read_config())
        configured = values.get("CHROME_PATH")
        if configured:
            if not os.access(configured, os.X_OK):
                return _warn(name, f"Configured CHROME_PATH is not executable: {configured}")
            path = configured
        else:
            path = detect_engine(self.host.settings.engine_search_paths)
            if path is None:
                return _warn(name, "Chrome/Chromium not found")
        version = self._version(Path(path)) or "unknown version"
        return _pass(name, f"{version} at {path}")

    def check_sockets(self) -> CheckResult:
        name = "Port bindings"
        status = self.controller.status()
        if not status.active or not status.main_pid:
            return _warn(name, "Service not running")
        sockets = self.host.listening_sockets(status.main_pid)
        if sockets:
            return _warn(name, f"Unexpected listening sockets: {', '.join(sockets)}")
        return _pass(name, "No listening sockets (stdio transport)")

    def check_recent_errors(self) -> CheckResult:
        name = "Recent errors"
        if not self.host.which("journalctl"):
            return _warn(name, "journalctl not available")
        minutes = self.host.settings.error_lookback_minutes
        command = [
            "journalctl",
            "-u",
            self.definition.service_name,
            "--since",
            f"-{minutes}min",
            "-p",
            "err",
            "--no-pager",
            "-q",
        ]
        result = self.host.run(command, VerificationCheckError)
        if not result.ok:
            raise VerificationCheckError(f"journalctl failed with exit code {result.exit_code}")
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            return _pass(name, f"No errors in last {minutes} minutes")
        detail = f"{len(lines)} errors in last {minutes} minutes; latest: " + " | ".join(lines[-3:])
        if len(lines) > self.host.settings.max_recent_errors:
            return _warn(name, detail)
        return _pass(name, detail)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(self) -> InstallationState:
        """Probe the host. Nothing is cached between calls."""
        binary = self.definition.binary_path
        link = self.definition.symlink_path
        present = binary.is_file()
        executable = present and os.access(binary, os.X_OK)
        return InstallationState(
            group_exists=self.host.group_exists(self.definition.group),
            account_exists=self.host.user_exists(self.definition.account),
            directories=self.provisioner.directory_states(),
            binary_present=present,
            binary_executable=executable,
            binary_version=self._version(binary) if executable else None,
            symlink_target=os.readlink(link) if link.is_symlink() else None,
            unit_present=self.definition.unit_path.is_file(),
            config_present=self.definition.config_path.is_file(),
            enabled=self.controller.is_enabled(),
            active=self.controller.is_active(),
        )

    def _version(self, path: Path) -> Optional[str]:
        try:
            result = self.host.run([str(path), "--version"], VerificationCheckError)
        except VerificationCheckError as e:
            logger.debug("Version probe for {} failed: {}", path, e)
            return None
        if not result.ok:
            return None
        return result.first_line or None

    def _read_config(self) -> str:
        path = self.definition.config_path
        if not path.is_file():
            return ""
        return path.read_text(encoding="utf-8")
