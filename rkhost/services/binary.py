"""Installs the service executable and its PATH symlink."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

from rkhost.config import ServiceDefinition
from rkhost.exceptions import BinaryInvalid, FilesystemPermissionError
from rkhost.host import Host
from rkhost.services.controller import ServiceController
from rkhost.util import atomic_write

BUILD_CANDIDATES = ["target/release", "target/debug", "."]


def _prefix_of(binary: Path, definition: ServiceDefinition) -> Optional[Path]:
    if binary.name != definition.service_name or binary.parent.name != "bin":
        return None
    return binary.parent.parent


def installed_prefix(definition: ServiceDefinition) -> Optional[Path]:
    """Find the prefix of an existing installation.

    The unit's ``ExecStart`` takes precedence; the invocation symlink is the
    fallback when no unit is present.
    """
    unit = definition.unit_path
    if unit.is_file():
        try:
            text = unit.read_text(encoding="utf-8")
        except OSError as e:
            raise FilesystemPermissionError(f"Failed to read {unit}: {e}") from e
        for line in text.splitlines():
            if line.startswith("ExecStart="):
                command = line[len("ExecStart=") :].split()
                if command:
                    return _prefix_of(Path(command[0]), definition)

    link = definition.symlink_path
    if link.is_symlink():
        target = Path(os.readlink(link))
        if not target.is_absolute():
            target = link.parent / target
        return _prefix_of(target, definition)
    return None


@dataclass
class BinaryInstallResult:
    path: Path
    version: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class BinaryInstaller:
    def __init__(self, definition: ServiceDefinition, host: Host, controller: ServiceController):
        self.definition = definition
        self.host = host
        self.controller = controller

    def resolve_candidate(self, binary: Optional[Path], search_root: Optional[Path] = None) -> Path:
        """Return ``binary`` or the first build output found under ``search_root``."""
        if binary is not None:
            return Path(binary)

        root = search_root or Path.cwd()
        for directory in BUILD_CANDIDATES:
            candidate = root / directory / self.definition.service_name
            if candidate.is_file():
                logger.info(f"Found binary: {candidate}")
                return candidate

        raise BinaryInvalid(
            f"{self.definition.service_name} binary not found in target/release, target/debug or the current directory",
            hint="Build it first (cargo build --release) or pass --binary PATH.",
        )

    def validate(self, candidate: Path, result: BinaryInstallResult) -> None:
        if not candidate.is_file():
            raise BinaryInvalid(f"Binary not found: {candidate}")

        if not os.access(candidate, os.X_OK):
            logger.warning(f"Binary is not executable, fixing: {candidate}")
            try:
                candidate.chmod(candidate.stat().st_mode | 0o111)
            except OSError as e:
                raise BinaryInvalid(f"Cannot make {candidate} executable: {e}") from e

        result.version = self.check_version(candidate, result)

    def check_version(self, candidate: Path, result: BinaryInstallResult) -> Optional[str]:
        """Run ``--version``; a failure is reported but does not block the install."""
        try:
            output = self.host.run([str(candidate), "--version"], BinaryInvalid)
        except BinaryInvalid as e:
            message = f"Version check failed for {candidate}: {e}"
            logger.warning(message)
            result.warnings.append(message)
            return None

        if not output.ok or not output.first_line:
            message = f"Version check failed for {candidate} (exit code {output.exit_code})"
            logger.warning(message)
            result.warnings.append(message)
            return None

        logger.info(f"Binary version: {output.first_line}")
        return output.first_line

    def install(self, candidate: Path) -> BinaryInstallResult:
        result = BinaryInstallResult(path=self.definition.binary_path)
        self.validate(candidate, result)
        self._replace(candidate)
        self.ensure_symlink(result)
        return result

    def upgrade(self, candidate: Path) -> BinaryInstallResult:
        """Replace the binary, stopping the service around the swap.

        The candidate is validated before anything is stopped. If the swap
        fails the previous binary is still in place and is started again.
        """
        result = BinaryInstallResult(path=self.definition.binary_path)
        self.validate(candidate, result)

        was_active = self.controller.is_active()
        if was_active:
            self.controller.stop()
        try:
            self._replace(candidate)
            self.ensure_symlink(result)
        except (BinaryInvalid, FilesystemPermissionError):
            if was_active:
                logger.warning("Upgrade failed, restarting the previous binary")
                self.controller.start()
            raise
        if was_active:
            self.controller.start()
        return result

    def _replace(self, candidate: Path) -> None:
        target = self.definition.binary_path
        admin, admin_group = self.definition.admin_user, self.definition.admin_group
        logger.info(f"Installing binary to {target}")
        try:
            data = candidate.read_bytes()
            atomic_write(target, data, 0o755, chown=lambda p: self.host.chown(p, admin, admin_group))
        except (OSError, LookupError) as e:
            raise FilesystemPermissionError(f"Failed to install binary to {target}: {e}") from e

    def ensure_symlink(self, result: BinaryInstallResult) -> None:
        link = self.definition.symlink_path
        target = self.definition.binary_path

        if link == target:
            logger.info(f"Binary installed at the invocation path {link}, no symlink needed")
            return
        if link.is_symlink():
            current = os.readlink(link)
            if Path(current) == target:
                logger.info(f"Symlink already points to {target}")
                return
            message = f"Symlink {link} pointed to {current}, repointing to {target}"
            logger.warning(message)
            result.warnings.append(message)
        elif link.exists():
            raise BinaryInvalid(
                f"{link} exists and is not a symlink",
                hint=f"Move {link} out of the way and re-run.",
            )

        tmp_link = link.with_name(f".{link.name}.tmp")
        try:
            link.parent.mkdir(parents=True, exist_ok=True)
            tmp_link.unlink(missing_ok=True)
            tmp_link.symlink_to(target)
            os.replace(tmp_link, link)
        except OSError as e:
            tmp_link.unlink(missing_ok=True)
            raise FilesystemPermissionError(f"Failed to create symlink {link}: {e}") from e
        logger.info(f"Symlink created: {link} -> {target}")
