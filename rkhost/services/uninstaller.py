"""Reverses provisioning. Absent resources are skipped, never an error."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from loguru import logger

from rkhost.config import ServiceDefinition
from rkhost.exceptions import AccountProvisioningError, FilesystemPermissionError
from rkhost.host import Host
from rkhost.models import UninstallResult
from rkhost.services.controller import ServiceController
from rkhost.util import ensure_success


class Uninstaller:
    def __init__(self, definition: ServiceDefinition, host: Host, controller: ServiceController):
        self.definition = definition
        self.host = host
        self.controller = controller

    def uninstall(self, purge: bool = False, remove_account: bool = False) -> UninstallResult:
        result = UninstallResult()
        d = self.definition

        self.controller.stop()
        self.controller.disable()

        for path in (d.unit_path, d.tmpfiles_path, d.logrotate_path):
            self._remove_file(path, result)
        self.controller.daemon_reload()

        self._remove_symlink(result)
        self._remove_file(d.binary_path, result)
        for directory in (d.bin_dir, d.prefix):
            self._remove_if_empty(directory, result)

        data_dirs = [d.config_dir, d.data_dir, d.log_dir, d.runtime_dir]
        if purge:
            for directory in data_dirs:
                self._remove_tree(directory, result)
        else:
            result.preserved.extend(str(p) for p in data_dirs[:3] if p.is_dir())
            if result.preserved:
                logger.warning(f"Preserved: {', '.join(result.preserved)} (use --purge to remove)")

        if remove_account:
            self._remove_account()
        elif self.host.user_exists(d.account):
            result.account_preserved = d.account
            logger.info(f"User '{d.account}' preserved (use --remove-account to delete it)")

        return result

    def _remove_file(self, path: Path, result: UninstallResult) -> None:
        if not path.exists() and not path.is_symlink():
            return
        try:
            path.unlink()
        except OSError as e:
            raise FilesystemPermissionError(f"Failed to remove {path}: {e}") from e
        result.removed.append(str(path))
        logger.info(f"Removed: {path}")

    def _remove_symlink(self, result: UninstallResult) -> None:
        link = self.definition.symlink_path
        if not link.is_symlink():
            return
        target = Path(os.readlink(link))
        dangling = not link.exists()
        if target != self.definition.binary_path and not dangling:
            logger.warning(f"Leaving {link}: it points to {target}, not the installed binary")
            return
        self._remove_file(link, result)

    def _remove_if_empty(self, directory: Path, result: UninstallResult) -> None:
        if not directory.is_dir() or any(directory.iterdir()):
            return
        try:
            directory.rmdir()
        except OSError as e:
            logger.warning(f"Could not remove {directory}: {e}")
            return
        result.removed.append(str(directory))
        logger.info(f"Removed: {directory}")

    def _remove_tree(self, directory: Path, result: UninstallResult) -> None:
        if not directory.is_dir():
            return
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise FilesystemPermissionError(f"Failed to remove {directory}: {e}") from e
        result.removed.append(str(directory))
        logger.info(f"Removed: {directory}")

    def _remove_account(self) -> None:
        account, group = self.definition.account, self.definition.group

        if self.host.user_exists(account):
            kill = self.host.run(["pkill", "-u", account], AccountProvisioningError)
            # pkill exits 1 when nothing matched
            if kill.exit_code not in (0, 1):
                logger.warning(f"pkill -u {account} exited with {kill.exit_code}")
            removed = self.host.run(["userdel", account], AccountProvisioningError)
            ensure_success(removed, "userdel", AccountProvisioningError)
            logger.info(f"User '{account}' removed")
        else:
            logger.info(f"User '{account}' does not exist")

        if self.host.group_exists(group):
            removed = self.host.run(["groupdel", group], AccountProvisioningError)
            if removed.ok:
                logger.info(f"Group '{group}' removed")
            else:
                logger.warning(f"Could not remove group '{group}': {removed.stderr.strip()}")
