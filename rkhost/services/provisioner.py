"""Service account, group and directory hierarchy."""

from __future__ import annotations

import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List

from loguru import logger

from rkhost.config import ServiceDefinition
from rkhost.exceptions import AccountProvisioningError, FilesystemPermissionError
from rkhost.host import Host
from rkhost.models import DirectoryState
from rkhost.util import ensure_success

NOLOGIN_SHELL = "/usr/sbin/nologin"


@dataclass(frozen=True)
class DirectorySpec:
    role: str
    path: Path
    owner: str
    group: str
    mode: int


def directory_matrix(definition: ServiceDefinition) -> List[DirectorySpec]:
    """Owner, group and mode for every directory the service uses, in creation order."""
    admin, admin_group = definition.admin_user, definition.admin_group
    account, group = definition.account, definition.group
    return [
        DirectorySpec("prefix", definition.prefix, admin, admin_group, 0o755),
        DirectorySpec("bin", definition.bin_dir, admin, admin_group, 0o755),
        DirectorySpec("config", definition.config_dir, admin, group, 0o750),
        DirectorySpec("data", definition.data_dir, account, group, 0o750),
        DirectorySpec("log", definition.log_dir, account, group, 0o750),
        DirectorySpec("runtime", definition.runtime_dir, account, group, 0o755),
    ]


class ResourceProvisioner:
    def __init__(self, definition: ServiceDefinition, host: Host):
        self.definition = definition
        self.host = host

    def provision(self, skip_user: bool = False) -> None:
        if skip_user:
            logger.info("Skipping account creation (--skip-user)")
            self.require_account()
        else:
            self.ensure_group()
            self.ensure_account()
        self.ensure_directories()

    def ensure_group(self) -> None:
        group = self.definition.group
        if self.host.group_exists(group):
            logger.info(f"Group '{group}' already exists")
            return
        logger.info(f"Creating system group: {group}")
        result = self.host.run(["groupadd", "--system", group], AccountProvisioningError)
        ensure_success(result, "groupadd", AccountProvisioningError)

    def ensure_account(self) -> None:
        account = self.definition.account
        if self.host.user_exists(account):
            logger.info(f"User '{account}' already exists")
            return
        logger.info(f"Creating system user: {account}")
        command = [
            "useradd",
            "--system",
            "--no-create-home",
            "--shell",
            NOLOGIN_SHELL,
            "--gid",
            self.definition.group,
            "--comment",
            self.definition.account_comment,
            account,
        ]
        result = self.host.run(command, AccountProvisioningError)
        ensure_success(result, "useradd", AccountProvisioningError)

    def require_account(self) -> None:
        missing = []
        if not self.host.group_exists(self.definition.group):
            missing.append(f"group '{self.definition.group}'")
        if not self.host.user_exists(self.definition.account):
            missing.append(f"user '{self.definition.account}'")
        if missing:
            raise AccountProvisioningError(
                f"--skip-user given but {' and '.join(missing)} does not exist",
                hint="Create the account yourself or re-run install without --skip-user.",
            )

    def ensure_directories(self) -> None:
        for spec in directory_matrix(self.definition):
            self._ensure_directory(spec)
        logger.info("Directory structure created")

    def _ensure_directory(self, spec: DirectorySpec) -> None:
        try:
            if spec.path.is_symlink() or (spec.path.exists() and not spec.path.is_dir()):
                raise FilesystemPermissionError(f"{spec.path} exists and is not a directory")
            spec.path.mkdir(parents=True, exist_ok=True)
            spec.path.chmod(spec.mode)
            self.host.chown(spec.path, spec.owner, spec.group)
        except (OSError, LookupError) as e:
            raise FilesystemPermissionError(f"Failed to prepare {spec.role} directory {spec.path}: {e}") from e
        logger.debug("Ensured {} {}:{} {:o}", spec.path, spec.owner, spec.group, spec.mode)

    def directory_states(self) -> List[DirectoryState]:
        states = []
        for spec in directory_matrix(self.definition):
            state = DirectoryState(
                role=spec.role,
                path=str(spec.path),
                exists=spec.path.is_dir(),
                expected_owner=spec.owner,
                expected_group=spec.group,
                expected_mode=spec.mode,
            )
            if state.exists:
                owner, group = self.host.owner(spec.path)
                state = state.model_copy(
                    update={
                        "owner": owner,
                        "group": group,
                        "mode": stat.S_IMODE(spec.path.stat().st_mode),
                    }
                )
            states.append(state)
        return states
