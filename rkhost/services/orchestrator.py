"""Composes the lifecycle components into the top-level commands."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from rkhost.config import DEFAULT_DEFINITION, ServiceDefinition
from rkhost.host import Host
from rkhost.locking import ServiceLock
from rkhost.models import (
    ConfigurationDocument,
    InstallationState,
    InstallSummary,
    UninstallResult,
    VerificationReport,
)
from rkhost.services.binary import BinaryInstaller, BinaryInstallResult
from rkhost.services.controller import ServiceController
from rkhost.services.preflight import PreflightChecker
from rkhost.services.provisioner import ResourceProvisioner
from rkhost.services.reconciler import ConfigurationReconciler, Prompt
from rkhost.services.uninstaller import Uninstaller
from rkhost.services.unit import UnitGenerator
from rkhost.services.verification import VerificationEngine

Confirm = Callable[[str], bool]


class Orchestrator:
    """Entry point for install, upgrade, configure, verify and uninstall.

    Mutating commands hold the per-service lock for their whole sequence.
    Nothing is remembered between commands; every step probes the host first.
    """

    def __init__(self, definition: ServiceDefinition = DEFAULT_DEFINITION, host: Optional[Host] = None):
        self.definition = definition
        self.host = host or Host()
        self.controller = ServiceController(definition, self.host)
        self.preflight = PreflightChecker(self.host)
        self.provisioner = ResourceProvisioner(definition, self.host)
        self.binary = BinaryInstaller(definition, self.host, self.controller)
        self.units = UnitGenerator(definition, self.host, self.controller)
        self.reconciler = ConfigurationReconciler(definition, self.host)
        self.verifier = VerificationEngine(definition, self.host, self.controller)
        self.uninstaller = Uninstaller(definition, self.host, self.controller)

    def _lock(self) -> ServiceLock:
        return ServiceLock(self.host.settings.lock_dir, self.definition.service_name)

    def install(
        self,
        binary: Optional[Path] = None,
        skip_user: bool = False,
        skip_dependency: bool = False,
        assume_yes: bool = False,
        confirm: Optional[Confirm] = None,
        search_root: Optional[Path] = None,
    ) -> InstallSummary:
        with self._lock():
            preflight = self.preflight.run(confirm=confirm, assume_yes=assume_yes)
            self.provisioner.provision(skip_user=skip_user)
            if skip_dependency:
                logger.info("Skipping Chromium installation (--skip-dependency)")
            else:
                self.preflight.ensure_engine(preflight)

            candidate = self.binary.resolve_candidate(binary, search_root)
            installed = self.binary.install(candidate)
            units = self.units.install()
            self.reconciler.install_defaults()

            self.controller.enable()
            status = self.controller.restart_if_active()

        logger.info(f"{self.definition.service_name} installed")
        return self._summary(installed, status, preflight.warnings + installed.warnings + units.warnings)

    def upgrade(
        self,
        binary: Path,
        assume_yes: bool = False,
        confirm: Optional[Confirm] = None,
    ) -> InstallSummary:
        with self._lock():
            preflight = self.preflight.run(confirm=confirm, assume_yes=assume_yes, install_dependencies=False)
            self.provisioner.provision()
            upgraded = self.binary.upgrade(Path(binary))
            units = self.units.install()
            self.reconciler.install_reference()
            if units.changed and self.controller.is_active():
                logger.info("Unit definition changed, restarting to apply it")
                self.controller.restart_if_active()
            status = self.controller.status()

        logger.info(f"{self.definition.service_name} upgraded")
        return self._summary(upgraded, status, preflight.warnings + upgraded.warnings + units.warnings)

    def configure(
        self,
        non_interactive: bool = False,
        start: bool = False,
        enable: bool = False,
        prompt: Optional[Prompt] = None,
        confirm: Optional[Confirm] = None,
    ) -> Optional[ConfigurationDocument]:
        self.preflight.check_privilege()
        with self._lock():
            document = self.reconciler.configure(non_interactive=non_interactive, prompt=prompt, confirm=confirm)
            if document is None:
                return None
            if enable:
                self.controller.enable()
            if start:
                self.controller.restart_if_active()
        return document

    def verify(self) -> VerificationReport:
        return self.verifier.run()

    def uninstall(self, purge: bool = False, remove_account: bool = False) -> UninstallResult:
        self.preflight.check_privilege()
        with self._lock():
            result = self.uninstaller.uninstall(purge=purge, remove_account=remove_account)
        logger.info(f"{self.definition.service_name} uninstalled")
        return result

    def observe(self) -> InstallationState:
        return self.verifier.observe()

    def _summary(self, installed: BinaryInstallResult, status, warnings) -> InstallSummary:
        return InstallSummary(
            binary=str(installed.path),
            version=installed.version,
            symlink=str(self.definition.symlink_path),
            config=str(self.definition.config_path),
            unit=str(self.definition.unit_path),
            account=f"{self.definition.account}:{self.definition.group}",
            status=status,
            warnings=warnings,
        )
